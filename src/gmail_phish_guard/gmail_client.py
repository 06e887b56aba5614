"""Gmail API client functions and the Gmail-backed mail provider."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError
from googleapiclient.http import BatchHttpRequest
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from gmail_phish_guard.auth import get_gmail_service, has_token
from gmail_phish_guard.constants import BATCH_SIZE, DEFAULT_QUERY, PAGE_SIZE
from gmail_phish_guard.errors import AuthExpiredError, PhishGuardError, TransientFetchError

logger = logging.getLogger(__name__)


class MailProvider(Protocol):
    async def is_connected(self, user_id: str) -> bool: ...

    async def list_and_fetch_since(self, user_id: str, since: datetime) -> list[dict]: ...

    async def list_and_fetch_window(self, user_id: str, query: str, max_results: int) -> list[dict]: ...


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in (429, 500, 503)


def _internal_date(message: dict) -> int:
    try:
        return int(message.get("internalDate") or 0)
    except (TypeError, ValueError):
        return 0


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)
def _execute_list(service, kwargs: dict) -> dict:
    return service.users().messages().list(**kwargs).execute()


def list_message_ids(
    service,
    query: str | None = None,
    max_results: int | None = None,
) -> list[str]:
    """List all message IDs matching the query, handling pagination."""
    ids: list[str] = []
    page_token: str | None = None

    while True:
        kwargs: dict = {"userId": "me", "maxResults": PAGE_SIZE, "fields": "messages/id,nextPageToken"}
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        resp = _execute_list(service, kwargs)
        for msg in resp.get("messages", []):
            ids.append(msg["id"])
            if max_results and len(ids) >= max_results:
                return ids[:max_results]

        page_token = resp.get("nextPageToken")
        if not page_token:
            break

    return ids


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)
def _execute_batch(batch: BatchHttpRequest) -> None:
    batch.execute()


def fetch_full_messages(
    service,
    message_ids: list[str],
    callback: Callable[[int, int], None] | None = None,
) -> list[dict]:
    """Fetch full message payloads in batches using BatchHttpRequest.

    A message that fails inside a batch is logged and skipped. Results are
    returned newest first.
    """
    results: list[dict] = []
    total_batches = (len(message_ids) + BATCH_SIZE - 1) // BATCH_SIZE

    for batch_num in range(total_batches):
        start = batch_num * BATCH_SIZE
        end = min(start + BATCH_SIZE, len(message_ids))
        chunk = message_ids[start:end]

        batch = service.new_batch_http_request()

        def _make_callback(msg_id: str):
            def _cb(request_id, response, exception):
                if exception is not None:
                    logger.warning("Failed to fetch message %s: %s", msg_id, exception)
                    return
                results.append(response)

            return _cb

        for msg_id in chunk:
            batch.add(
                service.users().messages().get(userId="me", id=msg_id, format="full"),
                callback=_make_callback(msg_id),
            )

        _execute_batch(batch)

        if callback:
            callback(batch_num + 1, total_batches)

    results.sort(key=_internal_date, reverse=True)
    return results


def since_query(since: datetime, base: str = DEFAULT_QUERY) -> str:
    """Build a Gmail search query for messages strictly after a timestamp."""
    return f"{base} after:{int(since.timestamp())}"


class GmailMailProvider:
    """MailProvider backed by the Gmail API and per-user OAuth tokens.

    The Google client is blocking, so every call runs in a worker thread.
    Google errors are translated into the pipeline's error taxonomy.
    """

    def __init__(self, tokens_dir: Path | None = None) -> None:
        self.tokens_dir = tokens_dir

    async def is_connected(self, user_id: str) -> bool:
        return has_token(user_id, self.tokens_dir)

    async def list_and_fetch_since(self, user_id: str, since: datetime) -> list[dict]:
        return await self.list_and_fetch_window(user_id, since_query(since), 0)

    async def list_and_fetch_window(self, user_id: str, query: str, max_results: int) -> list[dict]:
        """Fetch up to max_results messages for a query (0 means no limit)."""
        return await asyncio.to_thread(self._fetch, user_id, query, max_results or None)

    def _fetch(self, user_id: str, query: str, max_results: int | None) -> list[dict]:
        try:
            service = get_gmail_service(user_id, self.tokens_dir)
            ids = list_message_ids(service, query=query, max_results=max_results)
            if not ids:
                return []
            logger.info("Fetching %d message(s) for user %s", len(ids), user_id)
            return fetch_full_messages(service, ids)
        except PhishGuardError:
            raise
        except RefreshError as exc:
            raise AuthExpiredError(
                "Gmail access expired. Please reconnect your Gmail account.", user_id
            ) from exc
        except HttpError as exc:
            if exc.resp.status == 401:
                raise AuthExpiredError(
                    "Gmail access expired. Please reconnect your Gmail account.", user_id
                ) from exc
            raise TransientFetchError(f"Gmail API error {exc.resp.status}: {exc}", user_id) from exc
        except (TransportError, OSError) as exc:
            raise TransientFetchError(f"Network error talking to Gmail: {exc}", user_id) from exc
