"""Constants for Gmail Phish Guard."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".gmail-phish-guard"
CREDENTIALS_PATH = CONFIG_DIR / "credentials.json"
TOKENS_DIR = CONFIG_DIR / "tokens"
STORE_DB_PATH = CONFIG_DIR / "store.db"

# --- Gmail API ---
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
BATCH_SIZE = 50  # messages per BatchHttpRequest
PAGE_SIZE = 500  # messages per list page
DEFAULT_QUERY = "in:inbox"

# --- Scoring weights ---
WEIGHT_URL = 0.35
WEIGHT_KEYWORD = 0.35
WEIGHT_SENDER = 0.30

# --- Scoring thresholds ---
SCORE_HIGH = 0.7
SCORE_MEDIUM = 0.4
SENDER_SUSPICIOUS_THRESHOLD = 30
SCORE_PRECISION = 4

# --- Sub-score values ---
KEYWORD_POINTS = 10
SENDER_BRAND_MISMATCH_SCORE = 70
SENDER_RANDOM_LOCAL_SCORE = 40
SENDER_NUMERIC_DOMAIN_SCORE = 60
URL_MAX_LENGTH = 200
URL_MAX_DOTS = 4

# --- Phishing keywords (urgency, account, financial, government) ---
PHISHING_KEYWORDS = [
    "urgent",
    "immediately",
    "verify",
    "confirm",
    "account",
    "suspended",
    "locked",
    "password",
    "security",
    "alert",
    "unauthorized",
    "click here",
    "act now",
    "expire",
    "limited time",
    "winner",
    "congratulations",
    "prize",
    "lottery",
    "inheritance",
    "bank",
    "transfer",
    "wire",
    "million",
    "dollars",
    "update your",
    "confirm your",
    "verify your",
    "validate",
    "unusual activity",
    "suspicious activity",
    "compromised",
    "free",
    "gift",
    "offer",
    "deal",
    "discount",
    "social security",
    "tax refund",
    "irs",
    "government",
]

SUSPICIOUS_TLDS = [
    ".xyz",
    ".top",
    ".club",
    ".work",
    ".click",
    ".link",
    ".info",
    ".loan",
    ".online",
    ".site",
    ".website",
    ".space",
    ".win",
    ".bid",
    ".stream",
    ".download",
    ".gq",
    ".ml",
    ".cf",
    ".tk",
    ".ga",
]

COMMONLY_SPOOFED_BRANDS = [
    "paypal",
    "amazon",
    "apple",
    "microsoft",
    "google",
    "facebook",
    "netflix",
    "bank",
    "chase",
    "wellsfargo",
    "citibank",
    "usps",
    "fedex",
    "ups",
    "dhl",
    "irs",
    "gov",
    "dropbox",
    "linkedin",
]

# --- Stored message trimming ---
SUBJECT_LIMIT = 200
SNIPPET_LIMIT = 500
FLAGS_LIMIT = 5
FLAG_KEYWORDS_LIMIT = 5

# --- Retention caps per batch (medium, low) ---
ON_DEMAND_MEDIUM_CAP = 100
ON_DEMAND_LOW_CAP = 50
SCHEDULED_MEDIUM_CAP = 200
SCHEDULED_LOW_CAP = 100

# --- On-demand scans ---
ON_DEMAND_DEFAULT_MESSAGES = 10
ON_DEMAND_MAX_MESSAGES = 100

# --- Scheduler ---
SWEEP_INTERVAL_SECONDS = 300
SWEEP_INITIAL_DELAY_SECONDS = 10
INTER_USER_DELAY_SECONDS = 2.0
FIRST_RUN_QUERY = "in:inbox newer_than:7d"
FIRST_RUN_MAX_MESSAGES = 500

# --- Auto-scan settings ---
ALLOWED_SCAN_INTERVALS = (5, 15, 30, 60)
DEFAULT_SCAN_INTERVAL = 15
DEFAULT_AUTO_SCAN_ENABLED = True

# --- Display ---
HISTORY_LIMIT = 10
