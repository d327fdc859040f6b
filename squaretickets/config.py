import os

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./tickets.db")

SQUARE_EMAIL = os.environ.get("SQUARE_EMAIL", "")
SQUARE_PASSWORD = os.environ.get("SQUARE_PASSWORD", "")
SQUARE_TIMEOUT = float(os.getenv("SQUARE_TIMEOUT", "10"))

POLL = os.getenv("POLL", "1").lower() not in ("0", "false", "no", "off")
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "10"))
STALE_AFTER_SECONDS = float(os.getenv("STALE_AFTER_SECONDS", str(24 * 3600)))

CURRENCY = os.getenv("CURRENCY", "CAD")
PRICE_INDIVIDUAL = int(os.getenv("PRICE_INDIVIDUAL", "2500"))  # cents
PRICE_GROUP = int(os.getenv("PRICE_GROUP", "8000"))  # cents
MAX_TICKETS = int(os.getenv("MAX_TICKETS", "18"))

EVENT_NAME = os.getenv(
    "EVENT_NAME", "Happily Ever After - CSSS Year End Gala"
)
PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8383")

MAIL_BACKEND = os.getenv("MAIL_BACKEND", "log").lower()  # 'log' | 'mailgun'
MAILGUN_DOMAIN = os.getenv("MAILGUN_DOMAIN", "ubccsss.org")
MAILGUN_API_KEY = os.getenv("MAILGUN_API_KEY", "")
MAIL_SENDER = os.getenv("MAIL_SENDER", "UBC CSSS <noreply@ubccsss.org>")

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")
