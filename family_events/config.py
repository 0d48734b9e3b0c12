"""Configuration and settings."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = PROJECT_ROOT / "output"
MOCK_INBOX_PATH = DATA_DIR / "gmail_inbox.json"
MOCK_SENT_PATH = OUTPUT_DIR / "sent_messages.json"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'family_events.sqlite'}")

# Logging
LOG_DIR = OUTPUT_DIR / "logs"
LOG_FILE = LOG_DIR / "app.jsonl"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = os.getenv("VERBOSE_LOGGING", "false").lower() == "true"

# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# OpenTelemetry
TRACING_ENABLED = os.getenv("TRACING_ENABLED", "false").lower() == "true"
OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv(
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "http://localhost:4318/v1/traces",
)
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "family-event-approvals")
OTEL_API_KEY = os.getenv("OTEL_API_KEY", "")
DEPLOYMENT_ENVIRONMENT = os.getenv("DEPLOYMENT_ENVIRONMENT", "development")

# Google OAuth (Gmail channel)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/oauth/google/callback")
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
]
OAUTH_PROVIDER_GOOGLE = "google"
# Tokens expiring within this many seconds count as expired
TOKEN_EXPIRY_BUFFER_SECONDS = int(os.getenv("TOKEN_EXPIRY_BUFFER_SECONDS", "300"))

# Gmail API / push notifications
GMAIL_API_TIMEOUT_SECONDS = float(os.getenv("GMAIL_API_TIMEOUT_SECONDS", "30"))
GMAIL_PUSH_AUDIENCE = os.getenv("GMAIL_PUSH_AUDIENCE", "").rstrip("/")
GMAIL_PUSH_SERVICE_ACCOUNT = os.getenv("GMAIL_PUSH_SERVICE_ACCOUNT", "")
GMAIL_PUSH_VERIFY = os.getenv("GMAIL_PUSH_VERIFY", "true").lower() == "true"
GMAIL_PUBSUB_TOPIC = os.getenv("GMAIL_PUBSUB_TOPIC", "")
GMAIL_FALLBACK_LOOKBACK_MINUTES = int(os.getenv("GMAIL_FALLBACK_LOOKBACK_MINUTES", "60"))
GMAIL_FALLBACK_MAX_MESSAGES = int(os.getenv("GMAIL_FALLBACK_MAX_MESSAGES", "10"))

# Twilio (SMS channel)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")
TWILIO_MESSAGING_SERVICE_SID = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "")
TWILIO_TIMEOUT_SECONDS = float(os.getenv("TWILIO_TIMEOUT_SECONDS", "10"))
TWILIO_VERIFY_SIGNATURE = os.getenv("TWILIO_VERIFY_SIGNATURE", "false").lower() == "true"
# Public URL Twilio posts to; signatures are computed over it
SMS_WEBHOOK_URL = os.getenv("SMS_WEBHOOK_URL", "")

# Proposals and replies
DEFAULT_CHANNEL = os.getenv("DEFAULT_CHANNEL", "sms").lower()
EVENTS_PER_DAY_MAX = int(os.getenv("EVENTS_PER_DAY_MAX", "3"))
APPROVAL_REPLY_WINDOW_HOURS = int(os.getenv("APPROVAL_REPLY_WINDOW_HOURS", "24"))
REMINDER_AFTER_HOURS = int(os.getenv("REMINDER_AFTER_HOURS", "12"))
EXPIRE_AFTER_HOURS = int(os.getenv("EXPIRE_AFTER_HOURS", "24"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "900"))

# Webhook
WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "8000"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

# Idempotence cache for inbound message ids
PROCESSED_CACHE_MAX = int(os.getenv("PROCESSED_CACHE_MAX", "1000"))

# Rendering
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "America/Los_Angeles")
DEFAULT_EVENT_LOCATION = os.getenv("DEFAULT_EVENT_LOCATION", "San Francisco, CA")
ASSISTANT_SIGNATURE = os.getenv("ASSISTANT_SIGNATURE", "Your Family Event Assistant")
EMAIL_MESSAGE_ID_DOMAIN = os.getenv("EMAIL_MESSAGE_ID_DOMAIN", "family-events.local")

# Providers: "gmail" | "mock" and "twilio" | "mock"; default to the real one when its credentials are set
MAIL_PROVIDER = os.getenv("MAIL_PROVIDER", "gmail" if GOOGLE_CLIENT_ID else "mock").lower()
SMS_PROVIDER = os.getenv("SMS_PROVIDER", "twilio" if TWILIO_ACCOUNT_SID else "mock").lower()
# User id whose mailbox sends proposal emails (default: first active admin)
MAIL_SENDER_USER_ID = int(os.getenv("MAIL_SENDER_USER_ID", "0")) or None
