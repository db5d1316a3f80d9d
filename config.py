import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as teletherapy.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "teletherapy.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "teletherapy_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 30 minutes
    IDLE_TIMEOUT_SECONDS = 30 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "AED")

    # Cancellation policy: inside this window a patient gets half back
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "24"))

    # Refunds are quantized to this many session units
    REFUND_STEP = os.getenv("REFUND_STEP", "0.1")

    # Therapist share of a session price, by tier
    PAYOUT_PERCENT_DEFAULT = os.getenv("PAYOUT_PERCENT_DEFAULT", "0.50")
    PAYOUT_PERCENT_SENIOR = os.getenv("PAYOUT_PERCENT_SENIOR", "0.57")

    # Parallel Stripe lookups for batch verification
    VERIFY_MAX_WORKERS = int(os.getenv("VERIFY_MAX_WORKERS", "8"))

    # Basic app settings
    DEBUG = False

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    BCRYPT_ROUNDS = 4
    VERIFY_MAX_WORKERS = 4
