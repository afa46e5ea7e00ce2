import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to this file as slotguard.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "slotguard.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SQLite only: wait for the write lock instead of failing fast,
    # and let request threads share pooled connections
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": 30, "check_same_thread": False}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {"pool_pre_ping": True}
    )

    # Booking arbitration
    BOOKING_LOCK_TIMEOUT_SECONDS = float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "5"))
    BOOKING_LOCK_RETRIES = int(os.getenv("BOOKING_LOCK_RETRIES", "1"))
    BOOKING_STORAGE_RETRIES = int(os.getenv("BOOKING_STORAGE_RETRIES", "2"))
    BOOKING_RETRY_BACKOFF_SECONDS = float(os.getenv("BOOKING_RETRY_BACKOFF_SECONDS", "0.05"))
    BOOKING_RETRY_AFTER_SECONDS = 1     # Retry-After sent with 503 answers

    # Gateway deduplication (Idempotency-Key header)
    IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", str(24 * 60 * 60)))

    # Provider/admin endpoints (unset disables them)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
