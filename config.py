import os

from dotenv import load_dotenv

load_dotenv()

class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Auth ---
    JWT_SECRET = os.environ.get("JWT_SECRET")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    AUTH_COOKIE_NAME = os.environ.get("AUTH_COOKIE_NAME", "auth-token")

    # --- Lease windows (seconds) ---
    CLAIM_LEASE_SECONDS = int(os.environ.get("CLAIM_LEASE_SECONDS", "60"))
    PROCESSING_LEASE_SECONDS = int(os.environ.get("PROCESSING_LEASE_SECONDS", "120"))
    EXECUTION_DEBOUNCE_SECONDS = int(os.environ.get("EXECUTION_DEBOUNCE_SECONDS", "60"))
    STUCK_AFTER_SECONDS = int(os.environ.get("STUCK_AFTER_SECONDS", "300"))

    # --- Retry policy ---
    MAX_RETRIES = int(os.environ.get("MAX_RETRIES", "3"))
    RETRY_DELAY_SECONDS = int(os.environ.get("RETRY_DELAY_SECONDS", "300"))

    # A computed next run further out than this is treated as "done"
    COMPLETION_HORIZON_YEARS = int(os.environ.get("COMPLETION_HORIZON_YEARS", "50"))

    # --- Executor polling ---
    DUE_LOOKAHEAD_SECONDS = int(os.environ.get("DUE_LOOKAHEAD_SECONDS", "300"))
    DUE_LIMIT = int(os.environ.get("DUE_LIMIT", "10"))

    # --- Background sweep ---
    SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "60"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
