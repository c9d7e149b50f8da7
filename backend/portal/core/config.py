from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Workforce Portal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://portal_user:portal_pass@db:5432/portal_db"

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12  # 12 hours (kiosk shift)

    # Time clock
    DEFAULT_DIVISION: str = "vendor"
    TIMECLOCK_MAX_ATTEMPTS: int = 3  # read-decide-write retries on a lost race
    OFFLINE_MAX_FUTURE_SKEW_SECONDS: int = 300

    # Events / kiosk feed
    EVENT_TIMEZONE: str = "UTC"
    EVENT_PREROLL_HOURS: int = 6  # early clock-ins still show on the feed
    RECENT_ACTIVITY_LIMIT: int = 50
    ROSTER_QUERY_LIMIT: int = 2000

    # Admin check-in monitor
    KIOSK_HEARTBEAT_WINDOW_SECONDS: int = 60
    ATTESTATION_LOOKBACK_HOURS: int = 24
    ATTESTATION_FORM_TYPE: str = "clock_out_attestation"

    # Check-in codes
    CHECKIN_CODE_TTL_HOURS: int = 24 * 30

    # App URL (frontend)
    APP_URL: str = "http://localhost:3000"
    FRONTEND_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
