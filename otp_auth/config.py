import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _build_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "") or "sqlite:///./otp_auth.db"
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


@dataclass(frozen=True)
class Settings:
    app_env: str = os.getenv("APP_ENV", "dev").strip().lower()
    database_url: str = _build_database_url()
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    cors_origins: tuple[str, ...] = _env_list(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    )

    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440")
    )
    refresh_token_expire_days: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))

    otp_length: int = int(os.getenv("OTP_LENGTH", "4"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "600"))
    otp_max_attempts: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "+91")

    cleanup_enabled: bool = _env_bool("CLEANUP_ENABLED", True)
    cleanup_interval_minutes: int = int(os.getenv("CLEANUP_INTERVAL_MINUTES", "30"))
    cleanup_initial_delay_seconds: int = int(
        os.getenv("CLEANUP_INITIAL_DELAY_SECONDS", "60")
    )
    cleanup_expired_otps: bool = _env_bool("CLEANUP_EXPIRED_OTPS", True)
    cleanup_old_logs: bool = _env_bool("CLEANUP_OLD_LOGS", False)
    log_retention_days: int = int(os.getenv("LOG_RETENTION_DAYS", "30"))
    cleanup_expired_warning_threshold: int = int(
        os.getenv("CLEANUP_EXPIRED_WARNING_THRESHOLD", "10000")
    )

    rate_limit_enabled: bool = _env_bool("RATE_LIMIT_ENABLED", True)

    enable_dummy_otp: bool = _env_bool("ENABLE_DUMMY_OTP", False)
    dummy_otp: str = os.getenv("DUMMY_OTP", "1234")
    dummy_mobile_number: str = os.getenv("DUMMY_MOBILE_NUMBER", "1234567899")
    dummy_email: str = os.getenv("DUMMY_EMAIL", "abc@gmail.com").strip().lower()
    dummy_otp_environments: tuple[str, ...] = _env_list(
        "DUMMY_OTP_ENVIRONMENTS", "dev,staging"
    )

    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    otp_email_subject: str = os.getenv("OTP_EMAIL_SUBJECT", "Your login OTP")
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv("GMAIL_CREDENTIALS_FILE", "")
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )

    @property
    def is_production(self) -> bool:
        return self.app_env in {"production", "prod"}


settings = Settings()
