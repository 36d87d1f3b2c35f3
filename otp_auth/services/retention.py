from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace

from otp_auth.config import Settings
from otp_auth.exceptions import ValidationError

PINNED_FLAGS = ("clean_user_accounts", "clean_valid_otps")


@dataclass(frozen=True)
class RetentionPolicy:
    clean_expired_otps: bool = True
    clean_old_logs: bool = False
    interval_minutes: float = 30
    log_retention_days: int = 30
    expired_warning_threshold: int = 10_000
    initial_delay_seconds: float = 60

    def __post_init__(self) -> None:
        if self.interval_minutes <= 0:
            raise ValidationError("Cleanup interval must be positive")
        if self.log_retention_days < 1:
            raise ValidationError("Log retention must be at least one day")
        if self.initial_delay_seconds < 0:
            raise ValidationError("Initial cleanup delay cannot be negative")

    @property
    def clean_user_accounts(self) -> bool:
        return False

    @property
    def clean_valid_otps(self) -> bool:
        return False

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @classmethod
    def from_settings(cls, config: Settings) -> RetentionPolicy:
        return cls(
            clean_expired_otps=config.cleanup_expired_otps,
            clean_old_logs=config.cleanup_old_logs,
            interval_minutes=config.cleanup_interval_minutes,
            log_retention_days=config.log_retention_days,
            expired_warning_threshold=config.cleanup_expired_warning_threshold,
            initial_delay_seconds=config.cleanup_initial_delay_seconds,
        )

    def updated(self, **changes) -> RetentionPolicy:
        pinned = sorted(set(changes) & set(PINNED_FLAGS))
        if pinned:
            raise ValidationError(
                f"Retention flags {', '.join(pinned)} are fixed to False"
            )
        known = {field.name for field in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValidationError(f"Unknown retention settings: {', '.join(unknown)}")
        return replace(self, **changes)

    def emergency_disable_all(self) -> RetentionPolicy:
        return replace(self, clean_expired_otps=False, clean_old_logs=False)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["clean_user_accounts"] = self.clean_user_accounts
        data["clean_valid_otps"] = self.clean_valid_otps
        return data

    def describe(self) -> dict:
        if self.clean_expired_otps:
            expired = "Deleted once past expiry, on the next sweep"
        else:
            expired = "Retained (expired OTP cleanup disabled)"
        if self.clean_old_logs:
            logs = (
                f"Application log entries older than {self.log_retention_days} "
                "days are deleted"
            )
        else:
            logs = "Retained (log cleanup disabled)"
        return {
            "policy": "Only expired data is removed; user data is never deleted",
            "interval_minutes": self.interval_minutes,
            "data_retention": {
                "user_accounts": "Never deleted",
                "valid_otps": "Never deleted",
                "expired_otps": expired,
                "logs": logs,
            },
        }
