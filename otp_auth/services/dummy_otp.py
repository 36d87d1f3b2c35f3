from __future__ import annotations

import logging

from otp_auth.config import Settings

LOGGER = logging.getLogger(__name__)


class DummyOtpAccounts:
    """Fixed-code test accounts for local and staging environments.

    A configured email and mobile number receive ``dummy_otp`` instead of a
    random code and skip real delivery. Never active in production, even when
    the flag is set.
    """

    def __init__(
        self,
        enabled: bool,
        code: str,
        mobile_number: str,
        email: str,
        allowed_environments: tuple[str, ...],
        current_environment: str,
    ) -> None:
        self._enabled = enabled
        self._code = code
        self._mobile_number = mobile_number.strip()
        self._email = email.strip().lower()
        self._allowed_environments = tuple(allowed_environments)
        self._current_environment = current_environment

    @classmethod
    def from_settings(cls, config: Settings) -> DummyOtpAccounts:
        return cls(
            enabled=config.enable_dummy_otp,
            code=config.dummy_otp,
            mobile_number=config.dummy_mobile_number,
            email=config.dummy_email,
            allowed_environments=config.dummy_otp_environments,
            current_environment=config.app_env,
        )

    @property
    def _is_production(self) -> bool:
        return self._current_environment in {"production", "prod"}

    def is_active(self) -> bool:
        if self._is_production and self._enabled:
            LOGGER.error("Dummy OTP is enabled in production; refusing to use it")
            return False
        return self._enabled and self._current_environment in self._allowed_environments

    def is_dummy_account(self, identifier: str) -> bool:
        if not self.is_active():
            return False
        normalized = identifier.strip().lower()
        return normalized in {self._mobile_number, self._email}

    def code_for(self, identifier: str) -> str | None:
        if not self.is_dummy_account(identifier):
            return None
        LOGGER.info("Using dummy OTP for test account %s", identifier)
        return self._code

    def status(self) -> dict:
        return {
            "enabled": self._enabled,
            "safe_for_environment": self.is_active(),
            "current_environment": self._current_environment,
            "allowed_environments": list(self._allowed_environments),
            "dummy_accounts": {
                "mobile": self._mobile_number,
                "email": self._email,
            },
            "security_warnings": self.security_warnings(),
        }

    def security_warnings(self) -> list[str]:
        warnings = []
        if self._is_production and self._enabled:
            warnings.append("CRITICAL: Dummy OTP enabled in production")
        if self._enabled and self._current_environment not in self._allowed_environments:
            warnings.append(
                f"Environment {self._current_environment} not in allowed list: "
                f"{', '.join(self._allowed_environments)}"
            )
        return warnings

    def emergency_disable(self) -> None:
        self._enabled = False
        LOGGER.warning("Dummy OTP accounts have been disabled")
