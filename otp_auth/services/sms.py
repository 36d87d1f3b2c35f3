from __future__ import annotations

import base64
import logging
import re
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from otp_auth.config import Settings
from otp_auth.exceptions import DeliveryError
from otp_auth.types import OtpPurpose

LOGGER = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsSendError(DeliveryError):
    pass


def normalize_e164(phone_number: str, default_country_code: str) -> str:
    digits = re.sub(r"\D", "", phone_number.strip())
    if not digits:
        raise SmsSendError("Phone number is missing")
    if len(digits) == 10:
        default_code = re.sub(r"\D", "", default_country_code)
        if not default_code:
            raise SmsSendError("Default country code is not configured")
        digits = f"{default_code}{digits}"
    if len(digits) < 10 or len(digits) > 15:
        raise SmsSendError("Phone number must include a valid country code")
    return f"+{digits}"


def build_body(code: str, purpose: OtpPurpose, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    label = OtpPurpose(purpose).value.replace("_", " ")
    return (
        f"Your verification code is {code}."
        f" It expires in {minutes} minute(s)."
        f" Requested for {label}."
    )


class TwilioSmsSender:
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_phone: str,
        ttl_seconds: int,
        default_country_code: str = "+91",
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_phone = from_phone
        self._ttl_seconds = ttl_seconds
        self._default_country_code = default_country_code

    @classmethod
    def from_settings(cls, config: Settings) -> TwilioSmsSender:
        return cls(
            account_sid=config.twilio_account_sid,
            auth_token=config.twilio_auth_token,
            from_phone=config.twilio_phone_number,
            ttl_seconds=config.otp_ttl_seconds,
            default_country_code=config.default_country_code,
        )

    def send(
        self,
        to_phone: str,
        code: str,
        purpose: OtpPurpose,
        country_code: str | None = None,
    ) -> None:
        if not self._account_sid or not self._auth_token or not self._from_phone:
            raise SmsSendError("Twilio is not configured")

        to_number = normalize_e164(to_phone, country_code or self._default_country_code)
        from_number = normalize_e164(self._from_phone, self._default_country_code)
        body = build_body(code, purpose, self._ttl_seconds)
        LOGGER.info("Sending OTP SMS to=%s from=%s", to_number, from_number)
        payload = urlencode({"To": to_number, "From": from_number, "Body": body}).encode(
            "utf-8"
        )
        token = base64.b64encode(
            f"{self._account_sid}:{self._auth_token}".encode("utf-8")
        ).decode("ascii")
        request = Request(
            TWILIO_MESSAGES_URL.format(sid=self._account_sid),
            data=payload,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=10) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Twilio API error to=%s response=%s", to_number, error_body)
            raise SmsSendError("Failed to send OTP SMS") from exc
        except URLError as exc:
            raise SmsSendError("Failed to reach Twilio API") from exc
