from __future__ import annotations

import logging
from typing import Optional, Protocol

from otp_auth.config import Settings
from otp_auth.services.email import GmailOtpSender
from otp_auth.services.sms import TwilioSmsSender
from otp_auth.types import IdentifierType, OtpPurpose

LOGGER = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(self, to_email: str, code: str, purpose: OtpPurpose) -> None: ...


class SmsSender(Protocol):
    def send(
        self,
        to_phone: str,
        code: str,
        purpose: OtpPurpose,
        country_code: Optional[str] = None,
    ) -> None: ...


class OtpDispatcher:
    """Routes a plaintext code to the email or SMS channel.

    Raises ``DeliveryError`` subclasses when the provider refuses or cannot be
    reached.
    """

    def __init__(self, email_sender: EmailSender, sms_sender: SmsSender) -> None:
        self._email_sender = email_sender
        self._sms_sender = sms_sender

    @classmethod
    def from_settings(cls, config: Settings) -> OtpDispatcher:
        return cls(
            GmailOtpSender.from_settings(config),
            TwilioSmsSender.from_settings(config),
        )

    def send(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        code: str,
        purpose: OtpPurpose,
        country_code: Optional[str] = None,
    ) -> None:
        if identifier_type == IdentifierType.EMAIL:
            self._email_sender.send(identifier, code, purpose)
        else:
            self._sms_sender.send(identifier, code, purpose, country_code)
        LOGGER.info("OTP dispatched via %s", identifier_type.value)
