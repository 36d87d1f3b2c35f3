from typing import Optional


class OtpAuthError(Exception):
    status_code = 400
    error_type = "OTP_AUTH_ERROR"
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(OtpAuthError):
    error_type = "VALIDATION_ERROR"
    default_message = "Invalid input"


class NotFoundError(OtpAuthError):
    status_code = 404
    error_type = "NOT_FOUND"
    default_message = "Record not found"


class AttemptsExceeded(OtpAuthError):
    error_type = "OTP_ATTEMPTS_EXCEEDED"
    default_message = "Too many incorrect attempts. Please request a new OTP."


class AlreadyUsed(OtpAuthError):
    error_type = "OTP_ALREADY_USED"
    default_message = "OTP has already been used. Please request a new OTP."


class Expired(OtpAuthError):
    error_type = "OTP_EXPIRED"
    default_message = "OTP expired, please resend."


class SafetyVerificationFailed(OtpAuthError):
    status_code = 500
    error_type = "SAFETY_VERIFICATION_FAILED"
    default_message = "Cleanup pre-flight verification failed"

    def __init__(self, issues: list[str]) -> None:
        super().__init__("; ".join(issues) or self.default_message)
        self.issues = list(issues)


class DeliveryError(RuntimeError):
    """An OTP could not be handed to the email or SMS provider."""
