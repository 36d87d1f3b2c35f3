from enum import Enum


class IdentifierType(str, Enum):
    EMAIL = "email"
    MOBILE = "mobile"


class OtpPurpose(str, Enum):
    LOGIN = "login"
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
