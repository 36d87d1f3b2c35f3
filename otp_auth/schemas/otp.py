from typing import Optional

from pydantic import Field

from otp_auth.schemas.users import CamelModel, UserResponse
from otp_auth.types import IdentifierType

COUNTRY_CODE_PATTERN = r"^\+\d{1,4}$"


class LoginRequest(CamelModel):
    identifier: str = Field(min_length=3, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=100)
    country_code: Optional[str] = Field(default=None, pattern=COUNTRY_CODE_PATTERN)


class ResendOtpRequest(CamelModel):
    identifier: str = Field(min_length=3, max_length=255)
    country_code: Optional[str] = Field(default=None, pattern=COUNTRY_CODE_PATTERN)


class VerifyOtpRequest(CamelModel):
    identifier: str = Field(min_length=3, max_length=255)
    session_token: str = Field(min_length=32, max_length=128)
    otp: str = Field(min_length=1, max_length=12)


class DevelopmentInfo(CamelModel):
    is_dummy_account: bool = True
    dummy_otp: str
    note: str = "This is a test account. In production, OTP would be sent normally."


class LoginData(CamelModel):
    session_token: str
    identifier_type: IdentifierType
    expires_in: int
    development_info: Optional[DevelopmentInfo] = None


class LoginResponse(CamelModel):
    success: bool = True
    message: str
    data: LoginData


class ResendOtpResponse(CamelModel):
    success: bool = True
    message: str
    session_token: str
    identifier_type: IdentifierType
    expires_in: int
    is_resent: bool
    development_info: Optional[DevelopmentInfo] = None


class VerifyOtpResponse(CamelModel):
    success: bool = True
    message: str
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    user: UserResponse
