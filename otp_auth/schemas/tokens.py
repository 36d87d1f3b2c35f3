from pydantic import Field

from otp_auth.schemas.users import CamelModel


class TokenRefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=10, max_length=2048)


class TokenRefreshResponse(CamelModel):
    success: bool = True
    token: str
    token_type: str = "bearer"
    expires_in: int
