from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(CamelModel):
    id: int
    email: Optional[str] = None
    mobile_number: Optional[str] = None
    country_code: Optional[str] = None
    full_name: str
    age: Optional[int] = None
    institution: Optional[str] = None
    is_email_verified: bool = False
    is_mobile_verified: bool = False
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(CamelModel):
    full_name: str = Field(min_length=2, max_length=100)
    age: int = Field(ge=1, le=150)
    institution: str = Field(min_length=2, max_length=200)

    @field_validator("full_name", "institution", mode="before")
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class UserEnvelope(CamelModel):
    user: UserResponse


class ProfileResponse(CamelModel):
    success: bool = True
    message: str
    data: UserEnvelope
