from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from otp_auth.config import Settings
from otp_auth.types import IdentifierType


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class AccessTokenData:
    user_id: int
    session_id: str
    identifier_type: Optional[IdentifierType] = None


@dataclass(frozen=True)
class RefreshTokenData:
    user_id: int
    session_id: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        *,
        access_minutes: int = 1440,
        refresh_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._access_minutes = access_minutes
        self._refresh_days = refresh_days
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Settings) -> TokenService:
        return cls(
            config.jwt_secret,
            config.jwt_algorithm,
            access_minutes=config.access_token_expire_minutes,
            refresh_days=config.refresh_token_expire_days,
        )

    @property
    def access_expires_in(self) -> int:
        return self._access_minutes * 60

    @property
    def refresh_expires_in(self) -> int:
        return self._refresh_days * 86400

    def create_access_token(
        self,
        user_id: int,
        session_id: str,
        identifier_type: Optional[IdentifierType] = None,
    ) -> str:
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "sid": session_id,
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=self._access_minutes)).timestamp()),
        }
        if identifier_type is not None:
            payload["identifier_type"] = IdentifierType(identifier_type).value
        return self._encode(payload)

    def create_refresh_token(self, user_id: int, session_id: str) -> str:
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "jti": session_id,
            "type": "refresh",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(days=self._refresh_days)).timestamp()),
        }
        return self._encode(payload)

    def decode_access_token(self, token: str) -> AccessTokenData:
        payload = self._decode(token, expected_type="access")
        session_id = payload.get("sid")
        if not session_id:
            raise TokenError("Access token is missing session id")
        raw_type = payload.get("identifier_type")
        try:
            identifier_type = IdentifierType(raw_type) if raw_type else None
        except ValueError as exc:
            raise TokenError("Invalid identifier type in token") from exc
        return AccessTokenData(
            user_id=_parse_subject(payload),
            session_id=session_id,
            identifier_type=identifier_type,
        )

    def decode_refresh_token(self, token: str) -> RefreshTokenData:
        payload = self._decode(token, expected_type="refresh")
        session_id = payload.get("jti")
        if not session_id:
            raise TokenError("Refresh token is missing session id")
        return RefreshTokenData(user_id=_parse_subject(payload), session_id=session_id)

    def _encode(self, payload: dict) -> str:
        if not self._secret:
            raise TokenError("JWT secret is not configured")
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str, expected_type: str) -> dict:
        if not token:
            raise TokenError("Token is missing")
        if not self._secret:
            raise TokenError("JWT secret is not configured")
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Invalid token") from exc
        if payload.get("type") != expected_type:
            raise TokenError("Invalid token type")
        return payload


def _parse_subject(payload: dict) -> int:
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token subject is missing")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise TokenError("Invalid token subject") from exc
