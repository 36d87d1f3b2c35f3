from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import sessionmaker

from otp_auth.config import Settings
from otp_auth.services.audit import AuditLogStore
from otp_auth.services.cleanup import CleanupScheduler
from otp_auth.services.delivery import OtpDispatcher
from otp_auth.services.dummy_otp import DummyOtpAccounts
from otp_auth.services.otp import OtpLifecycle, utcnow
from otp_auth.services.retention import RetentionPolicy
from otp_auth.services.sessions import SessionStore
from otp_auth.services.tokens import AccessTokenData, TokenError, TokenService
from otp_auth.services.users import UserStore


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    config: Settings
    session_factory: Optional[sessionmaker]
    otp: OtpLifecycle
    users: UserStore
    sessions: SessionStore
    tokens: TokenService
    dispatcher: OtpDispatcher
    dummy_accounts: DummyOtpAccounts
    audit: AuditLogStore
    scheduler: CleanupScheduler
    clock: Callable[[], datetime] = utcnow

    @classmethod
    def build(
        cls,
        config: Settings,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
        dispatcher: Optional[OtpDispatcher] = None,
    ) -> Services:
        dummy_accounts = DummyOtpAccounts.from_settings(config)
        lifecycle = OtpLifecycle(
            session_factory,
            ttl_seconds=config.otp_ttl_seconds,
            code_length=config.otp_length,
            max_attempts=config.otp_max_attempts,
            clock=clock,
            dummy_accounts=dummy_accounts,
        )
        audit = AuditLogStore(session_factory, clock=clock)
        return cls(
            config=config,
            session_factory=session_factory,
            otp=lifecycle,
            users=UserStore(
                session_factory,
                default_country_code=config.default_country_code,
                clock=clock,
            ),
            sessions=SessionStore(
                session_factory,
                refresh_days=config.refresh_token_expire_days,
                clock=clock,
            ),
            tokens=TokenService.from_settings(config),
            dispatcher=dispatcher or OtpDispatcher.from_settings(config),
            dummy_accounts=dummy_accounts,
            audit=audit,
            scheduler=CleanupScheduler(
                lifecycle,
                RetentionPolicy.from_settings(config),
                log_store=audit,
                clock=clock,
            ),
            clock=clock,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header",
        )
    return token


def get_access_token_data(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> AccessTokenData:
    token = _bearer_token(authorization)
    try:
        token_data = services.tokens.decode_access_token(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    if services.sessions.get_user_id(token_data.session_id) != token_data.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session is no longer valid",
        )
    return token_data


def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    return _bearer_token(authorization)
