import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from otp_auth.dependencies import Services, get_bearer_token, get_services
from otp_auth.exceptions import AlreadyUsed, DeliveryError, Expired, NotFoundError
from otp_auth.limiter import LOGIN_LIMIT, RESEND_LIMIT, VERIFY_LIMIT, limiter
from otp_auth.schemas.otp import (
    DevelopmentInfo,
    LoginData,
    LoginRequest,
    LoginResponse,
    ResendOtpRequest,
    ResendOtpResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from otp_auth.schemas.tokens import TokenRefreshRequest, TokenRefreshResponse
from otp_auth.services.otp import detect_identifier_type, normalize_identifier
from otp_auth.services.tokens import TokenError
from otp_auth.types import IdentifierType, OtpPurpose

LOGGER = logging.getLogger(__name__)

LOGIN_INITIATED = "Login initiated. OTP sent to your email/mobile."
OTP_RESENT = "OTP resent successfully. Please check your email/mobile."
OTP_INVALID = "OTP you entered is incorrect"

router = APIRouter(tags=["auth"])


def _identify(raw_identifier: str) -> tuple[str, IdentifierType]:
    identifier_type = detect_identifier_type(raw_identifier)
    return normalize_identifier(raw_identifier, identifier_type), identifier_type


def _deliver(
    services: Services,
    identifier: str,
    identifier_type: IdentifierType,
    code: str,
    country_code: Optional[str] = None,
) -> Optional[DevelopmentInfo]:
    if services.dummy_accounts.is_dummy_account(identifier):
        LOGGER.info("Skipping OTP delivery for dummy account %s", identifier)
        if services.config.is_production:
            return None
        return DevelopmentInfo(dummy_otp=code)
    try:
        services.dispatcher.send(
            identifier, identifier_type, code, OtpPurpose.LOGIN, country_code
        )
    except DeliveryError as exc:
        # The record stays in place; resend-otp picks it up again.
        LOGGER.error("OTP delivery failed via %s: %s", identifier_type.value, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send OTP. Please try again.",
        ) from exc
    return None


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(LOGIN_LIMIT)
def login(
    request: Request,
    payload: LoginRequest,
    services: Services = Depends(get_services),
) -> LoginResponse:
    identifier, identifier_type = _identify(payload.identifier)
    user, created = services.users.find_or_create(
        identifier, identifier_type, payload.country_code, payload.full_name
    )
    record = services.otp.issue(identifier, identifier_type, OtpPurpose.LOGIN)
    development_info = _deliver(
        services, identifier, identifier_type, record.code, user.country_code
    )
    services.audit.record(
        "login_initiated",
        f"user_id={user.id} via={identifier_type.value} new_user={created}",
    )
    return LoginResponse(
        message=LOGIN_INITIATED,
        data=LoginData(
            session_token=record.session_token,
            identifier_type=identifier_type,
            expires_in=services.otp.ttl_seconds,
            development_info=development_info,
        ),
    )


@router.post(
    "/resend-otp", response_model=ResendOtpResponse, response_model_exclude_none=True
)
@limiter.limit(RESEND_LIMIT)
def resend_otp(
    request: Request,
    payload: ResendOtpRequest,
    services: Services = Depends(get_services),
) -> ResendOtpResponse:
    identifier, identifier_type = _identify(payload.identifier)
    user = services.users.find_by_identifier(identifier, identifier_type)
    if user is None:
        raise NotFoundError("User not found.")
    result = services.otp.resend(identifier, identifier_type, OtpPurpose.LOGIN)
    development_info = _deliver(
        services,
        identifier,
        identifier_type,
        result.code,
        payload.country_code or user.country_code,
    )
    remaining = (result.expires_at - services.clock()).total_seconds()
    return ResendOtpResponse(
        message=LOGIN_INITIATED if result.is_new else OTP_RESENT,
        session_token=result.session_token,
        identifier_type=identifier_type,
        expires_in=max(int(remaining), 0),
        is_resent=not result.is_new,
        development_info=development_info,
    )


@router.post("/verify-otp", response_model=VerifyOtpResponse)
@limiter.limit(VERIFY_LIMIT)
def verify_otp(
    request: Request,
    payload: VerifyOtpRequest,
    services: Services = Depends(get_services),
):
    identifier, identifier_type = _identify(payload.identifier)
    record = services.otp.find_active(
        identifier, identifier_type, OtpPurpose.LOGIN, payload.session_token
    )
    if record is None:
        latest = services.otp.find_latest(
            identifier,
            identifier_type,
            OtpPurpose.LOGIN,
            payload.session_token,
            include_used=True,
        )
        if latest is None:
            raise NotFoundError("No active OTP found. Please request a new one.")
        if latest.is_used:
            raise AlreadyUsed()
        raise Expired()

    user = services.users.find_by_identifier(identifier, identifier_type)
    if user is None:
        raise NotFoundError("User not found.")
    result = services.otp.verify(record, payload.otp)
    if not result.valid:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": OTP_INVALID,
                "type": "OTP_INVALID",
                "attemptsLeft": result.attempts_left,
            },
        )

    user = services.users.mark_login_verified(user.id, identifier_type)
    session_id = services.sessions.create_session(user.id)
    try:
        access_token = services.tokens.create_access_token(
            user.id, session_id, identifier_type
        )
        refresh_token = services.tokens.create_refresh_token(user.id, session_id)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    services.audit.record("login_verified", f"user_id={user.id}")
    return VerifyOtpResponse(
        message="Successfully logged In.",
        token=access_token,
        refresh_token=refresh_token,
        expires_in=services.tokens.access_expires_in,
        refresh_expires_in=services.tokens.refresh_expires_in,
        user=user,
    )


@router.post("/auth/refresh", response_model=TokenRefreshResponse)
def refresh_token(
    payload: TokenRefreshRequest,
    services: Services = Depends(get_services),
) -> TokenRefreshResponse:
    try:
        refresh_data = services.tokens.decode_refresh_token(payload.refresh_token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    user_id = services.sessions.get_user_id(refresh_data.session_id)
    if user_id is None or user_id != refresh_data.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )
    try:
        access_token = services.tokens.create_access_token(
            refresh_data.user_id, refresh_data.session_id
        )
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    return TokenRefreshResponse(
        token=access_token,
        expires_in=services.tokens.access_expires_in,
    )


@router.post("/logout")
def logout(
    token: str = Depends(get_bearer_token),
    services: Services = Depends(get_services),
) -> dict:
    try:
        refresh_data = services.tokens.decode_refresh_token(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    if not services.sessions.revoke_session(refresh_data.session_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    services.audit.record("logout", f"user_id={refresh_data.user_id}")
    return {"success": True, "message": "Logout successful"}
