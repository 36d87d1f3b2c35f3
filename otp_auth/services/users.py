from datetime import datetime, timezone
import logging
import re
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from otp_auth.database import session_scope
from otp_auth.exceptions import NotFoundError
from otp_auth.models.user import UserEntry
from otp_auth.schemas.users import UserResponse
from otp_auth.types import IdentifierType

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_country_code(country_code: str | None) -> str | None:
    if country_code is None:
        return None
    digits = re.sub(r"\D", "", country_code)
    if not digits:
        return None
    return f"+{digits}"


def _lookup(identifier: str, identifier_type: IdentifierType):
    if identifier_type == IdentifierType.EMAIL:
        return select(UserEntry).where(UserEntry.email == identifier)
    return (
        select(UserEntry)
        .where(UserEntry.mobile_number == identifier)
        .order_by(UserEntry.id)
        .limit(1)
    )


class UserStore:
    """User accounts. Identifiers arrive already normalized.

    Accounts are never deleted.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        default_country_code: str = "+91",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._default_country_code = _normalize_country_code(default_country_code)
        self._clock = clock

    def find_by_identifier(
        self, identifier: str, identifier_type: IdentifierType
    ) -> UserResponse | None:
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                _lookup(identifier, identifier_type)
            ).scalar_one_or_none()
            return self._to_response(entry) if entry is not None else None

    def find_or_create(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        country_code: str | None = None,
        full_name: str | None = None,
    ) -> tuple[UserResponse, bool]:
        existing = self.find_by_identifier(identifier, identifier_type)
        if existing is not None:
            return existing, False

        now = self._clock()
        is_email = identifier_type == IdentifierType.EMAIL
        entry = UserEntry(
            email=identifier if is_email else None,
            mobile_number=None if is_email else identifier,
            country_code=None
            if is_email
            else _normalize_country_code(country_code) or self._default_country_code,
            full_name=(full_name or "").strip() or "User",
            is_email_verified=False,
            is_mobile_verified=False,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        try:
            with session_scope(self._session_factory) as session:
                session.add(entry)
                session.flush()
                created = self._to_response(entry)
        except IntegrityError:
            # Another request registered the same identifier first.
            winner = self.find_by_identifier(identifier, identifier_type)
            if winner is None:
                raise
            return winner, False
        LOGGER.info("Created user id=%s via %s", created.id, identifier_type.value)
        return created, True

    def mark_login_verified(
        self, user_id: int, identifier_type: IdentifierType
    ) -> UserResponse:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                raise NotFoundError("User not found.")
            if identifier_type == IdentifierType.EMAIL:
                entry.is_email_verified = True
            else:
                entry.is_mobile_verified = True
            entry.last_login_at = now
            entry.updated_at = now
            session.flush()
            return self._to_response(entry)

    def get_user(self, user_id: int) -> UserResponse | None:
        with session_scope(self._session_factory) as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return self._to_response(entry)

    def update_profile(
        self, user_id: int, full_name: str, age: int, institution: str
    ) -> UserResponse:
        with session_scope(self._session_factory) as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                raise NotFoundError("User not found.")
            entry.full_name = full_name
            entry.age = age
            entry.institution = institution
            entry.updated_at = self._clock()
            session.flush()
            LOGGER.info("Profile updated for user id=%s", user_id)
            return self._to_response(entry)

    def _to_response(self, entry: UserEntry) -> UserResponse:
        return UserResponse(
            id=entry.id,
            email=entry.email,
            mobile_number=entry.mobile_number,
            country_code=entry.country_code,
            full_name=entry.full_name or "User",
            age=entry.age,
            institution=entry.institution,
            is_email_verified=bool(entry.is_email_verified),
            is_mobile_verified=bool(entry.is_mobile_verified),
            last_login_at=entry.last_login_at,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )
