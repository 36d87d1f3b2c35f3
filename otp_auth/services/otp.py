from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re
import secrets
from typing import Callable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from otp_auth.database import session_scope
from otp_auth.exceptions import (
    AlreadyUsed,
    AttemptsExceeded,
    Expired,
    NotFoundError,
    OtpAuthError,
    ValidationError,
)
from otp_auth.models.otp import OtpEntry
from otp_auth.services.dummy_otp import DummyOtpAccounts
from otp_auth.types import IdentifierType, OtpPurpose

LOGGER = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_PATTERN = re.compile(r"^[1-9]\d{1,14}$")

# Rounds of "read, then conditionally insert" before giving up on a slot.
_SLOT_RETRIES = 3

_NO_SYNC = {"synchronize_session": False}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class OtpRecord:
    id: int
    identifier: str
    identifier_type: IdentifierType
    code: str
    purpose: OtpPurpose
    attempts: int
    max_attempts: int
    is_used: bool
    expires_at: datetime
    session_token: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def is_locked(self) -> bool:
        return self.attempts >= self.max_attempts

    def is_active_at(self, moment: datetime) -> bool:
        return not self.is_used and self.expires_at > moment


@dataclass(frozen=True)
class ResendResult:
    code: str
    session_token: str
    expires_at: datetime
    is_new: bool
    record: OtpRecord


@dataclass(frozen=True)
class VerifyResult:
    valid: bool
    attempts_left: int


def detect_identifier_type(identifier: str) -> IdentifierType:
    if EMAIL_PATTERN.match(identifier.strip()):
        return IdentifierType.EMAIL
    return IdentifierType.MOBILE


def normalize_identifier(identifier: str, identifier_type: IdentifierType) -> str:
    cleaned = identifier.strip()
    if identifier_type == IdentifierType.EMAIL:
        cleaned = cleaned.lower()
        if not EMAIL_PATTERN.match(cleaned):
            raise ValidationError("Please provide a valid email address")
        return cleaned
    digits = re.sub(r"\D", "", cleaned)
    if not MOBILE_PATTERN.match(digits):
        raise ValidationError("Please provide a valid mobile number")
    return digits


def _to_record(entry: OtpEntry) -> OtpRecord:
    return OtpRecord(
        id=entry.id,
        identifier=entry.identifier,
        identifier_type=IdentifierType(entry.identifier_type),
        code=entry.code,
        purpose=OtpPurpose(entry.purpose),
        attempts=entry.attempts,
        max_attempts=entry.max_attempts,
        is_used=bool(entry.is_used),
        expires_at=as_utc(entry.expires_at),
        session_token=entry.session_token,
        created_at=as_utc(entry.created_at),
        updated_at=as_utc(entry.updated_at),
    )


def _slot_key(
    identifier: str, identifier_type: IdentifierType, purpose: OtpPurpose
) -> str:
    return f"{identifier_type.value}:{purpose.value}:{identifier}"


def _key_filters(
    identifier: str, identifier_type: IdentifierType, purpose: OtpPurpose
) -> tuple:
    return (
        OtpEntry.identifier == identifier,
        OtpEntry.identifier_type == identifier_type.value,
        OtpEntry.purpose == purpose.value,
    )


class OtpLifecycle:
    """Issues, reuses, verifies and retires OTP records.

    Every state change is a single conditional SQL statement so that request
    threads and the cleanup thread can share the store without extra locking.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        ttl_seconds: int = 600,
        code_length: int = 4,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
        dummy_accounts: Optional[DummyOtpAccounts] = None,
    ) -> None:
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._clock = clock
        self._dummy_accounts = dummy_accounts

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(
        self,
        identifier: str,
        identifier_type: IdentifierType | str,
        purpose: OtpPurpose | str,
    ) -> OtpRecord:
        identifier, identifier_type, purpose = self._validate(
            identifier, identifier_type, purpose
        )
        slot = _slot_key(identifier, identifier_type, purpose)
        for attempt in range(1, _SLOT_RETRIES + 1):
            now = self._clock()
            try:
                with session_scope(self._session_factory) as session:
                    superseded = session.execute(
                        update(OtpEntry)
                        .where(
                            *_key_filters(identifier, identifier_type, purpose),
                            OtpEntry.is_used.is_(False),
                            OtpEntry.expires_at > now,
                        )
                        .values(expires_at=now, active_slot=None, updated_at=now)
                        .execution_options(**_NO_SYNC)
                    ).rowcount
                    self._release_stale_slot(session, slot, now)
                    entry = self._new_entry(identifier, identifier_type, purpose, slot, now)
                    session.add(entry)
                    session.flush()
                    record = _to_record(entry)
            except IntegrityError:
                LOGGER.warning("OTP slot contended on issue (attempt %d)", attempt)
                continue
            if superseded:
                LOGGER.info("Superseded %d active OTP(s) for new issue", superseded)
            LOGGER.info(
                "Issued OTP id=%s type=%s purpose=%s",
                record.id,
                identifier_type.value,
                purpose.value,
            )
            return record
        raise OtpAuthError("Could not issue an OTP right now. Please try again.")

    def find_active(
        self,
        identifier: str,
        identifier_type: IdentifierType | str,
        purpose: OtpPurpose | str,
        session_token: Optional[str] = None,
    ) -> Optional[OtpRecord]:
        identifier, identifier_type, purpose = self._validate(
            identifier, identifier_type, purpose
        )
        now = self._clock()
        stmt = select(OtpEntry).where(
            *_key_filters(identifier, identifier_type, purpose),
            OtpEntry.is_used.is_(False),
            OtpEntry.expires_at > now,
        )
        if session_token:
            stmt = stmt.where(OtpEntry.session_token == session_token)
        stmt = stmt.order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc()).limit(1)
        with session_scope(self._session_factory) as session:
            entry = session.execute(stmt).scalars().first()
            return _to_record(entry) if entry is not None else None

    def find_latest(
        self,
        identifier: str,
        identifier_type: IdentifierType | str,
        purpose: OtpPurpose | str,
        session_token: Optional[str] = None,
        include_used: bool = False,
    ) -> Optional[OtpRecord]:
        """Latest record for the key, expired or not. Used records are skipped
        unless ``include_used`` is set."""
        identifier, identifier_type, purpose = self._validate(
            identifier, identifier_type, purpose
        )
        stmt = select(OtpEntry).where(*_key_filters(identifier, identifier_type, purpose))
        if not include_used:
            stmt = stmt.where(OtpEntry.is_used.is_(False))
        if session_token:
            stmt = stmt.where(OtpEntry.session_token == session_token)
        stmt = stmt.order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc()).limit(1)
        with session_scope(self._session_factory) as session:
            entry = session.execute(stmt).scalars().first()
            return _to_record(entry) if entry is not None else None

    def resend(
        self,
        identifier: str,
        identifier_type: IdentifierType | str,
        purpose: OtpPurpose | str,
    ) -> ResendResult:
        identifier, identifier_type, purpose = self._validate(
            identifier, identifier_type, purpose
        )
        slot = _slot_key(identifier, identifier_type, purpose)
        for attempt in range(1, _SLOT_RETRIES + 1):
            active = self.find_active(identifier, identifier_type, purpose)
            if active is not None:
                LOGGER.info("Reusing active OTP id=%s on resend", active.id)
                return ResendResult(
                    code=active.code,
                    session_token=active.session_token,
                    expires_at=active.expires_at,
                    is_new=False,
                    record=active,
                )
            now = self._clock()
            try:
                with session_scope(self._session_factory) as session:
                    self._release_stale_slot(session, slot, now)
                    entry = self._new_entry(identifier, identifier_type, purpose, slot, now)
                    session.add(entry)
                    session.flush()
                    record = _to_record(entry)
            except IntegrityError:
                LOGGER.info("Concurrent resend took the OTP slot (attempt %d)", attempt)
                continue
            LOGGER.info("Issued new OTP id=%s on resend", record.id)
            return ResendResult(
                code=record.code,
                session_token=record.session_token,
                expires_at=record.expires_at,
                is_new=True,
                record=record,
            )
        raise OtpAuthError("Could not resend the OTP right now. Please try again.")

    def verify(self, record: Optional[OtpRecord], supplied_code: str) -> VerifyResult:
        if record is None:
            raise NotFoundError("No active OTP found. Please request a new one.")
        supplied = str(supplied_code or "").strip()
        if not supplied:
            raise ValidationError("OTP is required")

        now = self._clock()
        with session_scope(self._session_factory) as session:
            entry = session.get(OtpEntry, record.id)
            self._ensure_verifiable(entry, now)

            if secrets.compare_digest(entry.code.encode(), supplied.encode()):
                consumed = session.execute(
                    update(OtpEntry)
                    .where(
                        OtpEntry.id == entry.id,
                        OtpEntry.is_used.is_(False),
                        OtpEntry.attempts < OtpEntry.max_attempts,
                        OtpEntry.expires_at > now,
                    )
                    .values(is_used=True, active_slot=None, updated_at=now)
                    .execution_options(**_NO_SYNC)
                ).rowcount
                session.refresh(entry)
                if not consumed:
                    self._ensure_verifiable(entry, now)
                    raise AlreadyUsed()
                LOGGER.info("OTP id=%s verified", entry.id)
                return VerifyResult(
                    valid=True, attempts_left=entry.max_attempts - entry.attempts
                )

            counted = session.execute(
                update(OtpEntry)
                .where(
                    OtpEntry.id == entry.id,
                    OtpEntry.is_used.is_(False),
                    OtpEntry.attempts < OtpEntry.max_attempts,
                )
                .values(attempts=OtpEntry.attempts + 1, updated_at=now)
                .execution_options(**_NO_SYNC)
            ).rowcount
            session.refresh(entry)
            if not counted:
                self._ensure_verifiable(entry, now)
            attempts_left = max(entry.max_attempts - entry.attempts, 0)
            LOGGER.warning(
                "Incorrect OTP for id=%s (%d attempt(s) left)", entry.id, attempts_left
            )
            return VerifyResult(valid=False, attempts_left=attempts_left)

    def mark_used(self, record: OtpRecord) -> OtpRecord:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            updated = session.execute(
                update(OtpEntry)
                .where(OtpEntry.id == record.id, OtpEntry.is_used.is_(False))
                .values(is_used=True, active_slot=None, updated_at=now)
                .execution_options(**_NO_SYNC)
            ).rowcount
            entry = session.get(OtpEntry, record.id)
            if entry is None:
                raise NotFoundError("OTP record not found")
            if not updated:
                raise AlreadyUsed()
            return _to_record(entry)

    def purge_expired(self) -> int:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            deleted = session.execute(
                delete(OtpEntry)
                .where(OtpEntry.expires_at < now)
                .execution_options(**_NO_SYNC)
            ).rowcount
        LOGGER.info("Deleted %d expired OTP records", deleted)
        return deleted

    def count_expired(self, now: Optional[datetime] = None) -> int:
        moment = now or self._clock()
        return self._count(OtpEntry.expires_at < moment)

    def count_valid(self, now: Optional[datetime] = None) -> int:
        moment = now or self._clock()
        return self._count(OtpEntry.is_used.is_(False), OtpEntry.expires_at > moment)

    def _count(self, *conditions) -> int:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(func.count()).select_from(OtpEntry).where(*conditions)
            ).scalar_one()

    def _validate(
        self,
        identifier: str,
        identifier_type: IdentifierType | str,
        purpose: OtpPurpose | str,
    ) -> tuple[str, IdentifierType, OtpPurpose]:
        if not identifier or not str(identifier).strip():
            raise ValidationError("Email or mobile number is required")
        if not identifier_type:
            raise ValidationError("Identifier type is required")
        if not purpose:
            raise ValidationError("OTP purpose is required")
        try:
            identifier_type = IdentifierType(identifier_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unsupported identifier type: {identifier_type}"
            ) from exc
        try:
            purpose = OtpPurpose(purpose)
        except ValueError as exc:
            raise ValidationError(f"Unsupported OTP purpose: {purpose}") from exc
        return normalize_identifier(str(identifier), identifier_type), identifier_type, purpose

    def _new_entry(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        purpose: OtpPurpose,
        slot: str,
        now: datetime,
    ) -> OtpEntry:
        return OtpEntry(
            identifier=identifier,
            identifier_type=identifier_type.value,
            code=self._generate_code(identifier),
            purpose=purpose.value,
            attempts=0,
            max_attempts=self._max_attempts,
            is_used=False,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
            session_token=secrets.token_hex(32),
            active_slot=slot,
            created_at=now,
            updated_at=now,
        )

    def _release_stale_slot(self, session, slot: str, now: datetime) -> None:
        session.execute(
            update(OtpEntry)
            .where(
                OtpEntry.active_slot == slot,
                or_(OtpEntry.is_used.is_(True), OtpEntry.expires_at <= now),
            )
            .values(active_slot=None, updated_at=now)
            .execution_options(**_NO_SYNC)
        )

    def _ensure_verifiable(self, entry: Optional[OtpEntry], now: datetime) -> None:
        if entry is None:
            raise NotFoundError("OTP record not found")
        if entry.is_used:
            raise AlreadyUsed()
        if entry.attempts >= entry.max_attempts:
            raise AttemptsExceeded()
        if as_utc(entry.expires_at) <= now:
            raise Expired()

    def _generate_code(self, identifier: str) -> str:
        if self._dummy_accounts is not None:
            dummy_code = self._dummy_accounts.code_for(identifier)
            if dummy_code is not None:
                return dummy_code
        value = secrets.randbelow(10**self._code_length)
        return str(value).zfill(self._code_length)
