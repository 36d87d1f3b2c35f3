from datetime import timedelta
import threading

import pytest

from otp_auth.exceptions import (
    AlreadyUsed,
    AttemptsExceeded,
    Expired,
    NotFoundError,
    ValidationError,
)
from otp_auth.services.dummy_otp import DummyOtpAccounts
from otp_auth.services.otp import (
    OtpLifecycle,
    detect_identifier_type,
    normalize_identifier,
)
from otp_auth.types import IdentifierType, OtpPurpose

EMAIL = "student@example.com"


def _wrong(code: str) -> str:
    return "0000" if code != "0000" else "1111"


def _issue(lifecycle, identifier=EMAIL, identifier_type="email", purpose="login"):
    return lifecycle.issue(identifier, identifier_type, purpose)


def test_issue_creates_active_record(lifecycle, clock):
    record = _issue(lifecycle)

    assert record.identifier == EMAIL
    assert record.identifier_type is IdentifierType.EMAIL
    assert record.purpose is OtpPurpose.LOGIN
    assert len(record.code) == 4 and record.code.isdigit()
    assert len(record.session_token) == 64
    assert record.attempts == 0
    assert record.max_attempts == 3
    assert record.is_used is False
    assert record.expires_at == clock() + timedelta(seconds=600)
    assert record.is_active_at(clock())


def test_issue_normalizes_identifier(lifecycle):
    record = _issue(lifecycle, identifier="  Student@Example.COM ")
    assert record.identifier == EMAIL

    mobile = _issue(lifecycle, identifier="98765 43210", identifier_type="mobile")
    assert mobile.identifier == "9876543210"


@pytest.mark.parametrize(
    "identifier, identifier_type, purpose",
    [
        ("", "email", "login"),
        ("   ", "email", "login"),
        ("not-an-email", "email", "login"),
        ("0123", "mobile", "login"),
        (EMAIL, "fax", "login"),
        (EMAIL, "email", "unknown"),
        (EMAIL, "", "login"),
        (EMAIL, "email", ""),
    ],
)
def test_issue_rejects_invalid_input(lifecycle, identifier, identifier_type, purpose):
    with pytest.raises(ValidationError):
        lifecycle.issue(identifier, identifier_type, purpose)
    assert lifecycle.count_valid() == 0


def test_detect_identifier_type():
    assert detect_identifier_type("a@b.co") is IdentifierType.EMAIL
    assert detect_identifier_type("+91 98765 43210") is IdentifierType.MOBILE
    assert normalize_identifier("+91 98765 43210", IdentifierType.MOBILE) == "919876543210"


def test_second_issue_supersedes_first(lifecycle, clock):
    first = _issue(lifecycle)
    second = _issue(lifecycle)

    active = lifecycle.find_active(EMAIL, "email", "login")
    assert active.id == second.id
    assert lifecycle.count_valid() == 1
    assert lifecycle.find_active(EMAIL, "email", "login", first.session_token) is None


def test_keys_are_independent(lifecycle):
    login = _issue(lifecycle)
    reset = _issue(lifecycle, purpose="password_reset")
    other = _issue(lifecycle, identifier="other@example.com")

    assert lifecycle.find_active(EMAIL, "email", "login").id == login.id
    assert lifecycle.find_active(EMAIL, "email", "password_reset").id == reset.id
    assert lifecycle.find_active("other@example.com", "email", "login").id == other.id
    assert lifecycle.count_valid() == 3


def test_find_active_filters_by_session_token(lifecycle):
    record = _issue(lifecycle)

    assert lifecycle.find_active(EMAIL, "email", "login", record.session_token).id == record.id
    assert lifecycle.find_active(EMAIL, "email", "login", "f" * 64) is None


def test_find_active_ignores_expired_record(lifecycle, clock):
    _issue(lifecycle)
    clock.advance(seconds=600)

    assert lifecycle.find_active(EMAIL, "email", "login") is None
    latest = lifecycle.find_latest(EMAIL, "email", "login")
    assert latest is not None and latest.expires_at == clock()


def test_resend_without_record_issues_new(lifecycle):
    result = lifecycle.resend(EMAIL, "email", "login")

    assert result.is_new is True
    assert lifecycle.find_active(EMAIL, "email", "login").id == result.record.id


def test_resend_reuses_active_record(lifecycle, clock):
    record = _issue(lifecycle)
    clock.advance(seconds=120)

    first = lifecycle.resend(EMAIL, "email", "login")
    second = lifecycle.resend(EMAIL, "email", "login")

    for result in (first, second):
        assert result.is_new is False
        assert result.code == record.code
        assert result.session_token == record.session_token
        assert result.expires_at == record.expires_at
    assert lifecycle.count_valid() == 1


def test_resend_after_expiry_issues_new_record(lifecycle, clock):
    record = _issue(lifecycle)
    clock.advance(seconds=601)

    result = lifecycle.resend(EMAIL, "email", "login")

    assert result.is_new is True
    assert result.session_token != record.session_token
    assert result.expires_at == clock() + timedelta(seconds=600)


def test_resend_after_use_issues_new_record(lifecycle):
    record = _issue(lifecycle)
    lifecycle.verify(record, record.code)

    result = lifecycle.resend(EMAIL, "email", "login")

    assert result.is_new is True
    assert result.record.id != record.id


def test_concurrent_resends_share_one_record(lifecycle):
    results = []
    errors = []
    barrier = threading.Barrier(5)

    def worker():
        barrier.wait()
        try:
            results.append(lifecycle.resend(EMAIL, "email", "login"))
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert errors == []
    assert len({result.session_token for result in results}) == 1
    assert sum(result.is_new for result in results) == 1
    assert lifecycle.count_valid() == 1


def test_verify_success_consumes_record(lifecycle):
    record = _issue(lifecycle)

    result = lifecycle.verify(record, record.code)

    assert result.valid is True
    assert result.attempts_left == 3
    assert lifecycle.find_active(EMAIL, "email", "login") is None
    with pytest.raises(AlreadyUsed):
        lifecycle.verify(record, record.code)
    assert lifecycle.count_valid() == 0
    assert lifecycle.find_latest(EMAIL, "email", "login", include_used=True).is_used


def test_verify_counts_wrong_attempts_then_locks(lifecycle):
    record = _issue(lifecycle)
    wrong = _wrong(record.code)

    assert [lifecycle.verify(record, wrong).attempts_left for _ in range(3)] == [2, 1, 0]
    with pytest.raises(AttemptsExceeded):
        lifecycle.verify(record, record.code)
    with pytest.raises(AttemptsExceeded):
        lifecycle.verify(record, wrong)

    latest = lifecycle.find_latest(EMAIL, "email", "login")
    assert latest.attempts == 3 and latest.is_locked


def test_locked_record_is_reused_by_resend_until_expiry(lifecycle, clock):
    record = _issue(lifecycle)
    for _ in range(3):
        lifecycle.verify(record, _wrong(record.code))

    reused = lifecycle.resend(EMAIL, "email", "login")
    assert reused.is_new is False and reused.record.is_locked

    clock.advance(seconds=600)
    fresh = lifecycle.resend(EMAIL, "email", "login")
    assert fresh.is_new is True and fresh.record.attempts == 0


def test_verify_expired_record(lifecycle, clock):
    record = _issue(lifecycle)
    clock.advance(seconds=600)

    with pytest.raises(Expired) as excinfo:
        lifecycle.verify(record, record.code)
    assert excinfo.value.message == "OTP expired, please resend."


def test_verify_requires_record_and_code(lifecycle):
    record = _issue(lifecycle)

    with pytest.raises(NotFoundError):
        lifecycle.verify(None, "1234")
    with pytest.raises(ValidationError):
        lifecycle.verify(record, "  ")
    assert lifecycle.find_latest(EMAIL, "email", "login").attempts == 0


def test_concurrent_wrong_codes_never_exceed_max_attempts(lifecycle):
    record = _issue(lifecycle)
    wrong = _wrong(record.code)
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        try:
            lifecycle.verify(record, wrong)
        except AttemptsExceeded:
            pass

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert lifecycle.find_latest(EMAIL, "email", "login").attempts == 3


def test_mark_used(lifecycle):
    record = _issue(lifecycle)

    used = lifecycle.mark_used(record)

    assert used.is_used is True
    with pytest.raises(AlreadyUsed):
        lifecycle.mark_used(record)


def test_purge_expired_keeps_boundary_and_valid_records(lifecycle, clock):
    old = _issue(lifecycle)
    clock.advance(seconds=300)
    young = _issue(lifecycle, identifier="young@example.com")

    clock.advance(seconds=300)
    # ``old`` now expires exactly at ``now`` and is kept.
    assert lifecycle.count_expired() == 0
    assert lifecycle.purge_expired() == 0

    clock.advance(seconds=1)
    assert lifecycle.count_expired() == 1
    assert lifecycle.purge_expired() == 1
    assert lifecycle.find_latest(EMAIL, "email", "login") is None
    assert lifecycle.find_active("young@example.com", "email", "login").id == young.id
    assert old.id != young.id


def test_purge_removes_superseded_records_once_past(lifecycle, clock):
    _issue(lifecycle)
    _issue(lifecycle)
    clock.advance(seconds=1)

    assert lifecycle.purge_expired() == 1
    assert lifecycle.count_valid() == 1


def test_end_to_end_login_scenario(lifecycle, clock):
    issued = _issue(lifecycle)

    clock.advance(minutes=2)
    resent = lifecycle.resend(EMAIL, "email", "login")
    assert resent.code == issued.code and resent.is_new is False

    active = lifecycle.find_active(EMAIL, "email", "login", resent.session_token)
    assert lifecycle.verify(active, _wrong(issued.code)).attempts_left == 2
    assert lifecycle.verify(active, issued.code).valid is True

    clock.advance(minutes=9)
    assert lifecycle.purge_expired() == 1
    assert lifecycle.count_expired() == 0


def test_unverified_code_purged_then_resend_starts_fresh(lifecycle, clock):
    issued = _issue(lifecycle)
    clock.advance(minutes=11)

    assert lifecycle.purge_expired() == 1
    assert lifecycle.find_latest(EMAIL, "email", "login") is None

    resent = lifecycle.resend(EMAIL, "email", "login")

    assert resent.is_new is True
    assert resent.session_token != issued.session_token
    assert lifecycle.find_active(EMAIL, "email", "login").id == resent.record.id


def test_dummy_account_gets_fixed_code(session_factory, clock):
    dummy = DummyOtpAccounts(
        enabled=True,
        code="1234",
        mobile_number="1234567899",
        email="abc@gmail.com",
        allowed_environments=("dev",),
        current_environment="dev",
    )
    lifecycle = OtpLifecycle(session_factory, clock=clock, dummy_accounts=dummy)

    record = lifecycle.issue("1234567899", "mobile", "login")

    assert record.code == "1234"
    assert lifecycle.verify(record, "1234").valid is True


def test_custom_length_and_ttl(session_factory, clock):
    lifecycle = OtpLifecycle(
        session_factory, clock=clock, ttl_seconds=60, code_length=6, max_attempts=5
    )

    record = lifecycle.issue(EMAIL, "email", "registration")

    assert len(record.code) == 6
    assert record.max_attempts == 5
    assert record.expires_at == clock() + timedelta(seconds=60)
