import dataclasses

import pytest

from otp_auth.exceptions import ValidationError
from otp_auth.services.retention import RetentionPolicy


def test_defaults_only_delete_expired_otps():
    policy = RetentionPolicy()

    assert policy.clean_expired_otps is True
    assert policy.clean_old_logs is False
    assert policy.clean_user_accounts is False
    assert policy.clean_valid_otps is False
    assert policy.interval_seconds == 1800


def test_pinned_flags_cannot_be_enabled():
    policy = RetentionPolicy()

    with pytest.raises(TypeError):
        RetentionPolicy(clean_user_accounts=True)
    with pytest.raises(ValidationError):
        policy.updated(clean_user_accounts=True)
    with pytest.raises(ValidationError):
        policy.updated(clean_valid_otps=True)
    with pytest.raises(AttributeError):
        policy.clean_valid_otps = True
    assert "clean_user_accounts" not in {field.name for field in dataclasses.fields(policy)}


def test_updated_returns_new_policy():
    policy = RetentionPolicy()

    changed = policy.updated(clean_old_logs=True, log_retention_days=7)

    assert changed.clean_old_logs is True
    assert changed.log_retention_days == 7
    assert policy.clean_old_logs is False
    with pytest.raises(ValidationError):
        policy.updated(delete_everything=True)


@pytest.mark.parametrize(
    "changes",
    [{"interval_minutes": 0}, {"log_retention_days": 0}, {"initial_delay_seconds": -1}],
)
def test_invalid_values_rejected(changes):
    with pytest.raises(ValidationError):
        RetentionPolicy(**changes)


def test_emergency_disable_all():
    policy = RetentionPolicy(clean_old_logs=True).emergency_disable_all()

    assert policy.clean_expired_otps is False
    assert policy.clean_old_logs is False
    assert policy.clean_user_accounts is False


def test_describe():
    summary = RetentionPolicy(clean_old_logs=True, log_retention_days=14).describe()

    retention = summary["data_retention"]
    assert retention["user_accounts"] == "Never deleted"
    assert retention["valid_otps"] == "Never deleted"
    assert "next sweep" in retention["expired_otps"]
    assert "14 days" in retention["logs"]
    assert summary["interval_minutes"] == 30

    disabled = RetentionPolicy().emergency_disable_all().describe()["data_retention"]
    assert disabled["expired_otps"].startswith("Retained")
    assert disabled["logs"].startswith("Retained")


def test_as_dict_reports_pinned_flags():
    data = RetentionPolicy().as_dict()

    assert data["clean_user_accounts"] is False
    assert data["clean_valid_otps"] is False
    assert data["clean_expired_otps"] is True


def test_from_settings(settings_factory):
    config = settings_factory(
        cleanup_interval_minutes=5,
        cleanup_old_logs=True,
        log_retention_days=3,
        cleanup_initial_delay_seconds=0,
    )

    policy = RetentionPolicy.from_settings(config)

    assert policy.interval_minutes == 5
    assert policy.clean_old_logs is True
    assert policy.log_retention_days == 3
    assert policy.initial_delay_seconds == 0
