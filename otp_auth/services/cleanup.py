"""Safety-gated periodic cleanup of expired OTP records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
import logging
import threading
import time
from typing import Callable, Optional, Protocol

from otp_auth.exceptions import SafetyVerificationFailed
from otp_auth.services.retention import RetentionPolicy

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionTarget(Protocol):
    def count_expired(self, now: Optional[datetime] = None) -> int: ...

    def count_valid(self, now: Optional[datetime] = None) -> int: ...

    def purge_expired(self) -> int: ...


class LogRetentionTarget(Protocol):
    def purge_older_than(self, cutoff: datetime) -> int: ...


@dataclass(frozen=True)
class SafetyReport:
    passed: bool
    issues: tuple[str, ...]
    warnings: tuple[str, ...]
    checked_at: datetime
    expired_count: Optional[int] = None
    valid_count: Optional[int] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["checked_at"] = self.checked_at.isoformat()
        data["issues"] = list(self.issues)
        data["warnings"] = list(self.warnings)
        return data


@dataclass
class CleanupRunRecord:
    started_at: datetime
    status: str = "completed"
    deleted_count: int = 0
    logs_deleted: int = 0
    safety: Optional[SafetyReport] = None
    duration_ms: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        if self.safety is not None:
            data["safety"] = self.safety.as_dict()
        return data


class CleanupScheduler:
    def __init__(
        self,
        target: RetentionTarget,
        policy: RetentionPolicy,
        log_store: Optional[LogRetentionTarget] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._target = target
        self._policy = policy
        self._log_store = log_store
        self._clock = clock
        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._next_run_at: Optional[datetime] = None
        self._last_run: Optional[CleanupRunRecord] = None

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_run(self) -> Optional[CleanupRunRecord]:
        return self._last_run

    def start(self) -> bool:
        with self._state_lock:
            if self.is_running:
                LOGGER.warning("Cleanup scheduler is already running")
                return False
            self._stop_event = threading.Event()
            self._next_run_at = self._clock() + timedelta(
                seconds=self._policy.initial_delay_seconds
            )
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="otp-cleanup",
                daemon=True,
            )
            self._thread.start()
        LOGGER.info(
            "Cleanup scheduler started (interval=%s min, first run in %s s)",
            self._policy.interval_minutes,
            self._policy.initial_delay_seconds,
        )
        LOGGER.info("Retention policy: %s", self._policy.as_dict())
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._state_lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
            self._next_run_at = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        LOGGER.info("Cleanup scheduler stopped")

    def get_status(self) -> dict:
        running = self.is_running
        next_run = self._next_run_at if running else None
        return {
            "is_running": running,
            "next_run_estimate": next_run.isoformat() if next_run else None,
            "policy": self._policy.describe(),
            "last_run": self._last_run.as_dict() if self._last_run else None,
        }

    def update_policy(self, policy: RetentionPolicy) -> None:
        self._policy = policy
        LOGGER.info("Retention policy updated: %s", policy.as_dict())

    def emergency_disable_all(self) -> None:
        self._policy = self._policy.emergency_disable_all()
        LOGGER.warning("All cleanup deletions disabled; no data will be removed")

    def run_once(self, confirm: bool = False) -> Optional[CleanupRunRecord]:
        if not confirm:
            LOGGER.warning(
                "Manual cleanup requires confirm=True to acknowledge that expired "
                "data will be removed; nothing was run"
            )
            return None
        LOGGER.info("Manual cleanup triggered")
        return self.run_cycle()

    def run_cycle(self) -> Optional[CleanupRunRecord]:
        if not self._cycle_lock.acquire(blocking=False):
            LOGGER.warning("Cleanup cycle already in progress; skipping this tick")
            return None
        try:
            record = self._perform_cycle()
        finally:
            self._cycle_lock.release()
        self._last_run = record
        return record

    def verify_safety(self, policy: Optional[RetentionPolicy] = None) -> SafetyReport:
        policy = policy or self._policy
        now = self._clock()
        issues: list[str] = []
        warnings: list[str] = []

        if policy.clean_user_accounts:
            issues.append("CRITICAL: user account cleanup is enabled")
        if policy.clean_valid_otps:
            issues.append("CRITICAL: valid OTP cleanup is enabled")

        expired_count = valid_count = None
        if policy.clean_expired_otps and not issues:
            expired_count = self._target.count_expired(now)
            valid_count = self._target.count_valid(now)
            LOGGER.info(
                "Safety check: %d expired OTPs to clean, %d valid OTPs protected",
                expired_count,
                valid_count,
            )
            if expired_count > policy.expired_warning_threshold:
                warnings.append(
                    f"Large number of expired OTPs ({expired_count}); "
                    "consider manual review"
                )

        report = SafetyReport(
            passed=not issues,
            issues=tuple(issues),
            warnings=tuple(warnings),
            checked_at=now,
            expired_count=expired_count,
            valid_count=valid_count,
        )
        if report.passed:
            LOGGER.info("Pre-cleanup safety verification passed")
        else:
            LOGGER.error("Pre-cleanup safety verification failed: %s", list(issues))
        for warning in warnings:
            LOGGER.warning(warning)
        return report

    def _run_loop(self, stop_event: threading.Event) -> None:
        delay = self._policy.initial_delay_seconds
        while not stop_event.wait(delay):
            self.run_cycle()
            delay = self._policy.interval_seconds
            if not stop_event.is_set():
                self._next_run_at = self._clock() + timedelta(seconds=delay)

    def _perform_cycle(self) -> CleanupRunRecord:
        policy = self._policy
        started = time.monotonic()
        record = CleanupRunRecord(started_at=self._clock())
        LOGGER.info("Starting cleanup cycle (expired data only)")
        try:
            record.safety = self.verify_safety(policy)
            if not record.safety.passed:
                raise SafetyVerificationFailed(list(record.safety.issues))
            if policy.clean_expired_otps:
                record.deleted_count = self._target.purge_expired()
            if policy.clean_old_logs:
                record.logs_deleted = self._purge_old_logs(policy)
        except SafetyVerificationFailed as exc:
            record.status = "aborted"
            record.error = exc.message
            LOGGER.error("Cleanup aborted, no data deleted: %s", exc.issues)
        except Exception as exc:
            record.status = "failed"
            record.error = str(exc)
            LOGGER.exception("Cleanup cycle failed; retrying next interval")
        record.duration_ms = int((time.monotonic() - started) * 1000)
        self._emit_summary(record)
        return record

    def _purge_old_logs(self, policy: RetentionPolicy) -> int:
        if self._log_store is None:
            LOGGER.info("Log cleanup enabled but no log store is configured")
            return 0
        cutoff = self._clock() - timedelta(days=policy.log_retention_days)
        return self._log_store.purge_older_than(cutoff)

    def _emit_summary(self, record: CleanupRunRecord) -> None:
        level = logging.INFO if record.status == "completed" else logging.ERROR
        safety = record.safety
        LOGGER.log(
            level,
            "Cleanup cycle %s: deleted=%d logs_deleted=%d duration_ms=%d "
            "safety=%s issues=%s warnings=%s",
            record.status,
            record.deleted_count,
            record.logs_deleted,
            record.duration_ms,
            "pass" if safety is not None and safety.passed else "fail",
            list(safety.issues) if safety else [],
            list(safety.warnings) if safety else [],
            extra={"cleanup_run": record.as_dict()},
        )
