import argparse
import json
import logging
from typing import Optional, Sequence

from otp_auth.config import settings
from otp_auth.database import SessionLocal, engine, init_db
from otp_auth.services.audit import AuditLogStore
from otp_auth.services.cleanup import CleanupScheduler
from otp_auth.services.otp import OtpLifecycle
from otp_auth.services.retention import RetentionPolicy


def build_scheduler(session_factory=None) -> CleanupScheduler:
    factory = session_factory or SessionLocal
    lifecycle = OtpLifecycle(
        factory,
        ttl_seconds=settings.otp_ttl_seconds,
        code_length=settings.otp_length,
        max_attempts=settings.otp_max_attempts,
    )
    return CleanupScheduler(
        lifecycle,
        RetentionPolicy.from_settings(settings),
        log_store=AuditLogStore(factory),
    )


def main(argv: Optional[Sequence[str]] = None, scheduler: Optional[CleanupScheduler] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="otp-auth-cleanup",
        description="Inspect or run the expired-OTP cleanup job.",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser(
        "status", help="Show the retention policy and current expired/valid OTP counts"
    )
    subcommands.add_parser("describe", help="Show what is retained and what is deleted")
    run_once = subcommands.add_parser("run-once", help="Run a single cleanup cycle now")
    run_once.add_argument(
        "--confirm",
        action="store_true",
        help="Acknowledge that expired data will be deleted",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if scheduler is None:
        init_db(engine)
        scheduler = build_scheduler()

    if args.command == "status":
        # The server owns the running scheduler; this process only reads the database.
        status = {
            "policy": scheduler.policy.as_dict(),
            "safety": scheduler.verify_safety().as_dict(),
        }
        print(json.dumps(status, indent=2))
        return 0
    if args.command == "describe":
        print(json.dumps(scheduler.policy.describe(), indent=2))
        return 0

    if not args.confirm:
        print("  [!] Refusing to run without --confirm.")
        return 2
    record = scheduler.run_once(confirm=True)
    if record is None:
        print("  [!] A cleanup cycle is already in progress.")
        return 1
    print(json.dumps(record.as_dict(), indent=2))
    return 0 if record.status == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
