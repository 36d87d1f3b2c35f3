import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from otp_auth.database import check_database
from otp_auth.dependencies import Services, get_services

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(services: Services = Depends(get_services)) -> dict:
    try:
        check_database(services.session_factory)
        database = "connected"
    except SQLAlchemyError:
        LOGGER.exception("Health check could not reach the database")
        database = "disconnected"
    return {
        "status": "OK" if database == "connected" else "DEGRADED",
        "timestamp": services.clock().isoformat(),
        "database": database,
        "cleanupScheduler": {"isRunning": services.scheduler.is_running},
    }
