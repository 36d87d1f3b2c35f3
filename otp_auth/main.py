from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.engine import Engine

from otp_auth.config import Settings, settings
from otp_auth.database import build_session_factory, engine as default_engine, init_db
from otp_auth.dependencies import Services
from otp_auth.exceptions import OtpAuthError
from otp_auth.limiter import limiter
from otp_auth.routers import auth, health, users
from otp_auth.services.delivery import OtpDispatcher
from otp_auth.services.otp import utcnow

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def handle_otp_auth_error(request: Request, exc: OtpAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "type": exc.error_type},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    init_db(app.state.engine)
    for warning in services.dummy_accounts.security_warnings():
        LOGGER.warning(warning)
    if services.config.cleanup_enabled:
        services.scheduler.start()
    else:
        LOGGER.info("Cleanup scheduler disabled by configuration")
    try:
        yield
    finally:
        # stop() joins the cleanup thread.
        await run_in_threadpool(services.scheduler.stop)


def create_app(
    config: Settings = settings,
    bind: Optional[Engine] = None,
    clock: Callable[[], datetime] = utcnow,
    dispatcher: Optional[OtpDispatcher] = None,
) -> FastAPI:
    configure_logging(config.log_level)
    bind = bind or default_engine
    app = FastAPI(title="OTP Auth Backend", lifespan=lifespan)
    app.state.engine = bind
    app.state.services = Services.build(
        config,
        build_session_factory(bind),
        clock=clock,
        dispatcher=dispatcher,
    )

    limiter.enabled = config.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(OtpAuthError, handle_otp_auth_error)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(auth.router, prefix="/api")
    app.include_router(users.router, prefix="/api")

    @app.get("/")
    def root():
        return {"status": "Backend running"}

    return app


app = create_app()
