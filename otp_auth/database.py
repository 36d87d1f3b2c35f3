from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from otp_auth.config import settings

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    if not database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Request threads and the cleanup thread share the same file database.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, expire_on_commit=False
    )


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    from otp_auth.models import audit_log as _audit_log  # noqa: F401
    from otp_auth.models import otp as _otp  # noqa: F401
    from otp_auth.models import session as _session  # noqa: F401
    from otp_auth.models import user as _user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def check_database(factory: sessionmaker | None = None) -> bool:
    with session_scope(factory) as session:
        session.execute(text("SELECT 1"))
    return True


@contextmanager
def session_scope(factory: sessionmaker | None = None):
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
