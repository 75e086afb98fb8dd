# db_session.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, sessionmaker


def build_database_url(
    host: str,
    port: int,
    database: str | None,
    user: str | None,
    password: str | None,
) -> URL:
    return URL.create(
        "postgresql+psycopg2",
        username=user,
        password=password,
        host=host,
        port=port,
        database=database,
    )


def create_db_engine(
    url: str | URL,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    statement_timeout_ms: int | None = None,
) -> Engine:
    """
    Create the pooled engine used for the lifetime of the process.

    The caller owns the engine and must call ``engine.dispose()`` on shutdown.
    """
    connect_args = {}
    if statement_timeout_ms:
        # psycopg2 passes this through to the server on connect
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"

    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
