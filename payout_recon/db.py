# payout_recon/db.py

import functools
import logging
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from payout_recon.settings import DATABASE_URL, READ_RETRY_ATTEMPTS, READ_RETRY_BASE_DELAY

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def db_ping() -> int:
    """Quick connectivity test."""
    with engine.connect() as conn:
        return conn.execute(text("SELECT 1")).scalar_one()


def _is_connection_loss(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def with_read_retry(fn=None, *, attempts: int | None = None, base_delay: float | None = None):
    """
    Retry a read helper when the connection drops.

    Only for reads: the ingestion loop writes without retrying.
    The wrapped function's first argument must be the session; it is rolled
    back between attempts so the next try gets a fresh connection.
    """

    def decorate(func):
        @functools.wraps(func)
        def wrapper(db, *args, **kwargs):
            tries = attempts or READ_RETRY_ATTEMPTS
            delay = READ_RETRY_BASE_DELAY if base_delay is None else base_delay
            for attempt in range(1, tries + 1):
                try:
                    return func(db, *args, **kwargs)
                except DBAPIError as e:
                    if not _is_connection_loss(e) or attempt == tries:
                        raise
                    logger.warning(
                        "%s: connection lost (attempt %d/%d), retrying in %.2fs",
                        func.__name__, attempt, tries, delay,
                    )
                    db.rollback()
                    time.sleep(delay)
                    delay *= 2

        return wrapper

    if fn is not None:
        return decorate(fn)
    return decorate
