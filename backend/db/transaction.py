"""
Unit-of-work helper for the pipeline services.

Every claim, release and reconciliation step runs inside one atomic()
block on the Flask-SQLAlchemy scoped session:

    with atomic() as session:
        row = session.query(...).with_for_update().first()
        ...

Commits on normal exit; rolls back and re-raises on any exception.
"""
import logging
from contextlib import contextmanager

from models.database import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic():
    session = db.session
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def is_postgres() -> bool:
    """True when the bound engine speaks PostgreSQL (row locks available)."""
    return db.engine.dialect.name == 'postgresql'
