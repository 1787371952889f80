"""
Health and Readiness Check Service

Functions:
- check_database_ready(): DB readiness with strict timeout + TTL caching
- pipeline_status(): cursor position and backlog counts for /api/health
"""

from typing import Any, Dict, Optional, Tuple
from sqlalchemy import func, text
from models.database import db
from models.fetch_cursor import FetchCursor, SINGLETON_ID
from models.harvested_record import HarvestedRecord, TransferStatus
from models.listing_post import ListingPost, PhoneFetchStatus
from db.transaction import is_postgres
from services.pipeline_config import is_fetch_enabled, is_title_refresh_enabled, is_transfer_enabled
import logging
import time

logger = logging.getLogger(__name__)

# Cache for readiness check (avoids repeated hangs on an unreachable DB)
# Format: (result: bool, timestamp: float)
_readiness_cache: Optional[Tuple[bool, float]] = None
_CACHE_TTL_SECONDS = 10


def check_database_ready(timeout_ms: int = 500, use_cache: bool = True) -> bool:
    """
    Check if database is ready to accept queries.

    Uses an engine-level connection (not the request session). On
    PostgreSQL the probe runs under a transaction-scoped statement_timeout.

    Returns:
        True if database responds, False otherwise
    """
    global _readiness_cache

    if use_cache and _readiness_cache is not None:
        cached_result, cached_time = _readiness_cache
        age = time.time() - cached_time
        if age < _CACHE_TTL_SECONDS:
            logger.debug(f"Using cached readiness result: {cached_result} (age: {age:.1f}s)")
            return cached_result

    try:
        with db.engine.begin() as conn:
            if is_postgres():
                conn.execute(text(f"SET LOCAL statement_timeout = '{int(timeout_ms)}ms'"))
            conn.execute(text("SELECT 1"))
        result = True
    except Exception as e:
        result = False
        logger.warning(f"Database readiness check failed: {e}")

    if use_cache:
        _readiness_cache = (result, time.time())

    return result


def pipeline_status() -> Dict[str, Any]:
    """Snapshot of the phone pipeline for operators."""
    cursor = db.session.get(FetchCursor, SINGLETON_ID)

    record_counts = dict(
        db.session.query(HarvestedRecord.status, func.count(HarvestedRecord.id))
        .group_by(HarvestedRecord.status)
        .all()
    )
    post_counts = dict(
        db.session.query(ListingPost.phone_fetch_status, func.count(ListingPost.id))
        .group_by(ListingPost.phone_fetch_status)
        .all()
    )

    return {
        'cursor': cursor.to_dict() if cursor else None,
        'records': {
            'not_transferred': record_counts.get(TransferStatus.NOT_TRANSFERRED, 0),
            'in_progress': record_counts.get(TransferStatus.IN_PROGRESS, 0),
            'transferred': record_counts.get(TransferStatus.TRANSFERRED, 0),
        },
        'posts': {
            'pending': post_counts.get(PhoneFetchStatus.PENDING, 0),
            'in_progress': post_counts.get(PhoneFetchStatus.IN_PROGRESS, 0),
            'done': post_counts.get(PhoneFetchStatus.DONE, 0),
            'failed': post_counts.get(PhoneFetchStatus.FAILED, 0),
        },
        'switches': {
            'fetch': is_fetch_enabled(),
            'transfer': is_transfer_enabled(),
            'title_refresh': is_title_refresh_enabled(),
        },
    }
