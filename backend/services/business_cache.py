"""
Business Phone Cache helpers

All helpers take the caller's session and run inside the caller's
transaction; none of them commit.

Rows are created with INSERT ... ON CONFLICT DO NOTHING so two processes
racing on the same business_ref never abort each other's transaction: the
loser just sees rowcount == 0.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.dialects import postgresql, sqlite

from models.business_phone_cache import BusinessPhoneCache, CACHE_TTL

logger = logging.getLogger(__name__)


def stale_before(now: datetime) -> datetime:
    return now - CACHE_TTL


@dataclass
class CacheClaim:
    """What the lease broker learned from the cache for one business."""
    cached_phone: Optional[str] = None
    claimed: bool = False
    state: Optional[str] = None            # 'new' | 'update'
    needs_title: bool = False
    title: Optional[str] = None

    @property
    def locked_elsewhere(self) -> bool:
        return self.cached_phone is None and not self.claimed


def _insert_ignore(session, values: Dict[str, Any]) -> bool:
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        stmt = postgresql.insert(BusinessPhoneCache.__table__)
    elif dialect == 'sqlite':
        stmt = sqlite.insert(BusinessPhoneCache.__table__)
    else:
        raise RuntimeError(f"Unsupported database dialect for cache upsert: {dialect}")
    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=['business_ref'])
    return session.execute(stmt).rowcount == 1


def get_entry(session, business_ref: str, lock: bool = False) -> Optional[BusinessPhoneCache]:
    query = (
        session.query(BusinessPhoneCache)
        .filter(BusinessPhoneCache.business_ref == business_ref)
        .populate_existing()
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def claim_for_lease(session, business_ref: str, now: datetime, lock_until: datetime) -> CacheClaim:
    """
    Consult the cache for a business before leasing one of its posts.

    Returns a CacheClaim that is exactly one of:
    - cached_phone set: a fresh phone exists, no lease needed
    - claimed: this caller now holds the cache lock until lock_until
    - neither: another lease or the title sweep holds the lock
    """
    entry = get_entry(session, business_ref, lock=True)

    if entry is None:
        inserted = _insert_ignore(session, {
            'business_ref': business_ref,
            'locked_until': lock_until,
            'updated_at': now,
        })
        if inserted:
            return CacheClaim(claimed=True, state='new', needs_title=True)
        logger.debug(f"Cache row for {business_ref} created concurrently; treating as locked")
        return CacheClaim()

    if entry.has_fresh_phone(now):
        return CacheClaim(cached_phone=entry.phone_number, title=entry.title)

    if entry.is_locked(now):
        return CacheClaim()

    updated = (
        session.query(BusinessPhoneCache)
        .filter(
            BusinessPhoneCache.id == entry.id,
            or_(BusinessPhoneCache.locked_until.is_(None), BusinessPhoneCache.locked_until <= now),
        )
        .update({BusinessPhoneCache.locked_until: lock_until}, synchronize_session=False)
    )
    if not updated:
        return CacheClaim()

    return CacheClaim(
        claimed=True,
        state='update',
        needs_title=not entry.has_fresh_title(now),
        title=entry.title,
    )


def release_lock(session, business_ref: str) -> int:
    return (
        session.query(BusinessPhoneCache)
        .filter(BusinessPhoneCache.business_ref == business_ref)
        .update({BusinessPhoneCache.locked_until: None}, synchronize_session=False)
    )


def store_phone(
    session,
    business_ref: str,
    phone_number: str,
    now: datetime,
    title: Optional[str] = None,
) -> None:
    """Upsert the phone (and title when known), releasing any lock."""
    _insert_ignore(session, {'business_ref': business_ref, 'updated_at': now})

    values = {
        BusinessPhoneCache.phone_number: phone_number,
        BusinessPhoneCache.fetched_at: now,
        BusinessPhoneCache.locked_until: None,
        BusinessPhoneCache.updated_at: now,
    }
    if title:
        values[BusinessPhoneCache.title] = title
        values[BusinessPhoneCache.title_fetched_at] = now

    (
        session.query(BusinessPhoneCache)
        .filter(BusinessPhoneCache.business_ref == business_ref)
        .update(values, synchronize_session=False)
    )
