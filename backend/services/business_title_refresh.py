"""
Business title sweep - keep business_phone_cache titles fresh

Each call handles at most one business: the one whose title is missing
or oldest, skipping rows locked by a lease in progress.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy import or_

from db.transaction import atomic
from models.business_phone_cache import BusinessPhoneCache
from services.business_cache import stale_before
from services.phone_fetch_lease import PhoneFetchLeaseService
from services.pipeline_config import TITLE_LOCK, is_title_refresh_enabled
from utils import clock

logger = logging.getLogger(__name__)


@dataclass
class TitleRefreshResult:
    business_ref: str
    title: Optional[str]
    resolved: bool

    def to_dict(self):
        return asdict(self)


class BusinessTitleRefresher:
    def __init__(self, lease_service: Optional[PhoneFetchLeaseService] = None):
        self.lease_service = lease_service or PhoneFetchLeaseService()

    def refresh_one(self, force: bool = False) -> Optional[TitleRefreshResult]:
        if not force and not is_title_refresh_enabled():
            return None

        now = clock.utcnow()
        lock_until = now + TITLE_LOCK
        lock_free = or_(BusinessPhoneCache.locked_until.is_(None), BusinessPhoneCache.locked_until <= now)

        with atomic() as session:
            candidate = (
                session.query(BusinessPhoneCache.id, BusinessPhoneCache.business_ref, BusinessPhoneCache.title)
                .filter(
                    or_(
                        BusinessPhoneCache.title.is_(None),
                        BusinessPhoneCache.title_fetched_at.is_(None),
                        BusinessPhoneCache.title_fetched_at <= stale_before(now),
                    ),
                    lock_free,
                )
                .order_by(
                    BusinessPhoneCache.title_fetched_at.is_(None).desc(),
                    BusinessPhoneCache.title_fetched_at.asc(),
                    BusinessPhoneCache.updated_at.asc(),
                )
                .with_for_update(skip_locked=True)
                .first()
            )
            if candidate is None:
                return None
            cache_id, business_ref, previous_title = candidate

            claimed = (
                session.query(BusinessPhoneCache)
                .filter(BusinessPhoneCache.id == cache_id, lock_free)
                .update({BusinessPhoneCache.locked_until: lock_until}, synchronize_session=False)
            )
            if not claimed:
                logger.debug(f"Title refresh lost race for {business_ref}")
                return None

        title = None
        try:
            title = self.lease_service.fetch_business_title(business_ref)
        except Exception as e:
            logger.warning(f"Failed to fetch title for business {business_ref}: {e}")

        resolved_title = title or previous_title
        with atomic() as session:
            (
                session.query(BusinessPhoneCache)
                .filter(BusinessPhoneCache.id == cache_id)
                .update(
                    {
                        BusinessPhoneCache.title: resolved_title,
                        BusinessPhoneCache.title_fetched_at: clock.utcnow(),
                        BusinessPhoneCache.locked_until: None,
                    },
                    synchronize_session=False,
                )
            )

        logger.info(f'Title refresh: business={business_ref} title="{resolved_title or "-"}"')
        return TitleRefreshResult(business_ref=business_ref, title=resolved_title, resolved=title is not None)
