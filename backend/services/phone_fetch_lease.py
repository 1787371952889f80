"""
Phone Fetch Lease Service - hand out listing posts to external phone workers

Workers call lease() to get one post to resolve, then report the outcome
with report_ok() or report_error(). A lease is (phone_fetch_lease_id,
phone_fetch_locked_until) on the post: live while the lock is in the
future, consumed by the first report, otherwise it simply expires.

Posts of the same business share one phone. Before leasing such a post
the business cache is consulted: a fresh cached phone finishes the post
without a worker, and a business already being resolved by another lease
is left alone until that lease reports or expires.

State machine (listing_posts.phone_fetch_status):
    PENDING -> IN_PROGRESS -> DONE
                           -> FAILED -> IN_PROGRESS (lock expired, attempts left)
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import and_, or_

from db.transaction import atomic
from models.admin_session import SessionService
from models.listing_post import ListingPost, PhoneFetchStatus
from services import business_cache
from services.divar_api_client import DivarAPIClient
from services.pipeline_config import LEASE_DURATION, MAX_PHONE_FETCH_ATTEMPTS
from services.session_provider import SessionProvider
from utils import clock
from utils.phone import normalize_phone

logger = logging.getLogger(__name__)

ERROR_MAX_CHARS = 500


@dataclass
class LeaseGrant:
    """One leased post, as handed to a worker."""
    lease_id: str
    post_id: int
    external_id: str
    contact_uuid: str
    business_ref: Optional[str] = None
    business_type: Optional[str] = None
    business_cache_state: Optional[str] = None   # 'new' | 'update'
    post_title: Optional[str] = None
    needs_business_title: Optional[bool] = None

    def to_api(self) -> Dict[str, Any]:
        """camelCase payload for the worker API; unset optional keys omitted."""
        payload = {
            'leaseId': self.lease_id,
            'postId': self.post_id,
            'externalId': self.external_id,
            'contactUuid': self.contact_uuid,
            'businessRef': self.business_ref,
            'businessType': self.business_type,
            'businessCacheState': self.business_cache_state,
            'postTitle': self.post_title,
            'needsBusinessTitle': self.needs_business_title,
        }
        return {k: v for k, v in payload.items() if v is not None}


def _eligible(now: datetime):
    """Posts a worker may be handed right now."""
    return and_(
        ListingPost.contact_uuid.isnot(None),
        ListingPost.phone_number.is_(None),
        ListingPost.phone_fetch_attempt_count < MAX_PHONE_FETCH_ATTEMPTS,
        or_(
            ListingPost.phone_fetch_status == PhoneFetchStatus.PENDING,
            and_(
                ListingPost.phone_fetch_status.in_([PhoneFetchStatus.IN_PROGRESS, PhoneFetchStatus.FAILED]),
                or_(
                    ListingPost.phone_fetch_locked_until.is_(None),
                    ListingPost.phone_fetch_locked_until <= now,
                ),
            ),
        ),
    )


def _live_lease(lease_id: str, now: datetime):
    return and_(
        ListingPost.phone_fetch_lease_id == lease_id,
        ListingPost.phone_fetch_locked_until > now,
    )


class PhoneFetchLeaseService:
    def __init__(
        self,
        sessions: Optional[SessionProvider] = None,
        divar_client: Optional[DivarAPIClient] = None,
    ):
        self.sessions = sessions or SessionProvider()
        self.divar_client = divar_client or DivarAPIClient()

    def close(self) -> None:
        """Release the brand lookup client's pooled connections."""
        self.divar_client.close()

    # =========================================================================
    # Lease
    # =========================================================================

    def lease(self, worker_id: Optional[str] = None) -> Optional[LeaseGrant]:
        """
        Lease the newest eligible post.

        Returns None when nothing is eligible, when the post was finished
        from the business cache, when its business is being resolved by
        another lease, or when another broker claimed it first.
        """
        now = clock.utcnow()
        lock_until = now + LEASE_DURATION
        lease_id = str(uuid.uuid4())

        with atomic() as session:
            post = (
                session.query(ListingPost)
                .filter(_eligible(now))
                .order_by(ListingPost.created_at.desc(), ListingPost.id.desc())
                .populate_existing()
                .with_for_update(skip_locked=True)
                .first()
            )
            if post is None:
                return None

            business_ref = post.business_ref
            if not business_ref:
                business_ref = post.payload_business_ref()
                if business_ref:
                    post.business_ref = business_ref

            claim = None
            if business_ref:
                claim = business_cache.claim_for_lease(session, business_ref, now, lock_until)

                if claim.cached_phone:
                    post.phone_number = claim.cached_phone
                    post.phone_fetch_status = PhoneFetchStatus.DONE
                    post.phone_fetch_locked_until = None
                    post.phone_fetch_lease_id = None
                    post.phone_fetch_worker = None
                    post.phone_fetch_last_error = None
                    logger.info(f"Post {post.external_id} filled from business cache ({business_ref})")
                    return None

                if claim.locked_elsewhere:
                    post.phone_fetch_status = PhoneFetchStatus.PENDING
                    post.phone_fetch_locked_until = None
                    logger.debug(f"Business {business_ref} is being resolved elsewhere; post {post.external_id} left pending")
                    return None

            claimed = (
                session.query(ListingPost)
                .filter(ListingPost.id == post.id, _eligible(now))
                .update(
                    {
                        ListingPost.phone_fetch_status: PhoneFetchStatus.IN_PROGRESS,
                        ListingPost.phone_fetch_locked_until: lock_until,
                        ListingPost.phone_fetch_lease_id: lease_id,
                        ListingPost.phone_fetch_worker: worker_id,
                        ListingPost.phone_fetch_attempt_count: ListingPost.phone_fetch_attempt_count + 1,
                        ListingPost.phone_fetch_last_error: None,
                    },
                    synchronize_session=False,
                )
            )
            if not claimed:
                if claim is not None and claim.claimed:
                    business_cache.release_lock(session, business_ref)
                logger.debug(f"Lost lease race for post {post.id}")
                return None

            grant = LeaseGrant(
                lease_id=lease_id,
                post_id=post.id,
                external_id=post.external_id,
                contact_uuid=post.contact_uuid,
                business_ref=business_ref,
                business_type=post.business_type,
                business_cache_state=claim.state if claim else None,
                post_title=post.title,
                needs_business_title=claim.needs_title if claim else None,
            )

        logger.info(f"Lease {lease_id} issued: post={grant.post_id} worker={worker_id or '-'}")
        return grant

    # =========================================================================
    # Reports
    # =========================================================================

    def _find_live_lease(self, lease_id: str, now: datetime):
        """(post_id, business_ref) of a live lease, or None."""
        with atomic() as session:
            row = (
                session.query(ListingPost.id, ListingPost.business_ref)
                .filter(_live_lease(lease_id, now))
                .first()
            )
        return row

    def report_ok(self, lease_id: str, phone_number: str, business_title: Optional[str] = None) -> bool:
        """
        Close a lease with the phone the worker found.

        Every post of the same business that still lacks a phone gets it too,
        and the business cache is refreshed.

        Returns:
            False when the lease is unknown, expired or already closed.
        """
        now = clock.utcnow()
        found = self._find_live_lease(lease_id, now)
        if found is None:
            logger.info(f"report_ok for unknown or expired lease {lease_id}; ignoring")
            return False
        post_id, business_ref = found

        phone = normalize_phone(phone_number)
        if phone is None:
            return self.report_error(lease_id, 'invalid_phone')

        title = business_title.strip() if business_title and business_title.strip() else None
        if business_ref and title is None:
            try:
                title = self.fetch_business_title(business_ref)
            except Exception as e:
                logger.warning(f"Failed to fetch title for business {business_ref}: {e}")
                title = None

        with atomic() as session:
            still_live = (
                session.query(ListingPost.id)
                .filter(_live_lease(lease_id, now))
                .with_for_update()
                .first()
            )
            if still_live is None:
                logger.info(f"Lease {lease_id} closed while resolving title; ignoring report")
                return False

            criteria = ListingPost.phone_fetch_lease_id == lease_id
            if business_ref:
                criteria = or_(
                    criteria,
                    and_(ListingPost.business_ref == business_ref, ListingPost.phone_number.is_(None)),
                )

            updated = (
                session.query(ListingPost)
                .filter(criteria)
                .update(
                    {
                        ListingPost.phone_number: phone,
                        ListingPost.phone_fetch_status: PhoneFetchStatus.DONE,
                        ListingPost.phone_fetch_lease_id: None,
                        ListingPost.phone_fetch_locked_until: None,
                        ListingPost.phone_fetch_worker: None,
                        ListingPost.phone_fetch_last_error: None,
                    },
                    synchronize_session=False,
                )
            )

            if business_ref:
                business_cache.store_phone(session, business_ref, phone, now, title=title)

        logger.info(f"Lease {lease_id} closed ok: post={post_id} phone={phone} posts_updated={updated}")
        return True

    def report_error(self, lease_id: str, error: str) -> bool:
        """
        Close a lease as failed.

        The post becomes eligible again right away (lock = now) while it
        has attempts left.
        """
        now = clock.utcnow()
        error = (error or 'unknown')[:ERROR_MAX_CHARS]

        with atomic() as session:
            row = (
                session.query(ListingPost.id, ListingPost.business_ref)
                .filter(_live_lease(lease_id, now))
                .with_for_update()
                .first()
            )
            if row is None:
                logger.info(f"report_error for unknown or expired lease {lease_id}; ignoring")
                return False
            post_id, business_ref = row

            (
                session.query(ListingPost)
                .filter(ListingPost.id == post_id, ListingPost.phone_fetch_lease_id == lease_id)
                .update(
                    {
                        ListingPost.phone_fetch_status: PhoneFetchStatus.FAILED,
                        ListingPost.phone_fetch_locked_until: now,
                        ListingPost.phone_fetch_lease_id: None,
                        ListingPost.phone_fetch_worker: None,
                        ListingPost.phone_fetch_last_error: error,
                    },
                    synchronize_session=False,
                )
            )
            if business_ref:
                business_cache.release_lock(session, business_ref)

        logger.info(f"Lease {lease_id} closed with error: post={post_id} error={error}")
        return True

    # =========================================================================
    # Business title
    # =========================================================================

    def fetch_business_title(self, business_ref: str) -> Optional[str]:
        """Brand title for a business, using the divar session headers when present."""
        session = self.sessions.get_active_session(SessionService.DIVAR)
        headers = session.headers if session else {'Content-Type': 'application/json'}
        return self.divar_client.fetch_brand_title(business_ref, headers)
