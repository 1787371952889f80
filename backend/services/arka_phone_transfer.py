"""
Arka Phone Transfer - copy harvested phones onto matching listing posts

Harvested records are matched to listing posts by external id. Only
records fetched in the last TRANSFER_WINDOW are considered; posts often
appear in the listing store some minutes after the catalog has them, so a
record without a post yet is deferred and retried.

Two entry points:
- transfer_one: claim the oldest pending record and reconcile it
- transfer_missing_posts: bulk-apply every record whose post is known
  and still has no phone
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import and_, or_

from db.transaction import atomic
from models.harvested_record import HarvestedRecord, TransferStatus
from models.listing_post import ListingPost, PhoneFetchStatus
from services import business_cache
from services.pipeline_config import (
    TRANSFER_DEFER,
    TRANSFER_LOCK,
    TRANSFER_WINDOW,
    is_transfer_enabled,
)
from utils import clock
from utils.phone import PLACEHOLDER_PHONE, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    kind: str                       # transferred | skipped | deferred | error
    reason: Optional[str] = None
    external_id: Optional[str] = None
    phone: Optional[str] = None
    until: Optional[datetime] = None

    TRANSFERRED = 'transferred'
    SKIPPED = 'skipped'
    DEFERRED = 'deferred'
    ERROR = 'error'

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.until is not None:
            d['until'] = self.until.isoformat()
        return {k: v for k, v in d.items() if v is not None}


@dataclass
class BulkTransferResult:
    kind: str                       # transferred | skipped
    reason: Optional[str] = None
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _apply_to_post(session, post_id: int, business_ref: Optional[str], record_id: int,
                   phone: Optional[str], owner_name: Optional[str], now: datetime) -> None:
    """Write one record onto its post and mark the record transferred."""
    values = {
        ListingPost.phone_number: phone,
        ListingPost.phone_fetch_status: PhoneFetchStatus.DONE,
        ListingPost.phone_fetch_locked_until: None,
        ListingPost.phone_fetch_lease_id: None,
        ListingPost.phone_fetch_worker: None,
        ListingPost.phone_fetch_last_error: None,
    }
    if owner_name:
        values[ListingPost.owner_name] = owner_name
    session.query(ListingPost).filter(ListingPost.id == post_id).update(values, synchronize_session=False)

    if business_ref and phone:
        business_cache.store_phone(session, business_ref, phone, now)

    (
        session.query(HarvestedRecord)
        .filter(HarvestedRecord.id == record_id)
        .update(
            {
                HarvestedRecord.status: TransferStatus.TRANSFERRED,
                HarvestedRecord.transferred_at: now,
                HarvestedRecord.transfer_locked_until: None,
                HarvestedRecord.transfer_last_error: None,
                HarvestedRecord.updated_at: now,
            },
            synchronize_session=False,
        )
    )


class ArkaPhoneTransferService:

    def _pending_filter(self, now: datetime):
        # An IN_PROGRESS record whose lock has lapsed was abandoned mid-transfer
        return and_(
            HarvestedRecord.status.in_([TransferStatus.NOT_TRANSFERRED, TransferStatus.IN_PROGRESS]),
            HarvestedRecord.fetched_at >= now - TRANSFER_WINDOW,
            or_(HarvestedRecord.transfer_locked_until.is_(None), HarvestedRecord.transfer_locked_until <= now),
            or_(HarvestedRecord.next_transfer_attempt_at.is_(None), HarvestedRecord.next_transfer_attempt_at <= now),
        )

    def _defer(self, record_id: int, reason: str, until: datetime, now: datetime) -> None:
        with atomic() as session:
            (
                session.query(HarvestedRecord)
                .filter(HarvestedRecord.id == record_id)
                .update(
                    {
                        HarvestedRecord.status: TransferStatus.NOT_TRANSFERRED,
                        HarvestedRecord.transfer_locked_until: None,
                        HarvestedRecord.transfer_last_error: reason,
                        HarvestedRecord.next_transfer_attempt_at: until,
                        HarvestedRecord.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )

    def transfer_one(self, force: bool = False) -> TransferResult:
        """
        Reconcile the oldest pending harvested record.

        Args:
            force: ignore the scheduler and transfer kill switches
        """
        if not force and not is_transfer_enabled():
            return TransferResult(TransferResult.SKIPPED, 'cron_disabled')

        now = clock.utcnow()
        pending = self._pending_filter(now)

        with atomic() as session:
            candidate = (
                session.query(
                    HarvestedRecord.id,
                    HarvestedRecord.arka_id,
                    HarvestedRecord.external_id,
                    HarvestedRecord.phone_number,
                    HarvestedRecord.owner_name,
                )
                .filter(pending)
                .order_by(HarvestedRecord.fetched_at.asc(), HarvestedRecord.id.asc())
                .with_for_update(skip_locked=True)
                .first()
            )
            if candidate is None:
                return TransferResult(TransferResult.SKIPPED, 'no_pending_records')

            claimed = (
                session.query(HarvestedRecord)
                .filter(HarvestedRecord.id == candidate.id, pending)
                .update(
                    {
                        HarvestedRecord.status: TransferStatus.IN_PROGRESS,
                        HarvestedRecord.transfer_locked_until: now + TRANSFER_LOCK,
                        HarvestedRecord.transfer_attempt_count: HarvestedRecord.transfer_attempt_count + 1,
                        HarvestedRecord.transfer_last_error: None,
                        HarvestedRecord.next_transfer_attempt_at: None,
                    },
                    synchronize_session=False,
                )
            )
            if not claimed:
                logger.debug(f"Lost transfer claim for record {candidate.arka_id}")
                return TransferResult(TransferResult.SKIPPED, 'no_pending_records')

        if not candidate.external_id:
            self._defer(candidate.id, 'missing_external_id', now + TRANSFER_DEFER, now)
            logger.warning(f"Arka record {candidate.arka_id} has no external id; deferred")
            return TransferResult(TransferResult.ERROR, 'missing_external_id')

        with atomic() as session:
            post = (
                session.query(ListingPost.id, ListingPost.business_ref)
                .filter(ListingPost.external_id == candidate.external_id)
                .first()
            )

        if post is None:
            until = now + TRANSFER_DEFER
            self._defer(candidate.id, 'post_not_found', until, now)
            logger.debug(f"No post for external id {candidate.external_id} yet; deferred until {until.isoformat()}")
            return TransferResult(TransferResult.DEFERRED, 'post_not_found', external_id=candidate.external_id, until=until)

        phone = normalize_phone(candidate.phone_number)
        with atomic() as session:
            _apply_to_post(session, post.id, post.business_ref, candidate.id, phone, candidate.owner_name, now)

        logger.info(
            f"Arka transfer -> post {candidate.external_id} phone={phone or 'n/a'} (arkaId={candidate.arka_id})"
        )
        return TransferResult(TransferResult.TRANSFERRED, external_id=candidate.external_id, phone=phone)

    def transfer_missing_posts(self, force: bool = False) -> BulkTransferResult:
        """
        Apply every recent record whose post exists and still lacks a phone.

        Loops in batches until either side runs out; each batch is one
        transaction.
        """
        if not force and not is_transfer_enabled():
            return BulkTransferResult('skipped', 'cron_disabled')

        now = clock.utcnow()
        cutoff = now - TRANSFER_WINDOW
        total = 0

        while True:
            with atomic() as session:
                records = (
                    session.query(
                        HarvestedRecord.id,
                        HarvestedRecord.external_id,
                        HarvestedRecord.phone_number,
                        HarvestedRecord.owner_name,
                    )
                    .filter(
                        HarvestedRecord.external_id.isnot(None),
                        HarvestedRecord.phone_number.isnot(None),
                        HarvestedRecord.phone_number != PLACEHOLDER_PHONE,
                        HarvestedRecord.status != TransferStatus.TRANSFERRED,
                        HarvestedRecord.fetched_at >= cutoff,
                    )
                    .order_by(HarvestedRecord.fetched_at.asc(), HarvestedRecord.id.asc())
                    .all()
                )
                if not records:
                    break

                external_ids = {r.external_id for r in records}
                posts = (
                    session.query(ListingPost.id, ListingPost.external_id, ListingPost.business_ref)
                    .filter(ListingPost.external_id.in_(external_ids), ListingPost.phone_number.is_(None))
                    .all()
                )
                if not posts:
                    break

                post_by_external_id = {p.external_id: p for p in posts}
                applied = 0
                for record in records:
                    post = post_by_external_id.get(record.external_id)
                    phone = normalize_phone(record.phone_number)
                    if post is None or phone is None:
                        continue
                    _apply_to_post(session, post.id, post.business_ref, record.id, phone, record.owner_name, now)
                    applied += 1

            total += applied
            if applied == 0:
                break

        if total == 0:
            return BulkTransferResult('skipped', 'no_matches')

        logger.info(f"Arka bulk transfer applied to {total} posts missing phone numbers.")
        return BulkTransferResult('transferred', count=total)

    def drain(self) -> Dict[str, int]:
        """
        Operator catch-up: bulk transfers until exhausted, then single
        transfers until nothing is pending or a record is deferred.
        """
        summary = {'bulk_transferred': 0, 'transferred': 0, 'deferred': 0, 'errors': 0}

        while True:
            bulk = self.transfer_missing_posts(force=True)
            if bulk.kind != 'transferred':
                break
            summary['bulk_transferred'] += bulk.count
            logger.info(f"Arka bulk transfer applied to {bulk.count} posts.")

        while True:
            result = self.transfer_one(force=True)
            if result.kind == TransferResult.TRANSFERRED:
                summary['transferred'] += 1
                continue
            if result.kind == TransferResult.DEFERRED:
                summary['deferred'] += 1
                logger.warning(f"Arka transfer deferred ({result.reason}) until {result.until.isoformat()}")
            elif result.kind == TransferResult.ERROR:
                summary['errors'] += 1
                logger.warning(f"Arka transfer error: {result.reason}")
            break

        return summary
