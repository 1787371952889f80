"""
Tests for the transfer reconciler (harvested record -> listing post).
"""

from datetime import timedelta

import pytest

from models.business_phone_cache import BusinessPhoneCache
from models.database import db
from models.harvested_record import HarvestedRecord, TransferStatus
from models.listing_post import ListingPost, PhoneFetchStatus
from services.arka_phone_transfer import ArkaPhoneTransferService


@pytest.fixture
def service(app):
    return ArkaPhoneTransferService()


def get_post(post_id):
    db.session.expire_all()
    return db.session.get(ListingPost, post_id)


def get_record(record_id):
    db.session.expire_all()
    return db.session.get(HarvestedRecord, record_id)


# =============================================================================
# Single record
# =============================================================================

class TestTransferOne:

    def test_disabled_by_default(self, service, clock, make_record):
        make_record(external_id='X1', phone_number='09121234567')
        result = service.transfer_one()
        assert (result.kind, result.reason) == ('skipped', 'cron_disabled')

    def test_enabled_by_switch(self, service, clock, monkeypatch):
        monkeypatch.setenv('ENABLE_ARKA_TRANSFER_CRON', 'true')
        assert service.transfer_one().reason == 'no_pending_records'

    def test_matching_post_gets_phone(self, service, clock, make_record, make_post):
        record_id = make_record(external_id='X1', phone_number='09121234567', owner_name='Reza')
        post_id = make_post(
            external_id='X1',
            business_ref='biz_1',
            phone_fetch_status=PhoneFetchStatus.IN_PROGRESS,
            phone_fetch_lease_id='lease-1',
            phone_fetch_locked_until=clock.now + timedelta(seconds=30),
        )

        result = service.transfer_one(force=True)

        assert result.to_dict() == {'kind': 'transferred', 'external_id': 'X1', 'phone': '09121234567'}
        post = get_post(post_id)
        assert post.phone_number == '09121234567'
        assert post.owner_name == 'Reza'
        assert post.phone_fetch_status == PhoneFetchStatus.DONE
        assert post.phone_fetch_lease_id is None
        assert post.phone_fetch_locked_until is None
        record = get_record(record_id)
        assert record.status == TransferStatus.TRANSFERRED
        assert record.transferred_at == clock.now
        assert record.transfer_attempt_count == 1
        cache = db.session.query(BusinessPhoneCache).filter_by(business_ref='biz_1').one()
        assert cache.phone_number == '09121234567'
        assert cache.fetched_at == clock.now

        assert service.transfer_one(force=True).reason == 'no_pending_records'

    def test_placeholder_phone_never_written(self, service, clock, make_record, make_post):
        make_record(external_id='X1', phone_number='09000000000')
        post_id = make_post(external_id='X1', business_ref='biz_1')

        result = service.transfer_one(force=True)

        assert result.kind == 'transferred'
        assert result.phone is None
        post = get_post(post_id)
        assert post.phone_number is None
        assert post.phone_fetch_status == PhoneFetchStatus.DONE
        assert db.session.query(BusinessPhoneCache).count() == 0

    def test_missing_external_id_is_deferred(self, service, clock, make_record):
        record_id = make_record(external_id=None, phone_number='09121234567')

        result = service.transfer_one(force=True)

        assert (result.kind, result.reason) == ('error', 'missing_external_id')
        record = get_record(record_id)
        assert record.status == TransferStatus.NOT_TRANSFERRED
        assert record.transfer_last_error == 'missing_external_id'
        assert record.next_transfer_attempt_at == clock.now + timedelta(minutes=10)
        assert record.transfer_locked_until is None
        assert service.transfer_one(force=True).reason == 'no_pending_records'

    def test_post_not_found_deferred_then_retried(self, service, clock, make_record, make_post):
        record_id = make_record(external_id='X1', phone_number='09121234567')

        deferred = service.transfer_one(force=True)
        assert (deferred.kind, deferred.reason) == ('deferred', 'post_not_found')
        assert deferred.until == clock.now + timedelta(minutes=10)
        assert get_record(record_id).transfer_last_error == 'post_not_found'

        post_id = make_post(external_id='X1')
        assert service.transfer_one(force=True).reason == 'no_pending_records'

        clock.advance(minutes=10)
        assert service.transfer_one(force=True).kind == 'transferred'
        assert get_post(post_id).phone_number == '09121234567'
        assert get_record(record_id).transfer_attempt_count == 2

    def test_records_outside_window_ignored(self, service, clock, make_record, make_post):
        make_record(external_id='X1', phone_number='09121234567', fetched_at=clock.now - timedelta(hours=5))
        make_post(external_id='X1')

        assert service.transfer_one(force=True).reason == 'no_pending_records'

    def test_transfer_locked_record_skipped(self, service, clock, make_record, make_post):
        make_record(
            external_id='X1',
            phone_number='09121234567',
            status=TransferStatus.IN_PROGRESS,
            transfer_locked_until=clock.now + timedelta(seconds=30),
        )
        make_post(external_id='X1')

        assert service.transfer_one(force=True).reason == 'no_pending_records'

    def test_abandoned_in_progress_record_reclaimed_after_lock_expiry(self, service, clock, make_record, make_post):
        record_id = make_record(
            external_id='X1',
            phone_number='09121234567',
            status=TransferStatus.IN_PROGRESS,
            transfer_attempt_count=1,
            transfer_locked_until=clock.now + timedelta(seconds=60),
        )
        post_id = make_post(external_id='X1')

        assert service.transfer_one(force=True).reason == 'no_pending_records'

        clock.advance(seconds=120)
        result = service.transfer_one(force=True)

        assert result.kind == 'transferred'
        assert get_post(post_id).phone_number == '09121234567'
        record = get_record(record_id)
        assert record.status == TransferStatus.TRANSFERRED
        assert record.transfer_attempt_count == 2

    def test_oldest_record_first(self, service, clock, make_record, make_post):
        make_record(external_id='NEW', phone_number='09121111111')
        make_record(external_id='OLD', phone_number='09122222222', fetched_at=clock.now - timedelta(hours=1))
        make_post(external_id='NEW')
        make_post(external_id='OLD')

        assert service.transfer_one(force=True).external_id == 'OLD'


# =============================================================================
# Bulk catch-up
# =============================================================================

class TestTransferMissingPosts:

    def test_disabled_by_default(self, service, clock):
        assert service.transfer_missing_posts().to_dict() == {'kind': 'skipped', 'reason': 'cron_disabled', 'count': 0}

    def test_applies_only_joinable_records(self, service, clock, make_record, make_post):
        matched = make_record(external_id='A', phone_number='09121111111')
        waiting = make_record(external_id='B', phone_number='09122222222')
        make_record(external_id='C', phone_number='09000000000')
        make_record(external_id='D', phone_number='09124444444')
        post_a = make_post(external_id='A')
        post_c = make_post(external_id='C')
        post_d = make_post(external_id='D', phone_number='09350000000')

        result = service.transfer_missing_posts(force=True)

        assert (result.kind, result.count) == ('transferred', 1)
        assert get_post(post_a).phone_number == '09121111111'
        assert get_post(post_c).phone_number is None
        assert get_post(post_d).phone_number == '09350000000'
        assert get_record(matched).status == TransferStatus.TRANSFERRED
        assert get_record(waiting).status == TransferStatus.NOT_TRANSFERRED

        post_b = make_post(external_id='B')
        assert service.transfer_missing_posts(force=True).count == 1
        assert get_post(post_b).phone_number == '09122222222'

        assert service.transfer_missing_posts(force=True).reason == 'no_matches'

    def test_picks_up_deferred_records(self, service, clock, make_record, make_post):
        record_id = make_record(external_id='A', phone_number='09121111111')
        assert service.transfer_one(force=True).kind == 'deferred'

        make_post(external_id='A')
        assert service.transfer_missing_posts(force=True).count == 1
        assert get_record(record_id).status == TransferStatus.TRANSFERRED


class TestDrain:

    def test_bulk_then_single(self, service, clock, make_record, make_post):
        make_record(external_id='A', phone_number='09121111111')
        make_record(external_id='B', phone_number=None, owner_name='Owner B')
        make_record(external_id='C', phone_number='09123333333')
        make_post(external_id='A')
        post_b = make_post(external_id='B')

        summary = service.drain()

        assert summary == {'bulk_transferred': 1, 'transferred': 1, 'deferred': 1, 'errors': 0}
        post = get_post(post_b)
        assert post.owner_name == 'Owner B'
        assert post.phone_fetch_status == PhoneFetchStatus.DONE
