"""
Tests for the business title sweep.
"""

from datetime import timedelta

import pytest

from models.business_phone_cache import BusinessPhoneCache
from models.database import db
from services.business_title_refresh import BusinessTitleRefresher
from services.phone_fetch_lease import PhoneFetchLeaseService


@pytest.fixture
def refresher(app, fake_divar):
    return BusinessTitleRefresher(lease_service=PhoneFetchLeaseService(divar_client=fake_divar))


def seed_cache(**fields):
    db.session.add(BusinessPhoneCache(**fields))
    db.session.commit()


def get_cache(business_ref):
    db.session.expire_all()
    return db.session.query(BusinessPhoneCache).filter_by(business_ref=business_ref).one()


class TestRefreshOne:

    def test_disabled_by_default(self, refresher, clock):
        seed_cache(business_ref='biz_a')
        assert refresher.refresh_one() is None

    def test_enabled_by_switch(self, refresher, clock, fake_divar, monkeypatch):
        monkeypatch.setenv('ENABLE_BUSINESS_TITLE_CRON', 'true')
        seed_cache(business_ref='biz_a')
        fake_divar.titles['biz_a'] = 'Title A'

        assert refresher.refresh_one().title == 'Title A'

    def test_missing_titles_first_then_stale(self, refresher, clock, fake_divar):
        seed_cache(business_ref='biz_stale', title='Old B', title_fetched_at=clock.now - timedelta(days=8))
        seed_cache(business_ref='biz_missing')
        seed_cache(business_ref='biz_fresh', title='Fresh', title_fetched_at=clock.now - timedelta(days=1))
        fake_divar.titles['biz_missing'] = 'Title A'

        first = refresher.refresh_one(force=True)
        assert first.to_dict() == {'business_ref': 'biz_missing', 'title': 'Title A', 'resolved': True}
        cache = get_cache('biz_missing')
        assert cache.title == 'Title A'
        assert cache.title_fetched_at == clock.now
        assert cache.locked_until is None

        second = refresher.refresh_one(force=True)
        assert second.business_ref == 'biz_stale'
        assert second.resolved is False
        assert get_cache('biz_stale').title == 'Old B'
        assert get_cache('biz_stale').title_fetched_at == clock.now

        assert refresher.refresh_one(force=True) is None
        assert [call[0] for call in fake_divar.calls] == ['biz_missing', 'biz_stale']

    def test_locked_rows_skipped(self, refresher, clock, fake_divar):
        seed_cache(business_ref='biz_a', locked_until=clock.now + timedelta(seconds=30))

        assert refresher.refresh_one(force=True) is None
        assert fake_divar.calls == []

    def test_lookup_error_keeps_previous_title(self, refresher, clock, fake_divar):
        fake_divar.raises = True
        seed_cache(business_ref='biz_a', title='Keep Me', title_fetched_at=clock.now - timedelta(days=30))

        result = refresher.refresh_one(force=True)

        assert result.title == 'Keep Me'
        assert result.resolved is False
        cache = get_cache('biz_a')
        assert cache.locked_until is None
        assert cache.title_fetched_at == clock.now
