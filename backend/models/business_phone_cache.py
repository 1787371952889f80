"""
BusinessPhoneCache Model - phone and title shared by all listings of one business

Keyed by business_ref. A phone is reused for CACHE_TTL; the title has its own
TTL and is refreshed by the title sweep. locked_until is held by whichever
lease or sweep is currently resolving this business.
"""
from datetime import timedelta

from models.database import db
from utils import clock

CACHE_TTL = timedelta(days=7)


class BusinessPhoneCache(db.Model):
    __tablename__ = 'business_phone_cache'

    id = db.Column(db.Integer, primary_key=True)
    business_ref = db.Column(db.String(128), nullable=False, unique=True)

    phone_number = db.Column(db.String(32))
    fetched_at = db.Column(db.DateTime)
    locked_until = db.Column(db.DateTime)

    title = db.Column(db.Text)
    title_fetched_at = db.Column(db.DateTime)

    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), onupdate=lambda: clock.utcnow())

    def has_fresh_phone(self, now) -> bool:
        # Exactly CACHE_TTL old is already stale
        return bool(self.phone_number) and self.fetched_at is not None and now - self.fetched_at < CACHE_TTL

    def has_fresh_title(self, now) -> bool:
        return bool(self.title) and self.title_fetched_at is not None and now - self.title_fetched_at < CACHE_TTL

    def is_locked(self, now) -> bool:
        return self.locked_until is not None and self.locked_until > now
