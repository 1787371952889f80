"""
FetchCursor Model - durable pointer into the external catalog's id space

A single row (id='singleton') holds:
- next_fetch_id: the next catalog id to harvest
- locked_until / locked_by: short claim so only one fetcher calls upstream
- backoff_until: upstream asked us to slow down (429 / 5xx)
- last_status / last_error: outcome of the most recent release
"""
from models.database import db
from utils import clock

SINGLETON_ID = 'singleton'


class FetchCursor(db.Model):
    __tablename__ = 'arka_fetch_cursor'

    id = db.Column(db.String(32), primary_key=True, default=SINGLETON_ID)

    next_fetch_id = db.Column(db.BigInteger, nullable=False)

    # Claim
    locked_until = db.Column(db.DateTime)
    locked_by = db.Column(db.String(64))

    backoff_until = db.Column(db.DateTime)

    # Outcome of the last step: HTTP status, or 0 for transport failure
    last_status = db.Column(db.Integer)
    last_error = db.Column(db.Text)

    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), onupdate=lambda: clock.utcnow())

    def is_locked(self, now) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def in_backoff(self, now) -> bool:
        return self.backoff_until is not None and self.backoff_until > now

    def to_dict(self):
        return {
            'next_fetch_id': self.next_fetch_id,
            'locked_until': self.locked_until.isoformat() if self.locked_until else None,
            'locked_by': self.locked_by,
            'backoff_until': self.backoff_until.isoformat() if self.backoff_until else None,
            'last_status': self.last_status,
            'last_error': self.last_error,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
