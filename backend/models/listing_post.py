"""
ListingPost Model - a listing mirrored from the marketplace

Only the columns the phone pipeline reads or writes are modelled here;
the rest of the listing lives in `payload`.

Phone fetch state machine:
    PENDING -> IN_PROGRESS -> DONE
                           -> FAILED -> IN_PROGRESS (after lock expiry) ...
DONE is terminal. A post drops out after MAX_PHONE_FETCH_ATTEMPTS leases.
"""
from models.database import db
from utils import clock


class PhoneFetchStatus:
    PENDING = 'PENDING'
    IN_PROGRESS = 'IN_PROGRESS'
    DONE = 'DONE'
    FAILED = 'FAILED'


class ListingPost(db.Model):
    __tablename__ = 'listing_posts'

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(64), nullable=False, unique=True)
    title = db.Column(db.Text)
    payload = db.Column(db.JSON)

    # Contact
    phone_number = db.Column(db.String(32))
    owner_name = db.Column(db.Text)
    contact_uuid = db.Column(db.String(64))
    business_ref = db.Column(db.String(128), index=True)
    business_type = db.Column(db.String(64))

    # Lease
    phone_fetch_status = db.Column(db.String(20), nullable=False, default=PhoneFetchStatus.PENDING, index=True)
    phone_fetch_locked_until = db.Column(db.DateTime)
    phone_fetch_lease_id = db.Column(db.String(36), index=True)
    phone_fetch_worker = db.Column(db.String(128))
    phone_fetch_attempt_count = db.Column(db.Integer, nullable=False, default=0)
    phone_fetch_last_error = db.Column(db.Text)

    created_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), onupdate=lambda: clock.utcnow())

    def payload_business_ref(self):
        """business_ref as sent by the marketplace, if the post column is empty."""
        payload = self.payload if isinstance(self.payload, dict) else {}
        for key in ('business_ref', 'businessRef'):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        webengage = payload.get('webengage')
        if isinstance(webengage, dict):
            value = webengage.get('business_ref')
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'title': self.title,
            'phone_number': self.phone_number,
            'owner_name': self.owner_name,
            'business_ref': self.business_ref,
            'phone_fetch_status': self.phone_fetch_status,
            'phone_fetch_attempt_count': self.phone_fetch_attempt_count,
            'phone_fetch_last_error': self.phone_fetch_last_error,
        }
