"""
HarvestedRecord Model - one phone record pulled from the external catalog

Rows are keyed by the catalog's numeric id (arka_id). A re-harvest
overwrites the fields and resets transfer state; after that only the
transfer reconciler mutates the row.

Transfer status: NOT_TRANSFERRED -> IN_PROGRESS -> TRANSFERRED
"""
from models.database import db
from utils import clock


class TransferStatus:
    NOT_TRANSFERRED = 'NOT_TRANSFERRED'
    IN_PROGRESS = 'IN_PROGRESS'
    TRANSFERRED = 'TRANSFERRED'


class HarvestedRecord(db.Model):
    __tablename__ = 'arka_phone_records'

    id = db.Column(db.Integer, primary_key=True)
    arka_id = db.Column(db.BigInteger, nullable=False, unique=True)

    # Parsed fields
    source_link = db.Column(db.Text)
    external_id = db.Column(db.String(64), index=True)
    phone_number = db.Column(db.String(32))
    owner_name = db.Column(db.Text)
    payload = db.Column(db.JSON)

    # Transfer state
    status = db.Column(db.String(20), nullable=False, default=TransferStatus.NOT_TRANSFERRED, index=True)
    transfer_attempt_count = db.Column(db.Integer, nullable=False, default=0)
    transfer_locked_until = db.Column(db.DateTime)
    next_transfer_attempt_at = db.Column(db.DateTime)
    transfer_last_error = db.Column(db.Text)

    fetched_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), index=True)
    transferred_at = db.Column(db.DateTime)
    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), onupdate=lambda: clock.utcnow())

    def to_dict(self):
        return {
            'id': self.id,
            'arka_id': self.arka_id,
            'external_id': self.external_id,
            'phone_number': self.phone_number,
            'owner_name': self.owner_name,
            'status': self.status,
            'transfer_attempt_count': self.transfer_attempt_count,
            'transfer_last_error': self.transfer_last_error,
            'fetched_at': self.fetched_at.isoformat() if self.fetched_at else None,
            'transferred_at': self.transferred_at.isoformat() if self.transferred_at else None,
        }
