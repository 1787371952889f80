"""
AdminSession Model - upstream credential header sets

Operators paste a browser/curl header block per upstream service; the
pipeline uses the most recently updated active, unlocked one.
"""
from models.database import db
from utils import clock


class SessionService:
    ARKA = 'arka'
    DIVAR = 'divar'

    ALL = (ARKA, DIVAR)


class AdminSession(db.Model):
    __tablename__ = 'admin_api_sessions'

    id = db.Column(db.Integer, primary_key=True)
    service = db.Column(db.String(16), nullable=False, index=True)
    label = db.Column(db.String(128))

    headers_raw = db.Column(db.Text, nullable=False)
    headers = db.Column(db.JSON, nullable=False, default=dict)

    active = db.Column(db.Boolean, nullable=False, default=True)
    locked = db.Column(db.Boolean, nullable=False, default=False)

    last_error = db.Column(db.Text)
    last_error_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow())
    updated_at = db.Column(db.DateTime, nullable=False, default=lambda: clock.utcnow(), onupdate=lambda: clock.utcnow())

    def to_dict(self):
        return {
            'id': self.id,
            'service': self.service,
            'label': self.label,
            'header_names': sorted((self.headers or {}).keys()),
            'active': self.active,
            'locked': self.locked,
            'last_error': self.last_error,
            'last_error_at': self.last_error_at.isoformat() if self.last_error_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
