"""
Models package - SQLAlchemy models
"""
from models.database import db
from models.fetch_cursor import FetchCursor
from models.harvested_record import HarvestedRecord, TransferStatus
from models.listing_post import ListingPost, PhoneFetchStatus
from models.business_phone_cache import BusinessPhoneCache
from models.admin_session import AdminSession, SessionService

__all__ = [
    'db',
    'FetchCursor',
    'HarvestedRecord',
    'TransferStatus',
    'ListingPost',
    'PhoneFetchStatus',
    'BusinessPhoneCache',
    'AdminSession',
    'SessionService',
]
