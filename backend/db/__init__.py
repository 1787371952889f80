# Database utilities package
from .transaction import atomic, is_postgres
