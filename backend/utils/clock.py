"""
Clock helpers.

All pipeline timestamps are naive UTC. Services call clock.utcnow() through
the module (not a from-import) so tests can freeze time with monkeypatch.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
