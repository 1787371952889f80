"""
Session Provider - upstream credential header sets

Operators register a header block per upstream service (usually copied
from the browser's "Copy as cURL"). The pipeline always uses the most
recently updated session that is active and not locked.

Usage:
    from services.session_provider import SessionProvider

    provider = SessionProvider()
    session = provider.get_active_session('arka')
    if session and session.has_authorization():
        requests.post(url, headers=session.headers, ...)
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from db.transaction import atomic
from models.admin_session import AdminSession, SessionService
from models.database import db
from utils import clock

logger = logging.getLogger(__name__)

_CURL_PREFIX = re.compile(r'^(-H|--header)\s+', re.IGNORECASE)
_QUOTES = re.compile(r'^[\'"]|[\'"]$')


def parse_raw_headers(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse "Key: Value" lines into a dict.

    Lines pasted from "Copy as cURL" are accepted as-is: the -H prefix,
    surrounding quotes and trailing backslash are stripped. Lines without
    a colon, or with an empty key or value, are ignored.
    """
    headers: Dict[str, str] = {}
    if not raw:
        return headers

    for line in raw.splitlines():
        line = line.strip().rstrip('\\').strip()
        if not line:
            continue
        cleaned = _QUOTES.sub('', _CURL_PREFIX.sub('', line))
        key, sep, value = cleaned.partition(':')
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if not key or not value:
            continue
        headers[key] = value

    return headers


def prepare_request_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Force a JSON content type and drop any stale Content-Length."""
    prepared = {
        k: v for k, v in headers.items()
        if k.lower() not in ('content-type', 'content-length')
    }
    prepared['Content-Type'] = 'application/json'
    return prepared


@dataclass
class ActiveSession:
    """Headers of one stored session, ready to send."""
    session_id: int
    service: str
    headers: Dict[str, str]

    def has_authorization(self) -> bool:
        return any(k.lower() == 'authorization' and v for k, v in self.headers.items())


class SessionProvider:
    """Read side of the credential store plus the few writes the pipeline needs."""

    def get_active_session(self, service: str) -> Optional[ActiveSession]:
        with atomic() as session:
            row = (
                session.query(AdminSession)
                .filter(
                    AdminSession.service == service,
                    AdminSession.active.is_(True),
                    AdminSession.locked.is_(False),
                )
                .order_by(AdminSession.updated_at.desc(), AdminSession.id.desc())
                .first()
            )
            if row is None:
                return None
            return ActiveSession(
                session_id=row.id,
                service=row.service,
                headers=prepare_request_headers(dict(row.headers or {})),
            )

    def get_active_headers(self, service: str) -> Optional[Dict[str, str]]:
        session = self.get_active_session(service)
        return session.headers if session else None

    def deactivate(self, session_id: int, reason: str) -> bool:
        """Mark a session inactive, recording why."""
        now = clock.utcnow()
        with atomic() as session:
            updated = (
                session.query(AdminSession)
                .filter(AdminSession.id == session_id)
                .update(
                    {
                        AdminSession.active: False,
                        AdminSession.last_error: reason,
                        AdminSession.last_error_at: now,
                        AdminSession.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
        if updated:
            logger.warning(f"Deactivated session {session_id}: {reason}")
        return bool(updated)

    def register(self, service: str, headers_raw: str, label: Optional[str] = None) -> AdminSession:
        """
        Store a new header set as the active session for `service`.

        Raises:
            ValueError: unknown service or no usable header lines.
        """
        if service not in SessionService.ALL:
            raise ValueError(f"Unknown service '{service}', expected one of {', '.join(SessionService.ALL)}")
        headers = parse_raw_headers(headers_raw)
        if not headers:
            raise ValueError("Headers are required")

        now = clock.utcnow()
        row = AdminSession(
            service=service,
            label=(label or '').strip() or 'default',
            headers_raw=headers_raw,
            headers=headers,
            active=True,
            locked=False,
            created_at=now,
            updated_at=now,
        )
        with atomic() as session:
            session.add(row)
            session.flush()
            row_id = row.id

        logger.info(f"Registered {service} session {row_id} ({len(headers)} headers)")
        return row

    def list_sessions(self, service: Optional[str] = None) -> List[AdminSession]:
        query = db.session.query(AdminSession)
        if service:
            query = query.filter(AdminSession.service == service)
        return query.order_by(AdminSession.updated_at.desc()).all()
