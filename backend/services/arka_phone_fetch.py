"""
Arka Phone Fetcher - walk the catalog's id space one record at a time

The cursor (arka_fetch_cursor, single row) points at the next catalog id.
Each step claims the cursor for a fraction of a second, calls upstream for
that id, then releases the cursor with the outcome:

    Status          Cursor                         Result
    --------------  -----------------------------  ---------------------
    transport fail  same id                        error/network_error
    404             id + 1                         skipped/not_found
    429             same id, backoff 10s           backoff/rate_limit
    401/403/412     id + 1                         skipped/http_<code>
    other non-2xx   same id, backoff 15s           error/http_<code>
    2xx             id + 1, record upserted        stored

Forced steps (CLI, backfill) reserve the id up front and ignore the
cursor lock and backoff window, so several can run in parallel.

Usage:
    from services.arka_phone_fetch import ArkaPhoneFetcher

    fetcher = ArkaPhoneFetcher()
    result = fetcher.fetch_next()
    print(result.to_dict())
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db.transaction import atomic
from models.fetch_cursor import FetchCursor, SINGLETON_ID
from models.harvested_record import HarvestedRecord, TransferStatus
from models.admin_session import SessionService
from services.arka_api_client import ArkaAPIClient, ArkaAPIResponse, extract_post_ids
from services.pipeline_config import (
    ERROR_BACKOFF,
    FETCH_LOCK_SECONDS,
    FETCH_LOCKED_BY,
    RATE_LIMIT_BACKOFF,
    get_fetch_batch,
    get_start_fetch_id,
    is_fetch_enabled,
)
from services.session_provider import SessionProvider
from services.tick_runner import TickGuard
from utils import clock
from utils.phone import normalize_digits, parse_external_id

logger = logging.getLogger(__name__)

# Upstream answers that mean "this id is not for us"; skip it without backoff
SKIP_STATUSES = (401, 403, 412)


@dataclass
class FetchResult:
    """Outcome of one fetch step."""
    kind: str                       # stored | skipped | backoff | error
    reason: Optional[str] = None
    arka_id: Optional[int] = None
    external_id: Optional[str] = None
    until: Optional[datetime] = None

    STORED = 'stored'
    SKIPPED = 'skipped'
    BACKOFF = 'backoff'
    ERROR = 'error'

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.until is not None:
            d['until'] = self.until.isoformat()
        return {k: v for k, v in d.items() if v is not None}


@dataclass
class _Claim:
    arka_id: Optional[int] = None
    locked: bool = False
    backoff_until: Optional[datetime] = None


@dataclass
class ParsedRecord:
    link: Optional[str]
    external_id: Optional[str]
    phone_number: Optional[str]
    owner_name: Optional[str]
    payload: Any


def parse_phone_record(response: ArkaAPIResponse) -> ParsedRecord:
    """Pick the fields we keep out of a 2xx phone response."""
    record = response.record()
    fields = record if isinstance(record, dict) else {}

    link = fields.get('link') if isinstance(fields.get('link'), str) else None
    phone_raw = fields.get('phone') if isinstance(fields.get('phone'), str) else None
    owner = fields.get('malk_name') if isinstance(fields.get('malk_name'), str) else None

    return ParsedRecord(
        link=link,
        external_id=parse_external_id(link),
        phone_number=normalize_digits(phone_raw) or None,
        owner_name=owner,
        payload=record,
    )


class ArkaPhoneFetcher:
    """Cursor-advance fetcher over the catalog's sequential ids."""

    def __init__(
        self,
        client: Optional[ArkaAPIClient] = None,
        sessions: Optional[SessionProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or ArkaAPIClient()
        self.sessions = sessions or SessionProvider()
        self._sleep = sleep
        self.guard = TickGuard('arka-fetch')

    # =========================================================================
    # Cursor
    # =========================================================================

    def _ensure_cursor(self, floor: int) -> None:
        """Create the singleton row if it does not exist yet."""
        with atomic() as session:
            exists = session.query(FetchCursor.id).filter(FetchCursor.id == SINGLETON_ID).first()
        if exists:
            return
        try:
            with atomic() as session:
                session.add(FetchCursor(id=SINGLETON_ID, next_fetch_id=floor, updated_at=clock.utcnow()))
            logger.info(f"Created fetch cursor at {floor}")
        except IntegrityError:
            # Another process created it first
            logger.debug("Fetch cursor created concurrently")

    def _lock_cursor(self, session) -> FetchCursor:
        return (
            session.query(FetchCursor)
            .filter(FetchCursor.id == SINGLETON_ID)
            .populate_existing()
            .with_for_update()
            .one()
        )

    def _claim_cursor(self, now: datetime, force: bool) -> _Claim:
        floor = get_start_fetch_id()
        self._ensure_cursor(floor)

        with atomic() as session:
            cursor = self._lock_cursor(session)

            if cursor.next_fetch_id < floor:
                logger.info(f"Cursor {cursor.next_fetch_id} below floor; resetting to {floor}")
                cursor.next_fetch_id = floor
                cursor.updated_at = now

            if force:
                reserved = cursor.next_fetch_id
                cursor.next_fetch_id = reserved + 1
                cursor.locked_until = None
                cursor.locked_by = None
                cursor.backoff_until = None
                cursor.updated_at = now
                return _Claim(arka_id=reserved)

            if cursor.is_locked(now):
                return _Claim(locked=True)
            if cursor.in_backoff(now):
                return _Claim(backoff_until=cursor.backoff_until)

            cursor.locked_until = now + timedelta(seconds=FETCH_LOCK_SECONDS)
            cursor.locked_by = FETCH_LOCKED_BY
            cursor.updated_at = now
            return _Claim(arka_id=cursor.next_fetch_id)

    def _apply_release(
        self,
        cursor: FetchCursor,
        arka_id: int,
        now: datetime,
        *,
        status: Optional[int],
        error: Optional[str],
        advance: bool,
        backoff_until: Optional[datetime] = None,
    ) -> None:
        # A forced step already moved the cursor past arka_id; other forced
        # steps may have moved it further. Never move backwards past arka_id
        # on advance, and rewind to arka_id to retry it otherwise.
        if advance:
            cursor.next_fetch_id = max(cursor.next_fetch_id, arka_id + 1)
        else:
            cursor.next_fetch_id = min(cursor.next_fetch_id, arka_id)
        cursor.locked_until = None
        cursor.locked_by = None
        cursor.backoff_until = backoff_until
        cursor.last_status = status
        cursor.last_error = error
        cursor.updated_at = now

    def _release(self, arka_id: int, reason: str, **kwargs) -> None:
        now = clock.utcnow()
        with atomic() as session:
            cursor = self._lock_cursor(session)
            self._apply_release(cursor, arka_id, now, **kwargs)
        logger.debug(f"Cursor released ({reason}) at id={arka_id}")

    def cursor_position(self) -> Optional[int]:
        with atomic() as session:
            return (
                session.query(FetchCursor.next_fetch_id)
                .filter(FetchCursor.id == SINGLETON_ID)
                .scalar()
            )

    # =========================================================================
    # Single step
    # =========================================================================

    def fetch_next(self, force: bool = False) -> FetchResult:
        """
        Harvest the record at the cursor, or decline.

        Args:
            force: ignore kill switches, cursor lock and backoff window

        Returns:
            FetchResult describing what happened
        """
        if not force and not is_fetch_enabled():
            return FetchResult(FetchResult.SKIPPED, 'cron_disabled')

        now = clock.utcnow()
        claim = self._claim_cursor(now, force)

        if claim.locked:
            logger.debug("Fetch cursor locked; skipping")
            return FetchResult(FetchResult.SKIPPED, 'locked')
        if claim.backoff_until is not None:
            return FetchResult(FetchResult.BACKOFF, 'backoff_active', until=claim.backoff_until)

        arka_id = claim.arka_id
        session = self.sessions.get_active_session(SessionService.ARKA)
        if session is None or not session.has_authorization():
            logger.warning("No usable Arka session headers (missing Authorization)")
            self._release(arka_id, 'missing_headers', status=None, error='missing_headers', advance=False)
            return FetchResult(FetchResult.ERROR, 'missing_headers', arka_id=arka_id)

        response = self.client.fetch_phone(arka_id, session.headers)
        return self._handle_response(arka_id, response)

    def _handle_response(self, arka_id: int, response: ArkaAPIResponse) -> FetchResult:
        status = response.status_code
        now = clock.utcnow()

        if response.is_transport_error:
            self._release(arka_id, 'network_error', status=0, error='network_error', advance=False)
            return FetchResult(FetchResult.ERROR, 'network_error', arka_id=arka_id)

        if status == 404:
            self._release(arka_id, 'not_found', status=status, error='not_found', advance=True)
            logger.debug(f"Arka id={arka_id} not found; advancing cursor")
            return FetchResult(FetchResult.SKIPPED, 'not_found', arka_id=arka_id)

        if status == 429:
            until = now + RATE_LIMIT_BACKOFF
            self._release(
                arka_id, 'rate_limit',
                status=status, error='rate_limit', advance=False, backoff_until=until,
            )
            logger.warning(f"Arka rate limited at id={arka_id}; backing off until {until.isoformat()}")
            return FetchResult(FetchResult.BACKOFF, 'rate_limit', arka_id=arka_id, until=until)

        if status in SKIP_STATUSES:
            reason = f"http_{status}"
            self._release(arka_id, 'forbidden', status=status, error=reason, advance=True)
            logger.warning(f"Arka fetch forbidden/unauthorized id={arka_id} status={status} body={response.body_snippet()}")
            return FetchResult(FetchResult.SKIPPED, reason, arka_id=arka_id)

        if not response.ok:
            reason = f"http_{status}"
            until = now + ERROR_BACKOFF
            self._release(
                arka_id, 'http_error',
                status=status, error=reason, advance=False, backoff_until=until,
            )
            logger.warning(f"Arka fetch failed id={arka_id} status={status} body={response.body_snippet()}")
            return FetchResult(FetchResult.ERROR, reason, arka_id=arka_id, until=until)

        parsed = parse_phone_record(response)
        try:
            self._store(arka_id, status, parsed)
        except IntegrityError:
            # Concurrent forced step inserted the same arka_id; the row exists now
            logger.debug(f"Record {arka_id} inserted concurrently; retrying as update")
            self._store(arka_id, status, parsed)

        logger.info(
            f"Arka fetch stored: id={arka_id} externalId={parsed.external_id or 'n/a'} "
            f"phone={parsed.phone_number or 'n/a'}"
        )
        return FetchResult(FetchResult.STORED, arka_id=arka_id, external_id=parsed.external_id)

    def _store(self, arka_id: int, status: int, parsed: ParsedRecord) -> None:
        now = clock.utcnow()
        with atomic() as session:
            record = (
                session.query(HarvestedRecord)
                .filter(HarvestedRecord.arka_id == arka_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
            if record is None:
                record = HarvestedRecord(arka_id=arka_id)
                session.add(record)

            # Missing fields keep what an earlier harvest stored
            if parsed.link is not None:
                record.source_link = parsed.link
            if parsed.external_id is not None:
                record.external_id = parsed.external_id
            if parsed.phone_number is not None:
                record.phone_number = parsed.phone_number
            if parsed.owner_name is not None:
                record.owner_name = parsed.owner_name
            if parsed.payload is not None:
                record.payload = parsed.payload

            record.status = TransferStatus.NOT_TRANSFERRED
            record.transfer_attempt_count = 0
            record.transfer_locked_until = None
            record.transfer_last_error = None
            record.next_transfer_attempt_at = None
            record.transferred_at = None
            record.fetched_at = now
            record.updated_at = now

            cursor = self._lock_cursor(session)
            self._apply_release(cursor, arka_id, now, status=status, error=None, advance=True)

    # =========================================================================
    # Latest id probe
    # =========================================================================

    def fetch_latest_id(self) -> Optional[int]:
        """
        Highest catalog id on the first listing page.

        Returns None when no usable session exists or upstream fails.
        A 401/403 deactivates the session that was used.
        """
        session = self.sessions.get_active_session(SessionService.ARKA)
        if session is None:
            logger.warning("No Arka headers available to fetch latest id.")
            return None
        if not session.has_authorization():
            logger.warning("Arka headers missing Authorization; cannot fetch latest id.")
            return None

        response = self.client.fetch_latest_page(session.headers)
        if response.is_transport_error:
            logger.warning(f"Failed to fetch latest Arka id: {response.error}")
            return None
        if not response.ok:
            logger.warning(f"Arka latest-id request failed http={response.status_code} body={response.body_snippet()}")
            if response.status_code in (401, 403):
                self.sessions.deactivate(session.session_id, 'auth_failed')
            return None

        ids = extract_post_ids(response.data)
        if not ids:
            return None
        return max(ids)

    # =========================================================================
    # Periodic tick
    # =========================================================================

    def run_tick(self) -> List[FetchResult]:
        """
        Up to ARKA_FETCH_BATCH steps, stopping at the first non-stored result.

        Overlapping ticks in the same process return immediately.
        """
        if not self.guard.acquire():
            return []

        results: List[FetchResult] = []
        try:
            for _ in range(get_fetch_batch()):
                try:
                    result = self.fetch_next(force=False)
                except Exception:
                    logger.exception("Fetch tick step failed")
                    break
                results.append(result)
                if result.kind != FetchResult.STORED:
                    break
        finally:
            self.guard.release()
        return results

    # =========================================================================
    # Backfill
    # =========================================================================

    def _ensure_cursor_at_least(self, start_id: int) -> None:
        self._ensure_cursor(start_id)
        with atomic() as session:
            cursor = self._lock_cursor(session)
            if cursor.next_fetch_id < start_id:
                cursor.next_fetch_id = start_id
                cursor.updated_at = clock.utcnow()

    def _forced_step(self) -> Optional[FetchResult]:
        try:
            return self.fetch_next(force=True)
        except Exception:
            logger.exception("Arka forced fetch failed")
            return None

    def _forced_step_in_context(self, app) -> Optional[FetchResult]:
        # Each pool thread gets its own app context, hence its own DB session
        with app.app_context():
            return self._forced_step()

    def run_backfill(
        self,
        start_id: Optional[int] = None,
        max_id: Optional[int] = None,
        concurrency: int = 10,
    ) -> Dict[str, Any]:
        """
        Catch the cursor up to `max_id` with forced parallel steps.

        Args:
            start_id: cursor is raised to at least this id (default: floor)
            max_id: stop once the cursor reaches it (default: latest id probe)
            concurrency: forced steps issued per round

        Returns:
            Summary dict with counts per outcome, or {'aborted': reason}
        """
        start_id = start_id if start_id is not None else get_start_fetch_id()
        if max_id is None:
            max_id = self.fetch_latest_id()
            if max_id is None:
                logger.error("Unable to determine latest Arka id; aborting.")
                return {'aborted': 'latest_id_unknown'}

        self._ensure_cursor_at_least(start_id)
        summary = {'stored': 0, 'not_found': 0, 'skipped': 0, 'backoff': 0, 'error': 0, 'failed': 0, 'rounds': 0}
        logger.info(f"Arka backfill start: from={start_id} maxId={max_id} concurrency={concurrency}")

        pool = None
        if concurrency > 1:
            app = current_app._get_current_object()
            pool = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix='arka-backfill')

        try:
            while True:
                next_id = self.cursor_position()
                if next_id is None or next_id >= max_id:
                    logger.info(f"Reached max id {max_id}. Stopping.")
                    break

                summary['rounds'] += 1
                if pool is None:
                    results = [self._forced_step()]
                else:
                    futures = [pool.submit(self._forced_step_in_context, app) for _ in range(concurrency)]
                    results = [f.result() for f in futures]

                wait = self._tally(results, summary)
                if wait > 0:
                    self._sleep(wait)
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        summary['next_fetch_id'] = self.cursor_position()
        summary['max_id'] = max_id
        logger.info(f"Arka backfill done: {summary}")
        return summary

    def _tally(self, results: List[Optional[FetchResult]], summary: Dict[str, int]) -> float:
        """Count outcomes of one round; return seconds to wait before the next."""
        progress = False
        wait = 0.0
        now = clock.utcnow()

        for result in results:
            if result is None:
                summary['failed'] += 1
                continue
            if result.kind == FetchResult.STORED:
                summary['stored'] += 1
                progress = True
            elif result.kind == FetchResult.BACKOFF:
                summary['backoff'] += 1
                remaining = (result.until - now).total_seconds() if result.until else 0.0
                candidate = max(remaining, 1.0)
                wait = max(wait, candidate)
                logger.warning(f"Arka fetch backoff ({result.reason}) waiting {candidate:.1f}s")
            elif result.kind == FetchResult.SKIPPED:
                if result.reason == 'not_found':
                    summary['not_found'] += 1
                    progress = True
                else:
                    summary['skipped'] += 1
                    wait = max(wait, 0.2)
                    logger.debug(f"Arka fetch skipped: {result.reason}")
            elif result.kind == FetchResult.ERROR:
                summary['error'] += 1
                wait = max(wait, 1.0)
                logger.warning(f"Arka fetch error: {result.reason}")

        if wait == 0 and not progress:
            wait = 0.2
        return wait
