"""
Arka Catalog API Client - phone records by sequential id

Endpoints (all POST, JSON, session headers):
- Latest listing page: POST /Search/FullDetails            body {"page": 1}
- Phone record:        POST /Search/FullDetails/Phone/{id} body {}

The client never raises on upstream trouble. Every call returns an
ArkaAPIResponse; status_code == 0 means the request never got an HTTP
answer (timeout, DNS, connection reset). Callers classify on status_code.

Usage:
    from services.arka_api_client import ArkaAPIClient

    client = ArkaAPIClient()
    response = client.fetch_phone(10042, headers)
    if response.ok:
        record = response.record()
"""

import time
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from services.pipeline_config import FETCH_TIMEOUT_SECONDS, get_arka_base_url

logger = logging.getLogger(__name__)

BODY_SNIPPET_CHARS = 200


@dataclass
class ArkaAPIResponse:
    """Wrapper for one catalog call."""
    status_code: int
    data: Any = None
    error: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_transport_error(self) -> bool:
        return self.status_code == 0

    def record(self) -> Any:
        """The `data` object of a phone response, or the whole body."""
        if isinstance(self.data, dict) and self.data.get('data') is not None:
            return self.data['data']
        return self.data

    def body_snippet(self) -> str:
        if isinstance(self.data, str):
            return self.data[:BODY_SNIPPET_CHARS]
        try:
            return json.dumps(self.data if self.data is not None else {}, ensure_ascii=False)[:BODY_SNIPPET_CHARS]
        except (TypeError, ValueError):
            return str(self.data)[:BODY_SNIPPET_CHARS]


class ArkaAPIClient:
    """
    Thin requests-based client for the catalog.

    One requests.Session per client. The backfill pool threads share the
    fetcher's client; the session's connection pool (10 connections by
    default) matches the default backfill concurrency.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = FETCH_TIMEOUT_SECONDS):
        self.base_url = (base_url or get_arka_base_url()).rstrip('/')
        self.timeout = timeout
        self._session = requests.Session()

    def _post(self, path: str, body: Dict[str, Any], headers: Dict[str, str]) -> ArkaAPIResponse:
        url = f"{self.base_url}{path}"
        start = time.time()
        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            duration = time.time() - start
            logger.warning(f"Arka request failed for {path}: {e}")
            return ArkaAPIResponse(status_code=0, error=str(e), duration_seconds=duration)

        duration = time.time() - start
        try:
            data = response.json()
        except ValueError:
            data = response.text

        return ArkaAPIResponse(
            status_code=response.status_code,
            data=data,
            duration_seconds=duration,
        )

    def fetch_phone(self, arka_id: int, headers: Dict[str, str]) -> ArkaAPIResponse:
        return self._post(f"/Search/FullDetails/Phone/{arka_id}", {}, headers)

    def fetch_latest_page(self, headers: Dict[str, str]) -> ArkaAPIResponse:
        return self._post("/Search/FullDetails", {"page": 1}, headers)


def extract_post_ids(body: Any) -> List[int]:
    """Numeric `posts[].id` values of a latest-page response."""
    posts = body.get('posts') if isinstance(body, dict) else None
    if not isinstance(posts, list):
        return []
    ids = []
    for post in posts:
        value = post.get('id') if isinstance(post, dict) else None
        # bool is an int subclass; it is never a catalog id
        if isinstance(value, int) and not isinstance(value, bool):
            ids.append(value)
    return ids
