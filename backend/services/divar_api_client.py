"""
Divar brand landing client - business titles

A business_ref looks like "<type>_<token>" (e.g. "premium-panel_wXyZ12").
The brand landing endpoint takes the token part and returns a widget list;
the business title is the LEGEND_TITLE_ROW widget's data.title.
"""

import logging
from typing import Any, Dict, Optional

import requests

from services.pipeline_config import FETCH_TIMEOUT_SECONDS, get_divar_base_url

logger = logging.getLogger(__name__)

TITLE_WIDGET_TYPE = 'LEGEND_TITLE_ROW'


def brand_token(business_ref: str) -> str:
    """Token part of a business_ref (after the first '_'), or the ref itself."""
    _, sep, token = business_ref.partition('_')
    return token if sep and token else business_ref


def extract_title(body: Any) -> Optional[str]:
    widgets = body.get('header_widget_list') if isinstance(body, dict) else None
    if not isinstance(widgets, list):
        return None
    for widget in widgets:
        if not isinstance(widget, dict) or widget.get('widget_type') != TITLE_WIDGET_TYPE:
            continue
        data = widget.get('data')
        title = data.get('title') if isinstance(data, dict) else None
        if isinstance(title, str) and title.strip():
            return title.strip()
    return None


class DivarAPIClient:
    def __init__(self, base_url: Optional[str] = None, timeout: float = FETCH_TIMEOUT_SECONDS):
        self.base_url = (base_url or get_divar_base_url()).rstrip('/')
        self.timeout = timeout
        self._session = requests.Session()

    def fetch_brand_title(self, business_ref: str, headers: Dict[str, str]) -> Optional[str]:
        """
        Look up the display title of a business.

        Returns None on any transport failure, non-2xx, or a response
        without a title widget.
        """
        token = brand_token(business_ref)
        url = f"{self.base_url}/v8/premium-user/web/business/brand-landing/{token}"
        body = {
            "specification": {"last_item_identifier": ""},
            "request_data": {"brand_token": token, "tracker_session_id": ""},
        }
        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Brand lookup failed for {business_ref}: {e}")
            return None

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"Brand lookup http={response.status_code} business={business_ref} "
                f"body={response.text[:200]}"
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Brand lookup returned non-JSON for {business_ref}")
            return None

        return extract_title(payload)

    def close(self) -> None:
        self._session.close()
