"""
Audience-data provider client.

Endpoints used:
- POST /audiences/preview        -> {"count": int}          (optional; may 404)
- POST /audiences                -> {"audienceId": str}
- GET  /audiences/{id}?page&page_size -> {"data": [...], "has_more"? , "total_pages"?}

Reliability guardrails:
- Every request carries an explicit timeout; a hung provider surfaces as
  ProviderTimeout instead of stalling the run.
- No retries here. Retry/backoff belongs to the orchestration layer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..errors import PreviewUnavailable, ProviderError, ProviderTimeout
from ..models import RecordPage

logger = logging.getLogger(__name__)

USER_AGENT = "leadpull-segment-puller/1.0"
_PREVIEW_MISSING_STATUSES = (404, 405, 501)


class AudienceClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (api_key or "").strip():
            raise ValueError("api_key required")
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Api-Key": api_key.strip(),
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

    # -----------------------------
    # transport
    # -----------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout_s, **kwargs)
        except requests.Timeout as e:
            raise ProviderTimeout(f"{method} {path} timed out after {self.timeout_s}s") from e
        except requests.RequestException as e:
            raise ProviderError(f"{method} {path} failed: {type(e).__name__}: {str(e)[:200]}") from e

        if resp.status_code >= 400:
            raise ProviderError(
                f"{method} {path} -> HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderError(f"{method} {path} returned non-JSON body") from e

        if not isinstance(body, dict):
            raise ProviderError(f"{method} {path} returned {type(body).__name__}, expected object")
        return body

    # -----------------------------
    # API
    # -----------------------------
    def preview(self, filters: Dict[str, Any]) -> int:
        try:
            body = self._request("POST", "/audiences/preview", json={"filters": filters})
        except ProviderError as e:
            if e.status_code in _PREVIEW_MISSING_STATUSES:
                raise PreviewUnavailable(str(e), status_code=e.status_code) from e
            raise
        try:
            return int(body.get("count") or 0)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"preview count is not a number: {body.get('count')!r}") from e

    def create_query(self, name: str, filters: Dict[str, Any]) -> Optional[str]:
        body = self._request("POST", "/audiences", json={"name": name, "filters": filters})
        audience_id = body.get("audienceId") or body.get("audience_id") or body.get("id")
        if audience_id is None:
            return None
        audience_id = str(audience_id).strip()
        return audience_id or None

    def fetch_page(self, query_id: str, page: int, page_size: int) -> RecordPage:
        body = self._request(
            "GET",
            f"/audiences/{query_id}",
            params={"page": page, "page_size": page_size},
        )

        records = body.get("data")
        if records is None:
            records = body.get("records")
        if records is None:
            records = []
        if not isinstance(records, list):
            raise ProviderError(f"records for {query_id} page {page} is not a list")

        if "has_more" in body:
            has_more = bool(body.get("has_more"))
        else:
            # page-based pagination; no total_pages means a single page
            try:
                total_pages = int(body.get("total_pages") or 1)
            except (TypeError, ValueError):
                total_pages = 1
            has_more = page < total_pages

        return RecordPage(records=records, has_more=has_more)
