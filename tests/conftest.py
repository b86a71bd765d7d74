from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine, insert, select
from sqlalchemy.pool import StaticPool

from leadpull.config import EngineSettings
from leadpull.errors import PreviewUnavailable
from leadpull.models import RecordPage, RunSummary
from leadpull.schema import Lead, UserLeadAssignment, UserTargeting, create_schema
from leadpull.store import LeadStore


class Clock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeProvider:
    """
    Scripted audience provider.

    `pages` is a list of record lists; page N (1-based) returns pages[N-1].
    `preview_count=None` behaves like a provider without a preview endpoint.
    `fetch_errors` maps page -> exceptions raised (once each) before that
    page succeeds.
    """

    def __init__(
        self,
        pages: Optional[Sequence[List[Dict[str, Any]]]] = None,
        *,
        preview_count: Optional[int] = None,
        preview_error: Optional[Exception] = None,
        create_error: Optional[Exception] = None,
        audience_id: Optional[str] = "aud-1",
        fetch_errors: Optional[Dict[int, List[Exception]]] = None,
    ) -> None:
        self.pages = list(pages or [])
        self.preview_count = preview_count
        self.preview_error = preview_error
        self.create_error = create_error
        self.audience_id = audience_id
        self.fetch_errors = {k: list(v) for k, v in (fetch_errors or {}).items()}
        self.calls: List[tuple] = []

    def preview(self, filters: dict) -> int:
        self.calls.append(("preview", filters))
        if self.preview_error is not None:
            raise self.preview_error
        if self.preview_count is None:
            raise PreviewUnavailable("preview not supported", status_code=404)
        return self.preview_count

    def create_query(self, name: str, filters: dict) -> Optional[str]:
        self.calls.append(("create_query", name, filters))
        if self.create_error is not None:
            raise self.create_error
        return self.audience_id

    def fetch_page(self, query_id: str, page: int, page_size: int) -> RecordPage:
        self.calls.append(("fetch_page", query_id, page, page_size))
        pending = self.fetch_errors.get(page)
        if pending:
            raise pending.pop(0)
        idx = page - 1
        if idx >= len(self.pages):
            return RecordPage(records=[], has_more=False)
        return RecordPage(records=list(self.pages[idx])[:page_size], has_more=idx + 1 < len(self.pages))

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)


class OffsetProvider(FakeProvider):
    """Provider that slices one flat result list by (page, page_size), like a real offset API."""

    def __init__(self, records: Sequence[Dict[str, Any]], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.records = list(records)

    def fetch_page(self, query_id: str, page: int, page_size: int) -> RecordPage:
        self.calls.append(("fetch_page", query_id, page, page_size))
        start = (page - 1) * page_size
        end = start + page_size
        return RecordPage(records=self.records[start:end], has_more=end < len(self.records))


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.summaries: List[RunSummary] = []

    def __call__(self, summary: RunSummary) -> bool:
        self.summaries.append(summary)
        if self.fail:
            raise RuntimeError("webhook down")
        return True


def make_record(
    email: Optional[str],
    *,
    first: Optional[str] = "Ada",
    last: Optional[str] = "Lovelace",
    industry: Optional[str] = "SaaS",
    state: Optional[str] = "CA",
    city: Optional[str] = "San Diego",
    postal_code: Optional[str] = "92101",
) -> Dict[str, Any]:
    raw: Dict[str, Any] = {
        "FIRST_NAME": first,
        "LAST_NAME": last,
        "COMPANY_INDUSTRY": industry,
        "PERSONAL_STATE": state,
        "PERSONAL_CITY": city,
        "PERSONAL_ZIP": postal_code,
    }
    if email is not None:
        raw["PERSONAL_EMAILS"] = email
    return raw


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine, clock) -> LeadStore:
    return LeadStore(engine, now=clock)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        api_key="test-key",
        base_url="https://provider.test",
        max_records_per_run=500,
        max_pages=5,
        page_size=50,
        retry_backoff_s=0,
        step_retries=2,
        timeout_s=600,
        webhook_url=None,
    )


@pytest.fixture
def add_targeting(engine):
    def _add(
        user_id: str,
        workspace_id: str = "ws-1",
        *,
        industries: Sequence[str] = (),
        states: Sequence[str] = (),
        cities: Sequence[str] = (),
        zips: Sequence[str] = (),
        daily_cap: Optional[int] = None,
        daily_count: int = 0,
        weekly_cap: Optional[int] = None,
        monthly_cap: Optional[int] = None,
        is_active: bool = True,
    ) -> None:
        with engine.begin() as conn:
            conn.execute(
                insert(UserTargeting.__table__).values(
                    user_id=user_id,
                    workspace_id=workspace_id,
                    target_industries=list(industries),
                    target_states=list(states),
                    target_cities=list(cities),
                    target_zips=list(zips),
                    daily_lead_cap=daily_cap,
                    daily_lead_count=daily_count,
                    weekly_lead_cap=weekly_cap,
                    weekly_lead_count=0,
                    monthly_lead_cap=monthly_cap,
                    monthly_lead_count=0,
                    is_active=is_active,
                )
            )

    return _add


@pytest.fixture
def fetch_all(engine):
    tables = {
        "leads": Lead.__table__,
        "assignments": UserLeadAssignment.__table__,
        "targeting": UserTargeting.__table__,
    }

    def _fetch(name: str) -> List[Dict[str, Any]]:
        table = tables[name]
        with engine.connect() as conn:
            return [dict(r) for r in conn.execute(select(table).order_by(table.c.id)).mappings().all()]

    return _fetch
