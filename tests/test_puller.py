import pytest

from leadpull.errors import ProviderError, ProviderTimeout
from leadpull.models import RecordBudget, TargetingCombo
from leadpull.puller import pull_combo

from conftest import FakeProvider, OffsetProvider, make_record


def _combo(*workspaces):
    return TargetingCombo(industries=("SaaS",), geography=("CA",), workspace_ids=list(workspaces or ["ws-1"]))


def _records(n, prefix="lead"):
    return [make_record(f"{prefix}{i}@example.com") for i in range(n)]


def test_zero_preview_skips_query_creation(store, settings, fetch_all):
    provider = FakeProvider([_records(3)], preview_count=0)

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert provider.count("preview") == 1
    assert provider.count("create_query") == 0
    assert provider.count("fetch_page") == 0
    assert result.preview_count == 0
    assert result.inserted == 0
    assert result.error is None
    assert fetch_all("leads") == []


def test_preview_failure_still_creates_query(store, settings):
    provider = FakeProvider([_records(2)], preview_error=ProviderError("boom", status_code=500))

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert provider.count("create_query") == 1
    assert result.preview_count is None
    assert result.inserted == 2


def test_filters_omit_open_dimensions(store, settings):
    provider = FakeProvider([], preview_count=5)
    combo = TargetingCombo(industries=("SaaS",), geography=(), workspace_ids=["ws-1"])

    pull_combo(provider, store, combo, RecordBudget(limit=100), settings)

    _, filters = provider.calls[0]
    assert filters == {"industries": ["SaaS"], "days_back": settings.days_back}


def test_paginates_until_has_more_is_false(store, settings, fetch_all):
    provider = FakeProvider([_records(2, "a"), _records(2, "b"), _records(1, "c")], preview_count=5)

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert result.pages_fetched == 3
    assert result.inserted == 5
    assert provider.count("fetch_page") == 3
    assert len(fetch_all("leads")) == 5


def test_max_pages_bounds_pagination(store, settings):
    settings.max_pages = 2
    provider = FakeProvider([_records(1, "a"), _records(1, "b"), _records(1, "c")], preview_count=3)

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert result.pages_fetched == 2
    assert result.inserted == 2


def test_budget_caps_inserts_and_page_size(store, settings, fetch_all):
    budget = RecordBudget(limit=3)
    provider = FakeProvider([_records(10)], preview_count=10)

    result = pull_combo(provider, store, _combo(), budget, settings)

    assert result.inserted == 3
    assert budget.exhausted
    assert result.budget is budget
    assert len(fetch_all("leads")) == 3
    assert provider.calls[-1] == ("fetch_page", "aud-1", 1, settings.page_size)


def test_budget_never_shrinks_page_size_on_offset_provider(store, settings, fetch_all):
    settings.page_size = 4
    records = [make_record(f"u{i}@example.com") for i in range(12)]
    pre = FakeProvider([records[:3]], preview_count=3)
    pull_combo(pre, store, _combo(), RecordBudget(limit=100), settings)

    provider = OffsetProvider(records, preview_count=12)
    result = pull_combo(provider, store, _combo(), RecordBudget(limit=6), settings)

    assert result.inserted == 6
    assert result.skipped == 3
    fetches = [c for c in provider.calls if c[0] == "fetch_page"]
    assert fetches == [("fetch_page", "aud-1", p, 4) for p in (1, 2, 3)]
    emails = {l["email"] for l in fetch_all("leads")}
    assert emails == {f"u{i}@example.com" for i in range(9)}


def test_exhausted_budget_makes_no_provider_calls(store, settings):
    provider = FakeProvider([_records(2)], preview_count=2)

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=1, used=1), settings)

    assert provider.calls == []
    assert result.inserted == 0


def test_duplicates_do_not_consume_budget(store, settings):
    budget = RecordBudget(limit=10)
    provider = FakeProvider([_records(2)], preview_count=2)
    pull_combo(provider, store, _combo(), budget, settings)

    again = FakeProvider([_records(2)], preview_count=2)
    result = pull_combo(again, store, _combo(), budget, settings)

    assert result.inserted == 0
    assert result.skipped == 2
    assert budget.used == 2


def test_each_record_is_ingested_for_every_workspace(store, settings, fetch_all):
    provider = FakeProvider([_records(2)], preview_count=2)

    result = pull_combo(provider, store, _combo("ws-1", "ws-2"), RecordBudget(limit=100), settings)

    assert result.inserted == 4
    assert sorted({l["workspace_id"] for l in fetch_all("leads")}) == ["ws-1", "ws-2"]


def test_create_failure_is_collected(store, settings):
    provider = FakeProvider([_records(2)], preview_count=2, create_error=ProviderError("HTTP 500", status_code=500))

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert result.inserted == 0
    assert "create failed" in result.error
    assert provider.count("fetch_page") == 0


def test_missing_audience_id_is_collected(store, settings):
    provider = FakeProvider([_records(2)], preview_count=2, audience_id=None)

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert "no audience id" in result.error


def test_fetch_failure_keeps_earlier_pages(store, settings):
    provider = FakeProvider(
        [_records(2, "a"), _records(2, "b")],
        preview_count=4,
        fetch_errors={2: [ProviderError("HTTP 502", status_code=502)]},
    )

    result = pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)

    assert result.inserted == 2
    assert "fetch page 2 failed" in result.error


def test_timeout_propagates_for_step_retry(store, settings):
    provider = FakeProvider([_records(2)], preview_count=2, fetch_errors={1: [ProviderTimeout("slow")]})

    with pytest.raises(ProviderTimeout):
        pull_combo(provider, store, _combo(), RecordBudget(limit=100), settings)
