"""
External audience puller.

Per combo: preview (best-effort) -> create query -> paginate, feeding each
record to the ingestor for every owning workspace. Volume is bounded three
ways: the shared RecordBudget, settings.max_pages and settings.page_size.

Failure policy:
- preview failure of any kind: proceed to creation
- preview count 0: skip the combo, no query is created
- create/fetch failure: combo abandoned, error returned on the ComboResult
- ProviderTimeout: re-raised so the orchestration layer can retry the step
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .config import EngineSettings
from .errors import PreviewUnavailable, ProviderError, ProviderTimeout
from .ingest import INSERTED, ingest_record
from .models import ComboResult, RecordBudget, RecordPage, TargetingCombo
from .store import LeadStore

logger = logging.getLogger(__name__)


class AudienceProvider(Protocol):
    def preview(self, filters: dict) -> int: ...

    def create_query(self, name: str, filters: dict) -> Optional[str]: ...

    def fetch_page(self, query_id: str, page: int, page_size: int) -> RecordPage: ...


def _preview_count(client: AudienceProvider, combo: TargetingCombo, filters: dict) -> Optional[int]:
    try:
        return client.preview(filters)
    except PreviewUnavailable:
        logger.info("preview not available for %s; creating audience directly", combo.key)
    except ProviderError as e:
        logger.info("preview failed for %s (%s); creating audience directly", combo.key, e)
    return None


def pull_combo(
    client: AudienceProvider,
    store: LeadStore,
    combo: TargetingCombo,
    budget: RecordBudget,
    settings: EngineSettings,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    result: Optional[ComboResult] = None,
) -> ComboResult:
    """
    Pull one combo. When `result` is passed it is reset and filled in place,
    so a caller still sees partial counts if this raises.
    """
    if result is None:
        result = ComboResult(combo_key=combo.key, budget=budget)
    else:
        result.reset()
        result.budget = budget
    if budget.exhausted:
        return result

    filters = combo.filters(days_back=settings.days_back)

    result.preview_count = _preview_count(client, combo, filters)
    if result.preview_count == 0:
        logger.info("preview for %s returned 0 records; skipping", combo.key)
        return result

    try:
        query_id = client.create_query(combo.audience_name(now()), filters)
    except ProviderTimeout:
        raise
    except ProviderError as e:
        result.error = f"create failed for {combo.key}: {e}"
        return result

    if not query_id:
        result.error = f"no audience id returned for {combo.key}"
        return result

    for page in range(1, settings.max_pages + 1):
        if budget.exhausted:
            break

        # fixed page size: the provider addresses results by (page, page_size)
        try:
            batch = client.fetch_page(query_id, page, settings.page_size)
        except ProviderTimeout:
            raise
        except ProviderError as e:
            result.error = f"fetch page {page} failed for {combo.key}: {e}"
            break

        result.pages_fetched += 1
        if not batch.records:
            break

        for raw in batch.records:
            for workspace_id in combo.workspace_ids:
                if budget.exhausted:
                    break
                outcome = ingest_record(
                    store,
                    raw,
                    workspace_id,
                    combo,
                    source=settings.source_tag,
                    min_quality_score=settings.min_quality_score,
                )
                if outcome == INSERTED:
                    budget.consume()
                    result.inserted += 1
                else:
                    result.skipped += 1
            if budget.exhausted:
                break

        if not batch.has_more:
            break

    payload = {
        "event": "segment_pull_combo_done",
        "combo_key": combo.key,
        "workspaces": len(combo.workspace_ids),
        "preview_count": result.preview_count,
        "pages_fetched": result.pages_fetched,
        "inserted": result.inserted,
        "skipped": result.skipped,
        "budget_remaining": budget.remaining,
    }
    if result.error:
        payload["error"] = result.error
    logger.info(json.dumps(payload, sort_keys=True))

    return result
