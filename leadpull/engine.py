"""
Segment pull run orchestration.

Prefect-free; the Prefect wrapper lives in flows/segment_pull_flow.py
and only swaps in a step runner that turns each step into a retrying task.

States:
  idle -> checking-config -> aggregating -> pulling -> routing -> notifying -> done
  any step -> error (after the step runner gave up)

Soft skips (status="skipped", never an error):
  - no provider credential
  - another run holds the single-flight lease
  - no active targeting
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from .aggregator import aggregate_combos
from .config import EngineSettings
from .errors import ProviderTimeout, RunLockedError
from .models import ComboResult, RecordBudget, RunState, RunSummary, TargetingCombo
from .puller import AudienceProvider, pull_combo
from .router import RoutingStats, route_new_leads
from .store import LeadStore

logger = logging.getLogger(__name__)

LOCK_NAME = "segment_pull.lock"

StepRunner = Callable[..., Any]
Notifier = Callable[[RunSummary], Any]


def retrying_step_runner(
    retries: int,
    backoff_s: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> StepRunner:
    """In-process runner: retry each step with exponential backoff."""

    def run(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        for attempt in range(retries + 1):
            try:
                return fn(*args, **kwargs)
            except RunLockedError:
                raise
            except Exception as e:
                if attempt >= retries:
                    raise
                delay = backoff_s * (2 ** attempt)
                logger.warning(
                    "step %s failed (attempt %s/%s): %s; retrying in %.1fs",
                    name, attempt + 1, retries + 1, e, delay,
                )
                sleep(delay)

    return run


class SegmentPullRun:
    def __init__(
        self,
        settings: EngineSettings,
        store: LeadStore,
        client_factory: Callable[[EngineSettings], AudienceProvider],
        notifier: Optional[Notifier] = None,
        *,
        step_runner: Optional[StepRunner] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.client_factory = client_factory
        self.notifier = notifier
        self.step_runner = step_runner or retrying_step_runner(settings.step_retries, settings.retry_backoff_s)
        self.run_id = run_id or uuid.uuid4().hex

        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]
        self.started_at: Optional[datetime] = None
        self._client: Optional[AudienceProvider] = None
        self._locked = False

    # -----------------------------
    # steps
    # -----------------------------
    def check_config(self) -> bool:
        if not self.settings.has_provider_credential:
            logger.info("AUDIENCE_API_KEY not configured, skipping segment pull")
            return False
        return True

    def acquire_lock(self) -> None:
        stale_after = timedelta(seconds=max(self.settings.timeout_s, 60))
        if not self.store.acquire_lock(LOCK_NAME, self.run_id, stale_after):
            raise RunLockedError(f"segment pull already running (holder={self.store.lock_holder(LOCK_NAME)})")
        self._locked = True

    def aggregate(self) -> List[TargetingCombo]:
        return aggregate_combos(self.store.active_preferences())

    def pull(self, combo: TargetingCombo, budget: RecordBudget, partial: ComboResult) -> ComboResult:
        if self._client is None:
            self._client = self.client_factory(self.settings)
        return pull_combo(
            self._client, self.store, combo, budget, self.settings, now=self.store.now, result=partial
        )

    def route(self, since: datetime) -> RoutingStats:
        return route_new_leads(self.store, since=since, source=self.settings.source_tag)

    def notify(self, summary: RunSummary) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(summary)
        except Exception as e:
            logger.warning("run summary notification failed: %s", e)

    # -----------------------------
    # state machine
    # -----------------------------
    def _transition(self, state: RunState) -> None:
        logger.debug("segment pull %s: %s -> %s", self.run_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _skip(self, reason: str) -> RunSummary:
        self._transition(RunState.DONE)
        summary = RunSummary(status="skipped", reason=reason, run_id=self.run_id)
        logger.info(json.dumps({"event": "segment_pull_skipped", **summary.to_event()}, sort_keys=True))
        return summary

    def routing_since(self, started_at: datetime) -> datetime:
        window_start = self.store.now() - timedelta(minutes=self.settings.route_window_minutes)
        return min(started_at, window_start)

    def execute(self) -> RunSummary:
        step = self.step_runner
        started_at = self.started_at = self.store.now()

        try:
            self._transition(RunState.CHECKING_CONFIG)
            if not step("check-config", self.check_config):
                return self._skip("no provider credential")

            try:
                step("acquire-lock", self.acquire_lock)
            except RunLockedError as e:
                logger.info("%s", e)
                return self._skip("already running")

            self._transition(RunState.AGGREGATING)
            combos: List[TargetingCombo] = step("fetch-targeting", self.aggregate)
            if not combos:
                return self._skip("no targeting")

            self._transition(RunState.PULLING)
            budget = RecordBudget(limit=self.settings.max_records_per_run)
            skipped = 0
            errors: List[str] = []
            processed = 0

            for i, combo in enumerate(combos):
                if budget.exhausted:
                    logger.info("record budget exhausted after %s combo(s)", processed)
                    break
                partial = ComboResult(combo_key=combo.key, budget=budget)
                try:
                    result: ComboResult = step(f"pull-combo-{i}", self.pull, combo, budget, partial)
                except ProviderTimeout as e:
                    # skips seen by the last attempt before it timed out
                    skipped += partial.skipped
                    errors.append(f"{combo.key}: {e}")
                    processed += 1
                    continue
                processed += 1
                budget = result.budget or budget
                skipped += result.skipped
                if result.error:
                    errors.append(result.error)

            # budget.used also counts inserts from attempts that were retried
            inserted = budget.used
            assignments = 0
            if inserted > 0:
                self._transition(RunState.ROUTING)
                stats: RoutingStats = step("route-new-leads", self.route, self.routing_since(started_at))
                assignments = stats.assignments

            summary = RunSummary(
                status="done",
                combos_processed=processed,
                inserted=inserted,
                skipped=skipped,
                assignments=assignments,
                errors=tuple(errors),
                run_id=self.run_id,
            )

            if inserted > 0 or self.settings.notify_when_empty:
                self._transition(RunState.NOTIFYING)
                self.notify(summary)

            self._transition(RunState.DONE)
            logger.info(json.dumps({"event": "segment_pull_run_complete", **summary.to_event()}, sort_keys=True))
            return summary

        except Exception as e:
            self._transition(RunState.ERROR)
            logger.error("segment pull %s failed in step after retries: %s", self.run_id, e)
            self.notify(
                RunSummary(status="error", reason=f"{type(e).__name__}: {str(e)[:300]}", run_id=self.run_id)
            )
            raise

        finally:
            if self._locked:
                try:
                    self.store.release_lock(LOCK_NAME, self.run_id)
                except Exception as e:
                    # lease goes stale after timeout_s and is taken over by the next run
                    logger.warning("failed to release %s: %s", LOCK_NAME, e)
                self._locked = False


def build_run_from_env(
    *,
    step_runner: Optional[StepRunner] = None,
    run_id: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> SegmentPullRun:
    """Wire a run from DATABASE_URL, AUDIENCE_API_* and DISCORD_* env vars."""
    from .db import get_engine
    from .discord import DiscordNotifier
    from .sources.audience_api import AudienceClient

    settings = settings or EngineSettings.from_env()

    def client_factory(s: EngineSettings) -> AudienceProvider:
        return AudienceClient(s.api_key or "", s.base_url, timeout_s=s.request_timeout_s)

    return SegmentPullRun(
        settings,
        LeadStore(get_engine()),
        client_factory,
        DiscordNotifier(settings.webhook_url),
        step_runner=step_runner,
        run_id=run_id,
    )
