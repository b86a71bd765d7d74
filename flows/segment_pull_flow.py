from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional

from prefect import flow, get_run_logger, task
from prefect.cache_policies import NO_CACHE
from prefect.events import emit_event
from prefect.runtime import flow_run  # type: ignore
from prefect.tasks import exponential_backoff

from leadpull.config import EngineSettings
from leadpull.engine import build_run_from_env

SEGMENT_PULL_REQUESTED = "leadpull.segment-pull.requested"
SEGMENT_PULL_RESOURCE = "leadpull.segment-pull"

# Steps whose failure is a decision, not a transient fault.
_NO_RETRY_STEPS = {"check-config", "acquire-lock"}

_SETTINGS = EngineSettings.from_env()


def prefect_step_runner(retries: int, backoff_s: float) -> Callable[..., Any]:
    """Run each engine step as its own Prefect task with retries."""

    def run(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        step_retries = 0 if name in _NO_RETRY_STEPS else retries
        delay: Any = exponential_backoff(backoff_factor=backoff_s) if backoff_s > 0 else 0

        def _call() -> Any:
            return fn(*args, **kwargs)

        step = task(
            _call,
            name=name,
            retries=step_retries,
            retry_delay_seconds=delay,
            cache_policy=NO_CACHE,
            persist_result=False,
        )
        return step()

    return run


@flow(name="segment-pull", timeout_seconds=_SETTINGS.timeout_s, persist_result=False)
def segment_pull() -> Dict[str, Any]:
    """
    Scheduled + on-demand segment pull.

    Aggregates targeting, pulls matching audiences from the provider, dedupes
    them into leads, routes them to users, and posts one summary to Discord.
    """
    logger = get_run_logger()
    settings = EngineSettings.from_env()

    run_id = getattr(flow_run, "id", None)
    run = build_run_from_env(
        settings=settings,
        step_runner=prefect_step_runner(settings.step_retries, settings.retry_backoff_s),
        run_id=str(run_id) if run_id else None,
    )
    logger.info("Segment pull started (run_id=%s).", run.run_id)

    summary = run.execute()

    logger.info(json.dumps({"event": "segment_pull_flow_done", **summary.to_event()}, sort_keys=True))
    return summary.to_event()


def request_segment_pull(reason: Optional[str] = None) -> Any:
    """Ask for an out-of-schedule run; the deployment trigger picks this up."""
    return emit_event(
        event=SEGMENT_PULL_REQUESTED,
        resource={"prefect.resource.id": SEGMENT_PULL_RESOURCE},
        payload={"reason": reason or "on-demand"},
    )


if __name__ == "__main__":
    segment_pull()
