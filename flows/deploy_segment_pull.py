from prefect.client.schemas.objects import ConcurrencyLimitConfig, ConcurrencyLimitStrategy
from prefect.events import DeploymentEventTrigger

from flows.segment_pull_flow import SEGMENT_PULL_REQUESTED, segment_pull


if __name__ == "__main__":
    """
    Deploy the segment_pull flow to Prefect.

    Usage:
        PYTHONPATH=. python flows/deploy_segment_pull.py

    On-demand runs:
        from flows.segment_pull_flow import request_segment_pull
        request_segment_pull("backfill after targeting change")
    """
    flow_from_source = segment_pull.from_source(
        source=".",
        entrypoint="flows/segment_pull_flow.py:segment_pull",
    )

    flow_from_source.deploy(
        name="segment-pull",
        work_pool_name="leadpull-managed",
        work_queue_name="segment-pull",
        cron="0 */6 * * *",  # every 6 hours
        triggers=[
            DeploymentEventTrigger(
                name="segment-pull-on-demand",
                expect={SEGMENT_PULL_REQUESTED},
            )
        ],
        # one run at a time; a collision is dropped, not queued
        concurrency_limit=ConcurrencyLimitConfig(
            limit=1,
            collision_strategy=ConcurrencyLimitStrategy.CANCEL_NEW,
        ),
        tags=["leads", "segment-pull"],
        parameters={},
    )
