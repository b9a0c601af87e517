"""Grant-update stage: classify builder casts and start story jobs."""

from typing import Any

from castflow.core.errors import MissingDataError
from castflow.models.analysis import CastAnalysis
from castflow.models.jobs import (
    BulkIsGrantUpdateJobBody,
    FarcasterAgentJobBody,
    IsGrantUpdateJobBody,
    StoryJobBody,
)
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import FARCASTER_AGENT_QUEUE, IS_GRANT_UPDATE_QUEUE, STORY_QUEUE
from castflow.services import Services
from castflow.workers.cast_analysis import analyze_cast

FLOWS_TAG = "nouns-flows"


async def request_more_info_job(
    services: Services, item: IsGrantUpdateJobBody, analysis: CastAnalysis
) -> FarcasterAgentJobBody | None:
    """Build an agent job asking the builder for detail on a near-miss update."""
    cast = await services.store.get_cast_by_hash(item.cast_hash)
    if cast is None:
        return None
    return FarcasterAgentJobBody(
        agent_fid=services.settings.AGENT_FID,
        custom_instructions=(
            "This post looks like progress on a grant but is missing detail. "
            "Ask the builder, briefly and kindly, what they shipped and what "
            f"impact it had. Reviewer notes: {analysis.reason}"
        ),
        reply_to_cast_id=cast.id,
    )


async def process_cast(
    services: Services, item: IsGrantUpdateJobBody, context: JobContext
) -> tuple[CastAnalysis, StoryJobBody | None, FarcasterAgentJobBody | None]:
    """Classify one cast and apply the outcome.

    Raises:
        MissingDataError: If the builder has no verified addresses, no grants,
            or the cast cannot be tagged
    """
    profile = await services.store.get_profile_by_fid(item.builder_fid)
    if profile is None or not profile.verified_addresses:
        raise MissingDataError(f"No verified addresses for fid {item.builder_fid}")

    grants = await services.store.get_grants_by_recipient_addresses(
        profile.verified_addresses
    )
    if not grants:
        raise MissingDataError(f"No grants found for fid {item.builder_fid}")

    analysis = await analyze_cast(services, item, grants, context)

    if analysis.is_grant_update:
        cast = await services.store.tag_cast(item.cast_hash, [analysis.grant_id, FLOWS_TAG])
        if cast is None:
            raise MissingDataError(f"Cast {item.cast_hash} not found")
        await services.store.advance_last_builder_update(analysis.grant_id, cast.timestamp)
        return analysis, StoryJobBody(new_cast_id=cast.id, grant_id=analysis.grant_id), None

    if analysis.should_request_more_info and services.settings.REQUEST_MORE_INFO_ENABLED:
        return analysis, None, await request_more_info_job(services, item, analysis)

    return analysis, None, None


async def handle_grant_update(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    body = BulkIsGrantUpdateJobBody.model_validate(payload)
    story_jobs: list[StoryJobBody] = []
    agent_jobs: list[FarcasterAgentJobBody] = []
    results = []

    for index, item in enumerate(body.jobs):
        analysis, story_job, agent_job = await process_cast(services, item, context)
        results.append(analysis.to_payload())
        if story_job is not None:
            story_jobs.append(story_job)
        if agent_job is not None:
            agent_jobs.append(agent_job)
        context.update_progress(round((index + 1) / len(body.jobs) * 100))

    if story_jobs:
        await services.queues.enqueue(
            STORY_QUEUE,
            {"jobs": [job.to_payload() for job in story_jobs]},
            job_name=f"story-{context.id or 'batch'}",
        )
        context.log(f"Queued {len(story_jobs)} story jobs")

    for agent_job in agent_jobs:
        await services.queues.enqueue(FARCASTER_AGENT_QUEUE, agent_job.to_payload())

    return {"jobId": context.id, "results": results, "storyJobs": len(story_jobs)}


def process_grant_update_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the grant update queue."""
    return run_job(IS_GRANT_UPDATE_QUEUE, handle_grant_update, payload)
