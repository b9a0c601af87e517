"""Story stage: turn a grant's update casts into stories."""

from typing import Any

from castflow.cache.keys import STORY_LOCK_PREFIX
from castflow.core.errors import MissingDataError
from castflow.models.domain import Story
from castflow.models.jobs import (
    BulkStoryJobBody,
    ContentType,
    FarcasterAgentJobBody,
    JobBody,
    StoryJobBody,
)
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import BULK_EMBEDDINGS_QUEUE, FARCASTER_AGENT_QUEUE, STORY_QUEUE
from castflow.services import Services
from castflow.workers.story_builder import (
    build_stories,
    filter_relevant_casts,
    prepare_stories_for_insertion,
    relevant_stories,
)
from castflow.workers.text import clean_text_for_embedding


def story_url(services: Services, story_id: str) -> str:
    return f"{services.settings.STORY_BASE_URL}/{story_id}"


def story_embedding_job(services: Services, story: Story) -> JobBody:
    return JobBody(
        type=ContentType.STORY,
        content=clean_text_for_embedding(story.summary) or story.title,
        raw_content=story.summary,
        groups=[*story.grant_ids, *story.parent_flow_ids],
        users=story.participants,
        tags=[],
        external_id=story.id,
        external_url=story_url(services, story.id),
        urls=story.media_urls,
    )


def story_agent_job(services: Services, story: Story, new_cast_id: int) -> FarcasterAgentJobBody:
    """Ask the builder for what an incomplete story still lacks."""
    return FarcasterAgentJobBody(
        agent_fid=services.settings.AGENT_FID,
        custom_instructions=(
            f"A story about this builder's work, \"{story.title}\", is missing "
            f"information: {story.info_needed_to_complete or 'more detail'}. "
            "Reply to the builder, link the story and ask for what is missing."
        ),
        reply_to_cast_id=new_cast_id,
        urls_to_include=[story_url(services, story.id)],
    )


async def process_story_item(
    services: Services, item: StoryJobBody, context: JobContext
) -> tuple[list[JobBody], list[FarcasterAgentJobBody]]:
    """Build and store the stories of one grant while holding its lock.

    Returns:
        Embedding jobs for the stored stories and agent jobs for incomplete ones

    Raises:
        MissingDataError: If the grant or its parent flow is unknown
    """
    async with services.locks.hold(STORY_LOCK_PREFIX, item.grant_id) as acquired:
        if not acquired:
            context.log("Grant is locked, skipping", grant_id=item.grant_id)
            return [], []

        stories = await services.store.get_stories_for_grant(item.grant_id)
        casts = await services.store.get_casts_for_grant_stories(item.grant_id)
        casts = filter_relevant_casts(casts, stories)
        if not casts:
            context.log("No new casts for grant", grant_id=item.grant_id)
            return [], []

        grant_and_parent = await services.store.get_grant_and_parent(item.grant_id)
        if grant_and_parent.grant is None or grant_and_parent.parent is None:
            raise MissingDataError(f"Grant or parent flow not found for {item.grant_id}")

        analyses, _ = await build_stories(
            services,
            casts,
            grant_and_parent.grant,
            grant_and_parent.parent,
            relevant_stories(stories),
            context,
        )
        rows = prepare_stories_for_insertion(
            analyses, grant_and_parent.grant, grant_and_parent.parent
        )
        await services.store.upsert_stories(rows)
        for story in rows:
            for cast_hash in story.cast_hashes:
                await services.store.append_cast_story_id(cast_hash, story.id)

        context.log(f"Stored {len(rows)} stories", grant_id=item.grant_id)
        embedding_jobs = [story_embedding_job(services, story) for story in rows]
        agent_jobs = [
            story_agent_job(services, story, item.new_cast_id)
            for story in rows
            if not story.complete
        ]
        return embedding_jobs, agent_jobs


async def handle_story(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    body = BulkStoryJobBody.model_validate(payload)
    embedding_jobs: list[JobBody] = []
    agent_jobs: list[FarcasterAgentJobBody] = []

    for index, item in enumerate(body.jobs):
        item_embeddings, item_agents = await process_story_item(services, item, context)
        embedding_jobs.extend(item_embeddings)
        agent_jobs.extend(item_agents)
        context.update_progress(round((index + 1) / len(body.jobs) * 100))

    if embedding_jobs:
        await services.queues.enqueue(
            BULK_EMBEDDINGS_QUEUE,
            {"jobs": [job.to_payload() for job in embedding_jobs]},
            job_name=f"story-embeddings-{context.id or 'batch'}",
        )
    for agent_job in agent_jobs:
        await services.queues.enqueue(FARCASTER_AGENT_QUEUE, agent_job.to_payload())

    return {
        "jobId": context.id,
        "stories": len(embedding_jobs),
        "agentJobs": len(agent_jobs),
    }


def process_story_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the story queue."""
    return run_job(STORY_QUEUE, handle_story, payload)
