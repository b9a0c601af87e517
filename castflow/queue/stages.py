"""Stage table: queues, their job functions and how they chain."""

from dataclasses import dataclass

EMBEDDINGS_QUEUE = "EmbeddingsQueue"
DELETION_QUEUE = "DeletionQueue"
BULK_EMBEDDINGS_QUEUE = "BulkEmbeddingsQueue"
IS_GRANT_UPDATE_QUEUE = "IsGrantUpdateQueue"
STORY_QUEUE = "StoryQueue"
BUILDER_PROFILE_QUEUE = "BuilderProfileQueue"
FARCASTER_AGENT_QUEUE = "FarcasterAgentQueue"


@dataclass(frozen=True)
class StageSpec:
    """How one queue is consumed.

    Attributes:
        name: Queue name
        job_name: Default name given to jobs on this queue
        func: Dotted path of the RQ job function
        concurrency: Worker processes started for the queue
        lock_duration: Seconds a job may run before it is considered lost
        lock_renew: Seconds between worker heartbeats while a job runs
        downstream: Queues this stage enqueues into
    """

    name: str
    job_name: str
    func: str
    concurrency: int
    lock_duration: int
    lock_renew: int
    downstream: tuple[str, ...] = ()


STAGES: dict[str, StageSpec] = {
    spec.name: spec
    for spec in (
        StageSpec(
            name=EMBEDDINGS_QUEUE,
            job_name="embed",
            func="castflow.workers.embedding.process_embedding_job",
            concurrency=50,
            lock_duration=60,
            lock_renew=30,
        ),
        StageSpec(
            name=DELETION_QUEUE,
            job_name="delete-embedding",
            func="castflow.workers.deletion.process_deletion_job",
            concurrency=1,
            lock_duration=30,
            lock_renew=15,
        ),
        StageSpec(
            name=BULK_EMBEDDINGS_QUEUE,
            job_name="bulk-embed",
            func="castflow.workers.bulk_embedding.process_bulk_embedding_job",
            concurrency=30,
            lock_duration=2 * 60 * 60,
            lock_renew=60 * 60,
        ),
        StageSpec(
            name=IS_GRANT_UPDATE_QUEUE,
            job_name="is-grant-update",
            func="castflow.workers.grant_update.process_grant_update_job",
            concurrency=25,
            lock_duration=20 * 60,
            lock_renew=10 * 60,
            downstream=(STORY_QUEUE, FARCASTER_AGENT_QUEUE),
        ),
        StageSpec(
            name=STORY_QUEUE,
            job_name="story",
            func="castflow.workers.story.process_story_job",
            concurrency=50,
            lock_duration=4 * 60,
            lock_renew=2 * 60,
            downstream=(BULK_EMBEDDINGS_QUEUE, FARCASTER_AGENT_QUEUE),
        ),
        StageSpec(
            name=BUILDER_PROFILE_QUEUE,
            job_name="builder-profile",
            func="castflow.workers.builder_profile.process_builder_profile_job",
            concurrency=40,
            lock_duration=20 * 60,
            lock_renew=10 * 60,
            downstream=(BULK_EMBEDDINGS_QUEUE,),
        ),
        StageSpec(
            name=FARCASTER_AGENT_QUEUE,
            job_name="farcaster-agent",
            func="castflow.workers.farcaster_agent.process_farcaster_agent_job",
            concurrency=25,
            lock_duration=10 * 60,
            lock_renew=5 * 60,
        ),
    )
}


def get_stage(name: str) -> StageSpec:
    """Look up a stage by queue name.

    Raises:
        KeyError: If no stage consumes that queue
    """
    try:
        return STAGES[name]
    except KeyError:
        raise KeyError(f"Unknown stage: {name}") from None
