"""Job submission routes."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from castflow.api.security import require_api_key
from castflow.cache.hashing import DedupCache, compute_hash
from castflow.core.logging import get_logger
from castflow.models.jobs import (
    BulkBuilderProfileJobBody,
    BulkIsGrantUpdateJobBody,
    BulkJobBody,
    BulkStoryJobBody,
    DeletionJobBody,
    JobBody,
)
from castflow.queue.queues import PipelineQueues
from castflow.queue.stages import (
    BUILDER_PROFILE_QUEUE,
    BULK_EMBEDDINGS_QUEUE,
    DELETION_QUEUE,
    EMBEDDINGS_QUEUE,
    IS_GRANT_UPDATE_QUEUE,
    STORY_QUEUE,
)

logger = get_logger().bind(module="api")

router = APIRouter(dependencies=[Depends(require_api_key)])


def get_dedup(request: Request) -> DedupCache:
    return request.app.state.dedup


def get_queues(request: Request) -> PipelineQueues:
    return request.app.state.queues


async def _enqueue(
    queues: PipelineQueues, stage: str, payload: Any, job_name: str
) -> dict[str, Any]:
    job = await queues.enqueue(stage, payload, job_name=job_name)
    logger.info("Job enqueued", stage=stage, job_id=job.id, job_name=job_name)
    return {"ok": True, "jobName": job_name, "jobId": job.id}


@router.post("/add-job")
async def add_job(
    body: JobBody,
    dedup: DedupCache = Depends(get_dedup),
    queues: PipelineQueues = Depends(get_queues),
) -> dict[str, Any]:
    """Queue one submission for embedding unless its content was seen before."""
    content_hash = compute_hash(body.content, body.type, body.hash_suffix, body.urls)
    job_name = f"embed-{body.type.value}-{body.external_id}"

    existing = await dedup.check_exists(content_hash)
    if existing.exists:
        logger.info("Content already processed", content_hash=content_hash)
        return {
            "ok": True,
            "jobName": job_name,
            "jobId": existing.existing_job_id,
            "contentHash": content_hash,
            "message": "Job already exists",
        }

    result = await _enqueue(queues, EMBEDDINGS_QUEUE, body.to_payload(), job_name)
    return {**result, "contentHash": content_hash}


@router.post("/bulk-add-job")
async def bulk_add_job(
    body: BulkJobBody, queues: PipelineQueues = Depends(get_queues)
) -> dict[str, Any]:
    return await _enqueue(
        queues, BULK_EMBEDDINGS_QUEUE, body.to_payload(), f"bulk-embed-{len(body.jobs)}"
    )


@router.post("/delete-embedding")
async def delete_embedding(
    body: DeletionJobBody, queues: PipelineQueues = Depends(get_queues)
) -> dict[str, Any]:
    return await _enqueue(
        queues,
        DELETION_QUEUE,
        body.to_payload(),
        f"delete-{body.type.value}-{body.content_hash}",
    )


@router.post("/bulk-add-is-grants-update")
async def bulk_add_is_grants_update(
    body: BulkIsGrantUpdateJobBody, queues: PipelineQueues = Depends(get_queues)
) -> dict[str, Any]:
    return await _enqueue(
        queues,
        IS_GRANT_UPDATE_QUEUE,
        body.to_payload(),
        f"is-grant-update-{len(body.jobs)}",
    )


@router.post("/bulk-add-builder-profile")
async def bulk_add_builder_profile(
    body: BulkBuilderProfileJobBody, queues: PipelineQueues = Depends(get_queues)
) -> dict[str, Any]:
    return await _enqueue(
        queues,
        BUILDER_PROFILE_QUEUE,
        body.to_payload(),
        f"builder-profile-{len(body.jobs)}",
    )


@router.post("/bulk-add-story")
async def bulk_add_story(
    body: BulkStoryJobBody, queues: PipelineQueues = Depends(get_queues)
) -> dict[str, Any]:
    return await _enqueue(
        queues, STORY_QUEUE, body.to_payload(), f"story-{len(body.jobs)}"
    )
