"""Embedding stage: turn one submission into a stored vector."""

from typing import Any
from uuid import uuid4

from castflow.cache.hashing import compute_hash
from castflow.models.domain import EmbeddingRecord
from castflow.models.jobs import ContentType, JobBody
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import EMBEDDINGS_QUEUE
from castflow.services import Services
from castflow.workers.attachments import get_cast_url_summaries
from castflow.workers.text import build_embedding_input, unique_lower

ALREADY_PROCESSED = "Content already processed"


async def resolve_url_summaries(body: JobBody, services: Services) -> list[str]:
    """Describe a submission's attachments.

    Casts keep their attachment descriptions on the cast row, so a cast that
    was described before is not described again.

    Raises:
        MissingDataError: If a cast submission refers to an unknown cast
    """
    if not body.urls:
        return []
    if body.type != ContentType.CAST:
        return await services.describer.fetch_url_summaries(body.urls)
    return await get_cast_url_summaries(services, body.external_id, body.urls)


async def embed_job_body(
    body: JobBody, services: Services, context: JobContext, report_phases: bool = True
) -> dict[str, Any]:
    """Embed and store one submission unless its content hash is already recorded.

    Args:
        body: Submission to embed
        services: Job services
        context: Running job context
        report_phases: Whether to write phase progress to the job

    Returns:
        Summary of the outcome, including the content hash
    """
    if report_phases:
        context.update_progress({"phase": "hash"})
    content_hash = compute_hash(body.content, body.type, body.hash_suffix, body.urls)

    existing = await services.dedup.check_exists(content_hash)
    if existing.exists:
        context.log(
            "Content already processed",
            content_hash=content_hash,
            existing_job_id=existing.existing_job_id,
        )
        return {
            "contentHash": content_hash,
            "existingJobId": existing.existing_job_id,
            "result": ALREADY_PROCESSED,
        }

    summaries = await resolve_url_summaries(body, services)
    text = build_embedding_input(body.content, summaries)

    if report_phases:
        context.update_progress({"phase": "embeddings"})
    vector = await services.embeddings.embed(text)

    if body.type == ContentType.BUILDER_PROFILE:
        await services.store.delete_embedding_by_external_id(
            body.external_id, body.type.value
        )

    await services.store.upsert_embedding(
        EmbeddingRecord(
            id=str(uuid4()),
            type=body.type.value,
            content=text,
            raw_content=body.raw_content,
            content_hash=content_hash,
            embedding=vector,
            groups=unique_lower(body.groups),
            users=unique_lower(body.users),
            tags=unique_lower(body.tags),
            external_id=body.external_id,
            external_url=body.external_url,
            urls=body.urls or [],
            url_summaries=summaries,
            version=services.settings.EMBEDDING_CACHE_VERSION,
        )
    )

    if report_phases:
        context.update_progress({"phase": "redis"})
    await services.dedup.record(content_hash, context.id or content_hash)
    context.log("Stored embedding", content_hash=content_hash, type=body.type.value)
    return {"contentHash": content_hash, "result": "Embedded"}


async def handle_embedding(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    body = JobBody.model_validate(payload)
    result = await embed_job_body(body, services, context)
    context.update_progress(100)
    return {"jobId": context.id, **result}


def process_embedding_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the embeddings queue."""
    return run_job(EMBEDDINGS_QUEUE, handle_embedding, payload)
