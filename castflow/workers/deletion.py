"""Deletion stage: remove embeddings for a content hash."""

from typing import Any

from castflow.models.jobs import DeletionJobBody
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import DELETION_QUEUE
from castflow.services import Services


async def handle_deletion(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    """Delete the stored rows, then forget the hash so it can be resubmitted."""
    body = DeletionJobBody.model_validate(payload)
    deleted = await services.store.delete_embeddings_by_content_hash(
        body.content_hash, body.type.value
    )
    await services.dedup.delete(body.content_hash)
    context.log("Deleted embeddings", content_hash=body.content_hash, deleted=deleted)
    return {"jobId": context.id, "contentHash": body.content_hash, "deleted": deleted}


def process_deletion_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the deletion queue."""
    return run_job(DELETION_QUEUE, handle_deletion, payload)
