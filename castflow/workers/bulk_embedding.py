"""Bulk embedding stage: embed a batch of submissions in order."""

from typing import Any

from castflow.models.jobs import BulkJobBody
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import BULK_EMBEDDINGS_QUEUE
from castflow.services import Services
from castflow.workers.embedding import embed_job_body


async def handle_bulk_embedding(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    """Embed every item; any failure fails the whole batch."""
    body = BulkJobBody.model_validate(payload)
    total = len(body.jobs)
    context.log(f"Processing {total} embedding jobs")

    results = []
    for index, item in enumerate(body.jobs):
        results.append(
            await embed_job_body(item, services, context, report_phases=False)
        )
        context.update_progress(round((index + 1) / total * 100))

    return {"jobId": context.id, "processed": total, "results": results}


def process_bulk_embedding_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the bulk embeddings queue."""
    return run_job(BULK_EMBEDDINGS_QUEUE, handle_bulk_embedding, payload)
