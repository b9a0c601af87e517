"""Builder-profile stage: summarize a builder's casting history."""

import asyncio
import hashlib
from typing import Any

from castflow.cache.keys import (
    BUILDER_PROFILE_CHUNK_PREFIX,
    BUILDER_PROFILE_LOCK_PREFIX,
    SUMMARY_ANALYSIS_PREFIX,
)
from castflow.core.errors import MissingDataError
from castflow.llm.prompts import builder_chunk_messages, builder_summary_messages
from castflow.models.domain import CastWithParent, Profile, parse_embed_urls
from castflow.models.jobs import (
    BuilderProfileJobBody,
    BulkBuilderProfileJobBody,
    ContentType,
    JobBody,
)
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import BUILDER_PROFILE_QUEUE, BULK_EMBEDDINGS_QUEUE
from castflow.services import Services
from castflow.workers.attachments import get_cast_url_summaries
from castflow.workers.text import chunk, clean_text_for_embedding, unique

MIN_REPLY_LENGTH = 10
FORMAT_BATCH_SIZE = 1500
ANALYSIS_CHUNK_SIZE = 650
ANALYSIS_MAX_TOKENS = 4096


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def filter_casts(casts: list[CastWithParent]) -> list[CastWithParent]:
    """Drop casts that say too little to describe a builder.

    Replies shorter than ten characters and top-level casts without text are
    dropped unless they carry embeds.
    """
    kept = []
    for cast in casts:
        has_embeds = bool(cast.embed_urls())
        text = cast.text.strip()
        if cast.parent_hash:
            if len(text) < MIN_REPLY_LENGTH and not has_embeds:
                continue
        elif not text and not has_embeds:
            continue
        kept.append(cast)
    return kept


def format_cast(
    cast: CastWithParent,
    summaries: list[str] | None = None,
    parent_summaries: list[str] | None = None,
) -> str:
    lines = [f"[{cast.timestamp.isoformat()}] {cast.text}"]
    if summaries:
        lines.append(f"  Attachments: {' | '.join(summaries)}")
    if cast.parent_hash and cast.parent_text:
        lines.append(
            f"  In reply to {cast.parent_author_fname or 'unknown'}: {cast.parent_text}"
        )
        if parent_summaries:
            lines.append(f"    Parent attachments: {' | '.join(parent_summaries)}")
    if cast.root_parent_url:
        lines.append(f"  Channel: {cast.root_parent_url}")
    return "\n".join(lines)


async def describe_cast_media(
    services: Services, cast: CastWithParent
) -> tuple[list[str], list[str]]:
    """Describe the attachments of a cast and of the cast it replies to.

    Descriptions are saved back on each cast row so later runs reuse them.
    """
    summaries = cast.embed_summaries or await get_cast_url_summaries(
        services, cast.hash, cast.embed_urls(), require_cast=False
    )
    parent_summaries: list[str] = []
    if cast.parent_hash:
        parent_summaries = await get_cast_url_summaries(
            services, cast.parent_hash, parse_embed_urls(cast.parent_embeds), require_cast=False
        )
    return summaries, parent_summaries


async def format_casts(
    services: Services, casts: list[CastWithParent], context: JobContext
) -> list[str]:
    """Describe media and format casts in batches."""
    formatted: list[str] = []
    batches = chunk(casts, FORMAT_BATCH_SIZE)
    for index, batch in enumerate(batches):
        context.log(f"Formatting batch {index + 1}/{len(batches)}")
        media = await asyncio.gather(*(describe_cast_media(services, cast) for cast in batch))
        formatted.extend(
            format_cast(cast, summaries, parent_summaries)
            for cast, (summaries, parent_summaries) in zip(batch, media)
        )
    return formatted


async def analyze_casts(services: Services, formatted: list[str], context: JobContext) -> str:
    """Profile a builder chunk by chunk, then merge the chunk analyses.

    Chunk and summary results are cached by the hash of their input text, so
    a rerun over unchanged casts makes no model calls.
    """
    models = [services.settings.LLM_OPENAI_MODEL, services.settings.LLM_GOOGLE_MODEL]
    chunks = chunk(formatted, ANALYSIS_CHUNK_SIZE)
    analyses: list[str] = []

    for index, casts in enumerate(chunks):
        text = "\n\n".join(casts)

        async def analyze(text: str = text) -> str:
            return await services.llm.generate_text(
                builder_chunk_messages(text),
                models=models,
                max_tokens=ANALYSIS_MAX_TOKENS,
                context="builder-profile-chunk",
            )

        analyses.append(
            await services.cache.cache_result(
                f"{index}-{_sha256(text)}", BUILDER_PROFILE_CHUNK_PREFIX, analyze
            )
        )
        context.log(f"Analyzed chunk {index + 1}/{len(chunks)}")

    if len(analyses) == 1:
        return analyses[0]

    async def summarize() -> str:
        return await services.llm.generate_text(
            builder_summary_messages(analyses),
            models=models,
            max_tokens=ANALYSIS_MAX_TOKENS,
            context="builder-profile-summary",
        )

    return await services.cache.cache_result(
        _sha256("\n".join(analyses)), SUMMARY_ANALYSIS_PREFIX, summarize
    )


def builder_profile_embedding_job(
    services: Services, profile: Profile, casts: list[CastWithParent], content: str
) -> JobBody:
    return JobBody(
        type=ContentType.BUILDER_PROFILE,
        content=clean_text_for_embedding(content),
        raw_content=content,
        groups=unique(
            cast.root_parent_url
            for cast in casts
            if cast.root_parent_url and not cast.parent_hash
        ),
        users=[str(profile.fid)],
        tags=[],
        external_id=str(profile.fid),
        external_url=f"{services.settings.WARPCAST_BASE_URL}/{profile.fname or profile.fid}",
    )


async def process_builder(
    services: Services, item: BuilderProfileJobBody, context: JobContext
) -> JobBody | None:
    """Build the profile embedding job for one builder.

    Returns:
        The embedding job, or None when the builder is locked or has no casts

    Raises:
        MissingDataError: If the builder has no profile
    """
    async with services.locks.hold(BUILDER_PROFILE_LOCK_PREFIX, item.fid) as acquired:
        if not acquired:
            context.log("Builder is locked, skipping", fid=item.fid)
            return None

        profile = await services.store.get_profile_by_fid(item.fid)
        if profile is None:
            raise MissingDataError(f"Profile not found for fid {item.fid}")

        casts = filter_casts(await services.store.get_casts_with_parent_for_fid(item.fid))
        if not casts:
            context.log("No casts for builder", fid=item.fid)
            return None

        formatted = await format_casts(services, casts, context)
        content = await analyze_casts(services, formatted, context)
        return builder_profile_embedding_job(services, profile, casts, content)


async def handle_builder_profile(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    body = BulkBuilderProfileJobBody.model_validate(payload)
    jobs: list[JobBody] = []

    for index, item in enumerate(body.jobs):
        job = await process_builder(services, item, context)
        if job is not None:
            jobs.append(job)
        context.update_progress(round((index + 1) / len(body.jobs) * 100))

    if jobs:
        await services.queues.enqueue(
            BULK_EMBEDDINGS_QUEUE,
            {"jobs": [job.to_payload() for job in jobs]},
            job_name=f"builder-profile-embeddings-{context.id or 'batch'}",
        )
    return {"jobId": context.id, "profiles": len(jobs)}


def process_builder_profile_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the builder profile queue."""
    return run_job(BUILDER_PROFILE_QUEUE, handle_builder_profile, payload)
