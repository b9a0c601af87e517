"""Story generation from a grant's update casts."""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from castflow.llm.prompts import (
    header_image_messages,
    story_edits_messages,
    story_generation_messages,
    story_object_messages,
)
from castflow.media.urls import (
    is_cast_url,
    is_stream_url,
    is_video_url,
    is_youtube_url,
    is_zora_url,
)
from castflow.models.analysis import (
    MISSING_HEADER_IMAGE,
    HeaderImageChoice,
    StoryAnalysis,
    StoryDraft,
    StoryDrafts,
    StoryEdits,
    is_story_complete,
)
from castflow.models.domain import CastForStory, Grant, Story, normalize_hash
from castflow.queue.context import JobContext
from castflow.services import Services
from castflow.workers.attachments import get_cast_url_summaries
from castflow.workers.text import unique

RELEVANT_STORY_MAX_SOURCES = 5
CAST_HASH_PATTERN = re.compile(r"^[0-9a-f]{40}$")


@dataclass
class StoryCandidate:
    """A generated story and the stored story it updates, if any."""

    analysis: StoryAnalysis
    existing: Story | None = None


def relevant_stories(stories: list[Story]) -> list[Story]:
    """Stories that may still absorb new casts."""
    return [story for story in stories if len(story.sources) < RELEVANT_STORY_MAX_SOURCES]


def filter_relevant_casts(casts: list[CastForStory], stories: list[Story]) -> list[CastForStory]:
    """Drop casts that are already part of a stored story.

    A cast without story ids is always kept. Otherwise it is kept only when
    none of its story ids is a stored story and its hash appears in no
    story's sources or cast hashes.
    """
    story_ids = {story.id for story in stories}
    sources = [source.lower() for story in stories for source in story.sources]
    story_hashes = {
        normalize_hash(cast_hash) for story in stories for cast_hash in story.cast_hashes
    }

    kept = []
    for cast in casts:
        if not cast.story_ids:
            kept.append(cast)
            continue
        cast_hash = normalize_hash(cast.hash)
        in_story = any(story_id in story_ids for story_id in cast.story_ids)
        in_sources = cast_hash in story_hashes or any(cast_hash in source for source in sources)
        if not in_story and not in_sources:
            kept.append(cast)
    return kept


def _impact_verifications_text(cast: CastForStory) -> str:
    verified = [
        verification
        for verification in cast.impact_verifications
        if verification.is_grant_update and verification.grant_id in cast.computed_tags
    ]
    if not verified:
        return "None"
    return "; ".join(
        f"{verification.grant_id} ({verification.score}): {verification.reason}"
        for verification in verified
    )


async def prepare_cast_data(services: Services, casts: list[CastForStory]) -> str:
    """Render casts, oldest first, as the labelled text the story model reads."""
    ordered = sorted(casts, key=lambda cast: cast.timestamp)
    summaries = await asyncio.gather(
        *(
            get_cast_url_summaries(services, cast.hash, cast.embed_urls(), require_cast=False)
            for cast in ordered
        )
    )

    blocks = []
    for cast, cast_summaries in zip(ordered, summaries):
        replies = "\n".join(
            f"  - {reply.author_fname or 'unknown'} ({reply.timestamp.isoformat()}): {reply.text}"
            for reply in cast.replies
        )
        blocks.append(
            f"TIMESTAMP: {cast.timestamp.isoformat()}\n"
            f"CAST_HASH: {cast.hash}\n"
            f"CONTENT: {cast.text}\n"
            f"CAST_URL: {cast.url}\n"
            f"ATTACHMENTS: {', '.join(cast_summaries) if cast_summaries else 'None'}\n"
            f"ATTACHMENT_URLS: {', '.join(cast.embed_urls()) or 'None'}\n"
            f"REPLIES:\n{replies or '  None'}\n"
            f"IMPACT_VERIFICATION: {_impact_verifications_text(cast)}\n"
            "---"
        )
    return "\n".join(blocks)


def _analysis_from_draft(draft: StoryDraft) -> StoryAnalysis:
    return StoryAnalysis(
        id=draft.story_id or "",
        title=draft.title,
        tagline=draft.tagline,
        summary=draft.summary,
        key_points=draft.key_points,
        participants=draft.participants,
        timeline=draft.timeline,
        sentiment=draft.sentiment,
        completeness=draft.completeness,
        complete=draft.complete,
        sources=draft.sources,
        cast_hashes=draft.cast_hashes,
        info_needed_to_complete=draft.info_needed_to_complete,
        mint_urls=draft.mint_urls,
        created_at=draft.created_at,
    )


async def process_stories(
    services: Services, drafts: list[StoryDraft], existing_stories: list[Story]
) -> list[StoryCandidate]:
    """Match drafts to stored stories and record what changed as edits."""
    by_id = {story.id: story for story in existing_stories}
    by_key = {f"{story.title}:{story.tagline}": story for story in existing_stories}
    agent_address = services.settings.AGENT_ADDRESS

    candidates = []
    for draft in drafts:
        analysis = _analysis_from_draft(draft)
        existing = by_id.get(draft.story_id or "") or by_key.get(f"{draft.title}:{draft.tagline}")
        if existing is not None:
            analysis.id = existing.id
            analysis.header_image = existing.header_image or ""
            edits = await services.llm.generate_object(
                story_edits_messages(existing, draft.title, draft.summary, agent_address),
                StoryEdits,
                models=services.settings.default_models,
                context=f"story-edits:{existing.id}",
            )
            analysis.edits = [*existing.edits, *edits.edits]
        candidates.append(StoryCandidate(analysis=analysis, existing=existing))
    return candidates


async def build_participants_map(services: Services, participants: list[str]) -> dict[str, str]:
    """Map usernames (or addresses) to the address that should be credited.

    A verified address that receives a grant is preferred over the others.
    """
    fnames = unique(p.lstrip("@").lower() for p in participants if not p.startswith("0x"))
    profiles = await services.store.get_profiles_by_fnames(fnames)
    recipients = await services.store.get_all_grant_recipients()

    mapping: dict[str, str] = {}
    for profile in profiles:
        addresses = [address.lower() for address in profile.verified_addresses]
        if not addresses or not profile.fname:
            continue
        preferred = next((a for a in addresses if a in recipients), addresses[0])
        mapping[profile.fname.lower()] = preferred

    for participant in participants:
        if participant.startswith("0x"):
            profile = await services.store.get_profile_by_address(participant)
            if profile is not None:
                mapping[participant.lower()] = participant.lower()
    return mapping


def _story_casts(candidate: StoryCandidate, casts: list[CastForStory]) -> list[CastForStory]:
    hashes = {normalize_hash(h) for h in candidate.analysis.cast_hashes}
    matched = [cast for cast in casts if normalize_hash(cast.hash) in hashes]
    return matched or casts


async def get_media_urls(
    services: Services, candidate: StoryCandidate, casts: list[CastForStory]
) -> list[str]:
    """Collect describable media from a story's casts and mints.

    Streams come first, then media with the longest descriptions.
    """
    urls: list[str] = []
    for cast in _story_casts(candidate, casts):
        urls.extend(
            url
            for url in cast.embed_urls()
            if not is_cast_url(url) and not is_youtube_url(url)
        )
    urls.extend(candidate.analysis.mint_urls)
    urls = unique(urls)

    async def describe(url: str) -> tuple[str, str | None]:
        if is_zora_url(url):
            metadata = await services.store.get_token_metadata_for_url(url)
            if metadata is None or not metadata.image:
                return url, None
            return metadata.image, await services.describer.describe_zora(url)
        if is_video_url(url):
            return url, await services.describer.describe_video(url)
        return url, await services.describer.describe_image(url)

    described = await asyncio.gather(*(describe(url) for url in urls))
    media = [(url, text or "") for url, text in described if text or is_stream_url(url)]
    media.sort(key=lambda item: (not is_stream_url(item[0]), -len(item[1])))
    return unique(url for url, _ in media)


async def get_header_image(
    services: Services,
    candidate: StoryCandidate,
    casts: list[CastForStory],
    media_urls: list[str],
) -> str:
    """Choose a header image, keeping the one a stored story already has."""
    if candidate.analysis.header_image:
        return candidate.analysis.header_image

    images = [
        url
        for cast in _story_casts(candidate, casts)
        for url in cast.embed_urls()
        if not (is_cast_url(url) or is_video_url(url) or is_youtube_url(url) or is_zora_url(url))
    ]
    images.extend(url for url in media_urls if not is_video_url(url))
    for mint_url in candidate.analysis.mint_urls:
        metadata = await services.store.get_token_metadata_for_url(mint_url)
        if metadata is not None and metadata.image:
            images.append(metadata.image)
    images = unique(images)

    if not images:
        return ""
    if len(images) == 1:
        return images[0]

    choice = await services.llm.generate_object(
        header_image_messages(candidate.analysis.title, candidate.analysis.summary, images),
        HeaderImageChoice,
        models=services.settings.default_models[:2],
        context=f"header-image:{candidate.analysis.title}",
    )
    return choice.best_image_url if choice.best_image_url in images else images[0]


async def populate_stories(
    services: Services, candidates: list[StoryCandidate], casts: list[CastForStory]
) -> list[StoryAnalysis]:
    """Fill in participants, media, header image, author and completeness."""
    participants_map = await build_participants_map(
        services, [p for c in candidates for p in c.analysis.participants]
    )
    media = await asyncio.gather(*(get_media_urls(services, c, casts) for c in candidates))
    headers = await asyncio.gather(
        *(get_header_image(services, c, casts, m) for c, m in zip(candidates, media))
    )

    populated = []
    for candidate, media_urls, header_image in zip(candidates, media, headers):
        analysis = candidate.analysis
        mapped = [
            participants_map[key]
            for key in (p.lstrip("@").lower() for p in analysis.participants)
            if key in participants_map
        ]
        existing_participants = candidate.existing.participants if candidate.existing else []
        analysis.participants = unique([*existing_participants, *mapped])
        analysis.media_urls = media_urls
        analysis.header_image = header_image
        analysis.author = services.settings.AGENT_ADDRESS
        if not header_image and not analysis.info_needed_to_complete:
            analysis.info_needed_to_complete = MISSING_HEADER_IMAGE
        analysis.complete = is_story_complete(
            analysis.completeness, header_image, analysis.info_needed_to_complete
        ) or bool(candidate.existing and candidate.existing.complete)
        populated.append(analysis)
    return populated


async def build_stories(
    services: Services,
    casts: list[CastForStory],
    grant: Grant,
    parent_grant: Grant,
    existing_stories: list[Story],
    context: JobContext,
) -> tuple[list[StoryAnalysis], list[StoryCandidate]]:
    """Generate new or updated stories from a grant's casts."""
    cast_data = await prepare_cast_data(services, casts)
    context.log("Generating stories", grant_id=grant.id, casts=len(casts))

    story_text = await services.llm.generate_text(
        story_generation_messages(
            cast_data, existing_stories, grant, parent_grant, services.settings.AGENT_ADDRESS
        ),
        models=[services.settings.LLM_ANTHROPIC_MODEL],
        temperature=0.7,
        max_tokens=4096,
        context=f"story-text:{grant.id}",
    )
    drafts = await services.llm.generate_object(
        story_object_messages(story_text),
        StoryDrafts,
        models=services.settings.default_models,
        context=f"story-object:{grant.id}",
    )
    context.log(f"Generated {len(drafts.stories)} stories, populating")

    candidates = await process_stories(services, drafts.stories, existing_stories)
    return await populate_stories(services, candidates, casts), candidates


def _parse_created_at(value: datetime | str | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def prepare_stories_for_insertion(
    analyses: list[StoryAnalysis], grant: Grant, parent_grant: Grant
) -> list[Story]:
    """Convert analyses to rows with ids assigned and arrays deduplicated."""
    stories = []
    for analysis in analyses:
        cast_hashes = unique(
            f"0x{normalize_hash(h)}"
            for h in analysis.cast_hashes
            if CAST_HASH_PATTERN.match(normalize_hash(h))
        )
        stories.append(
            Story(
                id=analysis.id or str(uuid4()),
                title=analysis.title,
                tagline=analysis.tagline,
                summary=analysis.summary,
                key_points=analysis.key_points,
                participants=unique(analysis.participants),
                timeline=analysis.timeline,
                sentiment=analysis.sentiment.value,
                completeness=analysis.completeness,
                complete=analysis.complete,
                sources=unique(analysis.sources),
                media_urls=unique(analysis.media_urls),
                header_image=analysis.header_image or None,
                cast_hashes=cast_hashes,
                edits=analysis.edits,
                info_needed_to_complete=analysis.info_needed_to_complete,
                mint_urls=unique(analysis.mint_urls),
                author=analysis.author.lower() if analysis.author else None,
                grant_ids=[grant.id],
                parent_flow_ids=[parent_grant.id],
                created_at=_parse_created_at(analysis.created_at),
            )
        )
    return stories
