"""Records read from and written to the data store."""

import json
from datetime import datetime
from typing import Any

from pydantic import Field

from castflow.models.base import CamelModel


def normalize_hash(value: str) -> str:
    """Lowercase a cast hash and strip its 0x prefix."""
    value = value.lower()
    return value[2:] if value.startswith("0x") else value


class ImpactVerification(CamelModel):
    """One model's verdict on whether a cast is a grant update."""

    model: str
    score: float
    reason: str
    is_grant_update: bool
    prompt_version: str
    grant_id: str


class Cast(CamelModel):
    """A social post as stored in the data store."""

    id: int
    hash: str
    fid: int
    text: str = ""
    timestamp: datetime
    embeds: str | None = None
    embed_summaries: list[str] | None = None
    parent_hash: str | None = None
    root_parent_url: str | None = None
    author_fname: str | None = None
    story_ids: list[str] = Field(default_factory=list)
    computed_tags: list[str] = Field(default_factory=list)
    impact_verifications: list[ImpactVerification] = Field(default_factory=list)

    def embed_urls(self) -> list[str]:
        """Urls of the cast's embeds; malformed embed JSON counts as none."""
        return parse_embed_urls(self.embeds)

    @property
    def url(self) -> str:
        return f"https://warpcast.com/{self.author_fname or self.fid}/{self.hash}"


def parse_embed_urls(embeds: str | None) -> list[str]:
    """Extract url strings from a JSON encoded embeds column.

    Args:
        embeds: Raw embeds JSON, a list of ``{"url": ...}`` objects

    Returns:
        The urls in order, or an empty list when the JSON is missing or invalid
    """
    if not embeds:
        return []
    try:
        parsed: Any = json.loads(embeds)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(parsed, list):
        return []
    urls: list[str] = []
    for item in parsed:
        if isinstance(item, dict) and isinstance(item.get("url"), str):
            urls.append(item["url"])
        elif isinstance(item, str):
            urls.append(item)
    return urls


class CastWithParent(Cast):
    """A builder's cast with the cast it replies to, if any."""

    parent_text: str | None = None
    parent_embeds: str | None = None
    parent_author_fname: str | None = None


class CastReply(CamelModel):
    author_fname: str | None = None
    text: str = ""
    timestamp: datetime


class CastForStory(Cast):
    """A grant update cast with its replies."""

    replies: list[CastReply] = Field(default_factory=list)


class AgentCastContext(CamelModel):
    """The cast an agent is replying to and its surroundings."""

    cast: Cast
    parent: Cast | None = None
    root: Cast | None = None
    replies: list[Cast] = Field(default_factory=list)


class Profile(CamelModel):
    fid: int
    fname: str | None = None
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    verified_addresses: list[str] = Field(default_factory=list)


class BuilderProfile(CamelModel):
    fid: int
    content: str


class Grant(CamelModel):
    """A funded grant or flow."""

    id: str
    title: str = ""
    description: str = ""
    recipient: str = ""
    parent_contract: str | None = None
    is_flow: bool = False


class StoryTimelineEvent(CamelModel):
    timestamp: str
    event: str


class StoryEdit(CamelModel):
    timestamp: str
    message: str
    address: str


class Story(CamelModel):
    """A stored narrative about a grant's impact."""

    id: str
    title: str
    tagline: str = ""
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    timeline: list[StoryTimelineEvent] = Field(default_factory=list)
    sentiment: str = "neutral"
    completeness: float = 0.0
    complete: bool = False
    sources: list[str] = Field(default_factory=list)
    media_urls: list[str] = Field(default_factory=list)
    header_image: str | None = None
    cast_hashes: list[str] = Field(default_factory=list)
    edits: list[StoryEdit] = Field(default_factory=list)
    info_needed_to_complete: str | None = None
    mint_urls: list[str] = Field(default_factory=list)
    author: str | None = None
    grant_ids: list[str] = Field(default_factory=list)
    parent_flow_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None


class TokenMetadata(CamelModel):
    """Mint metadata for a collectible url."""

    url: str
    name: str | None = None
    description: str | None = None
    image: str | None = None
    animation_url: str | None = None
    mime_type: str | None = None


class GrantAndParent(CamelModel):
    grant: Grant | None = None
    parent: Grant | None = None


class EmbeddingRecord(CamelModel):
    """A vector embedding ready to be stored."""

    id: str
    type: str
    content: str
    raw_content: str | None = None
    content_hash: str
    embedding: list[float]
    groups: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    external_id: str
    external_url: str | None = None
    urls: list[str] = Field(default_factory=list)
    url_summaries: list[str] = Field(default_factory=list)
    version: int


def merge_impact_verifications(
    existing: list[ImpactVerification], new: ImpactVerification
) -> list[ImpactVerification]:
    """Replace any verdict from the same model, prompt version and grant."""
    kept = [
        verification
        for verification in existing
        if not (
            verification.model == new.model
            and verification.prompt_version == new.prompt_version
            and verification.grant_id == new.grant_id
        )
    ]
    return [*kept, new]
