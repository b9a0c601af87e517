"""Structured LLM outputs and the analysis results built from them."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from castflow.models.base import CamelModel
from castflow.models.domain import StoryEdit, StoryTimelineEvent


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class GrantUpdateClassification(CamelModel):
    """Structured verdict on whether a cast reports progress on a grant."""

    is_grant_update: bool = Field(description="Whether the cast is a grant update")
    reason: str = Field(description="Why the cast is or is not a grant update")
    confidence_score: float = Field(ge=0, le=1, description="Confidence, 0 to 1")
    grant_id: str = Field(
        description="Id of the grant the update belongs to, empty if not an update"
    )
    should_request_more_info: bool = Field(
        default=False,
        description="Whether the builder should be asked for more detail",
    )


class CastAnalysis(CamelModel):
    """Cached grant-update analysis of a single cast."""

    cast_hash: str
    grant_id: str
    is_grant_update: bool
    reason: str
    confidence_score: float
    should_request_more_info: bool = False


class AgentReplyDecision(CamelModel):
    should_reply: bool = Field(description="Whether the agent should reply")
    proposed_reply: str = Field(description="The reply text, empty if none")
    reason: str = Field(description="Why the agent should or should not reply")
    confidence_score: float = Field(ge=0, le=1)


class FarcasterAgentAnalysis(CamelModel):
    """Cached decision on an agent reply."""

    should_reply: bool
    proposed_reply: str
    reason: str
    confidence_score: float
    agent_fid: int
    custom_instructions: str
    reply_to_cast_id: int | None = None
    reply_to_hash: str | None = None
    reply_to_fid: int | None = None


class StoryDraft(CamelModel):
    """A story as returned by the structured story model."""

    story_id: str | None = Field(default=None, description="Id of an existing story")
    title: str = Field(description="A concise title for the story")
    summary: str = Field(description="A comprehensive summary of all events")
    key_points: list[str] = Field(description="Key points from the story")
    participants: list[str] = Field(
        description="Farcaster usernames of key participants mentioned"
    )
    tagline: str = Field(description="A short tagline for the story")
    timeline: list[StoryTimelineEvent] = Field(description="Timeline of major events")
    cast_hashes: list[str] = Field(
        description="The hashes of the casts that are part of the story"
    )
    sentiment: Sentiment
    completeness: float = Field(ge=0, le=1, description="Story completeness")
    complete: bool = Field(description="Whether the story is complete")
    sources: list[str] = Field(description="Sources of the story, including cast urls")
    created_at: str = Field(description="The timestamp of the story impact")
    info_needed_to_complete: str | None = None
    mint_urls: list[str] = Field(default_factory=list)


class StoryDrafts(CamelModel):
    stories: list[StoryDraft]


class StoryEdits(CamelModel):
    edits: list[StoryEdit]


class HeaderImageChoice(CamelModel):
    best_image_url: str = Field(description="The url of the best header image")
    reason: str


class StoryAnalysis(CamelModel):
    """A story ready to be stored."""

    id: str = ""
    title: str
    tagline: str
    summary: str
    key_points: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    timeline: list[StoryTimelineEvent] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    completeness: float = 0.0
    complete: bool = False
    sources: list[str] = Field(default_factory=list)
    media_urls: list[str] = Field(default_factory=list)
    header_image: str = ""
    cast_hashes: list[str] = Field(default_factory=list)
    edits: list[StoryEdit] = Field(default_factory=list)
    info_needed_to_complete: str | None = None
    mint_urls: list[str] = Field(default_factory=list)
    author: str | None = None
    created_at: datetime | str | None = None


COMPLETENESS_THRESHOLD = 0.8
MISSING_HEADER_IMAGE = "No header image available"


def is_story_complete(
    completeness: float, header_image: str | None, info_needed: str | None
) -> bool:
    """Whether a story has enough material to be published as complete."""
    return (
        completeness >= COMPLETENESS_THRESHOLD
        and bool(header_image)
        and not info_needed
    )
