"""Job payload models for every pipeline queue."""

from enum import Enum

from pydantic import Field, model_validator

from castflow.models.base import CamelModel


class ContentType(str, Enum):
    """Kinds of content that can be embedded."""

    GRANT = "grant"
    CAST = "cast"
    GRANT_APPLICATION = "grant-application"
    FLOW = "flow"
    DISPUTE = "dispute"
    DRAFT_APPLICATION = "draft-application"
    BUILDER_PROFILE = "builder-profile"
    STORY = "story"


class JobBody(CamelModel):
    """A single piece of content to embed."""

    type: ContentType
    content: str
    raw_content: str | None = None
    groups: list[str]
    users: list[str]
    tags: list[str]
    external_id: str = Field(min_length=1)
    external_url: str | None = None
    urls: list[str] | None = None
    hash_suffix: str | None = None


class BulkJobBody(CamelModel):
    jobs: list[JobBody] = Field(min_length=1)


class DeletionJobBody(CamelModel):
    """Remove embeddings previously stored for a content hash."""

    content_hash: str = Field(min_length=1)
    type: ContentType


class IsGrantUpdateJobBody(CamelModel):
    """A cast to classify as a grant update or not."""

    cast_hash: str = Field(min_length=1)
    cast_content: str = ""
    builder_fid: int
    urls: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_content_or_urls(self) -> "IsGrantUpdateJobBody":
        """Reject casts that have neither text nor attachments."""
        if not self.cast_content and not self.urls:
            raise ValueError("Cast content or urls are required")
        return self


class BulkIsGrantUpdateJobBody(CamelModel):
    jobs: list[IsGrantUpdateJobBody] = Field(min_length=1)


class StoryJobBody(CamelModel):
    """A new grant-update cast that may extend the grant's stories."""

    new_cast_id: int
    grant_id: str = Field(min_length=1)


class BulkStoryJobBody(CamelModel):
    jobs: list[StoryJobBody] = Field(min_length=1)


class BuilderProfileJobBody(CamelModel):
    fid: int


class BulkBuilderProfileJobBody(CamelModel):
    jobs: list[BuilderProfileJobBody] = Field(min_length=1)


class FarcasterAgentJobBody(CamelModel):
    """A request for the agent to decide on, and draft, a reply."""

    agent_fid: int
    custom_instructions: str = Field(min_length=1)
    reply_to_cast_id: int | None = None
    post_to_channel_id: str | None = None
    urls_to_include: list[str] = Field(default_factory=list)
