"""Typed data access used by the stage workers."""

from datetime import datetime
from typing import Protocol

from castflow.models.domain import (
    AgentCastContext,
    BuilderProfile,
    Cast,
    CastForStory,
    CastWithParent,
    EmbeddingRecord,
    Grant,
    GrantAndParent,
    ImpactVerification,
    Profile,
    Story,
    TokenMetadata,
)


class DataStore(Protocol):
    """Reads and writes the relational data behind the pipeline.

    Every write is a single statement so concurrent workers can touch the
    same rows without read-modify-write races.
    """

    # Reads

    async def get_cast_by_hash(self, cast_hash: str) -> Cast | None: ...

    async def get_cast_by_id(self, cast_id: int) -> Cast | None: ...

    async def get_casts_by_hashes(self, cast_hashes: list[str]) -> list[Cast]: ...

    async def get_casts_with_parent_for_fid(self, fid: int) -> list[CastWithParent]: ...

    async def get_casts_for_grant_stories(self, grant_id: str) -> list[CastForStory]: ...

    async def get_agent_cast_context(self, cast_id: int) -> AgentCastContext | None: ...

    async def get_profile_by_fid(self, fid: int) -> Profile | None: ...

    async def get_profile_by_address(self, address: str) -> Profile | None: ...

    async def get_profiles_by_fnames(self, fnames: list[str]) -> list[Profile]: ...

    async def get_builder_profile(self, fid: int) -> BuilderProfile | None: ...

    async def get_grants_by_recipient_addresses(
        self, addresses: list[str]
    ) -> list[Grant]: ...

    async def get_all_grant_recipients(self) -> set[str]: ...

    async def get_grant_and_parent(self, grant_id: str) -> GrantAndParent: ...

    async def get_stories_for_grant(self, grant_id: str) -> list[Story]: ...

    async def get_token_metadata_for_url(self, url: str) -> TokenMetadata | None: ...

    # Writes

    async def upsert_embedding(self, record: EmbeddingRecord) -> None: ...

    async def delete_embedding_by_external_id(
        self, external_id: str, content_type: str
    ) -> int: ...

    async def delete_embeddings_by_content_hash(
        self, content_hash: str, content_type: str
    ) -> int: ...

    async def save_cast_embed_summaries(
        self, cast_hash: str, summaries: list[str]
    ) -> None: ...

    async def tag_cast(self, cast_hash: str, tags: list[str]) -> Cast | None: ...

    async def replace_cast_impact_verification(
        self, cast_hash: str, verification: ImpactVerification
    ) -> None: ...

    async def append_cast_story_id(self, cast_hash: str, story_id: str) -> None: ...

    async def upsert_stories(self, stories: list[Story]) -> None: ...

    async def advance_last_builder_update(
        self, grant_id: str, timestamp: datetime
    ) -> None: ...
