"""In-memory doubles for Redis, the data store, providers and queues."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from castflow.core.errors import MissingDataError
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
    merge_impact_verifications,
    normalize_hash,
)


class FakeRedis:
    """The subset of ``redis.asyncio.Redis`` the pipeline uses.

    Keys with a TTL expire once ``clock`` passes their deadline.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}
        self.deadlines: dict[str, float] = {}

    def _expire(self, key: str) -> None:
        deadline = self.deadlines.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            self.ttls.pop(key, None)
            self.deadlines.pop(key, None)

    async def get(self, key: str) -> Any:
        self._expire(key)
        return self.data.get(key)

    async def set(
        self,
        key: str,
        value: Any,
        nx: bool = False,
        px: int | None = None,
        ex: int | None = None,
    ) -> bool | None:
        # Concurrent callers interleave here; the check and write below are atomic.
        await asyncio.sleep(0)
        self._expire(key)
        if nx and key in self.data:
            return None
        ttl_ms = px if px is not None else (ex * 1000 if ex else None)
        self.data[key] = value
        self.ttls[key] = ttl_ms
        if ttl_ms:
            self.deadlines[key] = self.clock() + ttl_ms / 1000
        else:
            self.deadlines.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._expire(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
            self.deadlines.pop(key, None)
        return removed

    async def aclose(self) -> None:
        pass


class FakeDataStore:
    """Dictionary-backed implementation of the ``DataStore`` protocol."""

    def __init__(self) -> None:
        self.casts: dict[str, Cast] = {}
        self.casts_with_parent: dict[int, list[CastWithParent]] = {}
        self.grant_casts: dict[str, list[CastForStory]] = {}
        self.agent_contexts: dict[int, AgentCastContext] = {}
        self.profiles: dict[int, Profile] = {}
        self.builder_profiles: dict[int, BuilderProfile] = {}
        self.grants: dict[str, Grant] = {}
        self.stories: dict[str, Story] = {}
        self.token_metadata: dict[str, TokenMetadata] = {}
        self.embeddings: dict[str, EmbeddingRecord] = {}
        self.last_builder_update: dict[str, datetime] = {}
        self.story_links: list[tuple[str, str]] = []

    def add_cast(self, cast: Cast) -> Cast:
        self.casts[normalize_hash(cast.hash)] = cast
        return cast

    # Reads

    async def get_cast_by_hash(self, cast_hash: str) -> Cast | None:
        return self.casts.get(normalize_hash(cast_hash))

    async def get_cast_by_id(self, cast_id: int) -> Cast | None:
        return next((c for c in self.casts.values() if c.id == cast_id), None)

    async def get_casts_by_hashes(self, cast_hashes: list[str]) -> list[Cast]:
        return [c for h in cast_hashes if (c := self.casts.get(normalize_hash(h)))]

    async def get_casts_with_parent_for_fid(self, fid: int) -> list[CastWithParent]:
        return list(self.casts_with_parent.get(fid, []))

    async def get_casts_for_grant_stories(self, grant_id: str) -> list[CastForStory]:
        return list(self.grant_casts.get(grant_id, []))

    async def get_agent_cast_context(self, cast_id: int) -> AgentCastContext | None:
        return self.agent_contexts.get(cast_id)

    async def get_profile_by_fid(self, fid: int) -> Profile | None:
        return self.profiles.get(fid)

    async def get_profile_by_address(self, address: str) -> Profile | None:
        address = address.lower()
        return next(
            (
                p
                for p in self.profiles.values()
                if address in (a.lower() for a in p.verified_addresses)
            ),
            None,
        )

    async def get_profiles_by_fnames(self, fnames: list[str]) -> list[Profile]:
        wanted = {f.lower() for f in fnames}
        return [p for p in self.profiles.values() if (p.fname or "").lower() in wanted]

    async def get_builder_profile(self, fid: int) -> BuilderProfile | None:
        return self.builder_profiles.get(fid)

    async def get_grants_by_recipient_addresses(self, addresses: list[str]) -> list[Grant]:
        wanted = {a.lower() for a in addresses}
        return [g for g in self.grants.values() if g.recipient.lower() in wanted]

    async def get_all_grant_recipients(self) -> set[str]:
        return {g.recipient.lower() for g in self.grants.values()}

    async def get_grant_and_parent(self, grant_id: str) -> GrantAndParent:
        grant = self.grants.get(grant_id)
        parent = self.grants.get(grant.parent_contract or "") if grant else None
        return GrantAndParent(grant=grant, parent=parent)

    async def get_stories_for_grant(self, grant_id: str) -> list[Story]:
        return [s for s in self.stories.values() if grant_id in s.grant_ids]

    async def get_token_metadata_for_url(self, url: str) -> TokenMetadata | None:
        return self.token_metadata.get(url)

    # Writes

    async def upsert_embedding(self, record: EmbeddingRecord) -> None:
        existing = next(
            (
                key
                for key, value in self.embeddings.items()
                if value.content_hash == record.content_hash
            ),
            None,
        )
        self.embeddings[existing or record.id] = record

    async def delete_embedding_by_external_id(
        self, external_id: str, content_type: str
    ) -> int:
        return self._delete(
            lambda r: r.external_id == external_id and r.type == content_type
        )

    async def delete_embeddings_by_content_hash(
        self, content_hash: str, content_type: str
    ) -> int:
        return self._delete(
            lambda r: r.content_hash == content_hash and r.type == content_type
        )

    def _delete(self, match: Callable[[EmbeddingRecord], bool]) -> int:
        doomed = [key for key, record in self.embeddings.items() if match(record)]
        for key in doomed:
            del self.embeddings[key]
        return len(doomed)

    async def save_cast_embed_summaries(self, cast_hash: str, summaries: list[str]) -> None:
        cast = self.casts[normalize_hash(cast_hash)]
        cast.embed_summaries = summaries

    async def tag_cast(self, cast_hash: str, tags: list[str]) -> Cast | None:
        cast = self.casts.get(normalize_hash(cast_hash))
        if cast is None:
            return None
        cast.computed_tags = list(dict.fromkeys([*cast.computed_tags, *tags]))
        return cast

    async def replace_cast_impact_verification(
        self, cast_hash: str, verification: ImpactVerification
    ) -> None:
        cast = self.casts.get(normalize_hash(cast_hash))
        if cast is None:
            raise MissingDataError(f"Cast {cast_hash} not found")
        cast.impact_verifications = merge_impact_verifications(
            cast.impact_verifications, verification
        )

    async def append_cast_story_id(self, cast_hash: str, story_id: str) -> None:
        self.story_links.append((cast_hash, story_id))

    async def upsert_stories(self, stories: list[Story]) -> None:
        for story in stories:
            self.stories[story.id] = story

    async def advance_last_builder_update(self, grant_id: str, timestamp: datetime) -> None:
        current = self.last_builder_update.get(grant_id)
        if current is None or timestamp > current:
            self.last_builder_update[grant_id] = timestamp


class ScriptedGenerator:
    """Text generator that replays queued responses.

    Each queued item is returned in order. Exceptions are raised, dicts are
    validated into the requested schema, and callables receive the model id.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, model: str) -> Any:
        if not self.responses:
            raise AssertionError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response) and not isinstance(response, BaseModel):
            return response(model)
        return response

    async def generate_text(self, messages: list[Any], model: str, config: Any = None) -> str:
        self.calls.append({"kind": "text", "model": model, "messages": messages, "config": config})
        return self._next(model)

    async def generate_object(
        self, messages: list[Any], schema: type[BaseModel], model: str, config: Any = None
    ) -> BaseModel:
        self.calls.append(
            {"kind": "object", "model": model, "schema": schema, "messages": messages}
        )
        response = self._next(model)
        return response if isinstance(response, schema) else schema.model_validate(response)


class FakeEmbeddings:
    def __init__(self, dimensions: int = 3) -> None:
        self.dimensions = dimensions
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        return [0.1] * self.dimensions


class FakeDescriber:
    """Describes urls from a lookup table."""

    def __init__(self, descriptions: dict[str, str] | None = None) -> None:
        self.descriptions = descriptions or {}
        self.requested: list[str] = []

    async def fetch_url_summaries(self, urls: list[str]) -> list[str]:
        self.requested.extend(urls)
        return [self.descriptions[url] for url in urls if url in self.descriptions]

    async def describe(self, url: str) -> str | None:
        self.requested.append(url)
        return self.descriptions.get(url)

    describe_image = describe
    describe_video = describe
    describe_zora = describe


@dataclass
class FakeJob:
    id: str


@dataclass
class FakeQueues:
    """Records enqueued payloads instead of talking to RQ."""

    enqueued: list[tuple[str, Any, str | None]] = field(default_factory=list)

    def enqueue_sync(self, stage_name: str, payload: Any, job_name: str | None = None) -> FakeJob:
        self.enqueued.append((stage_name, payload, job_name))
        return FakeJob(id=f"job-{len(self.enqueued)}")

    async def enqueue(self, stage_name: str, payload: Any, job_name: str | None = None) -> FakeJob:
        return self.enqueue_sync(stage_name, payload, job_name)

    def payloads(self, stage_name: str) -> list[Any]:
        return [payload for stage, payload, _ in self.enqueued if stage == stage_name]
