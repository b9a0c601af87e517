"""SQLAlchemy implementation of the data store."""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from castflow.core.errors import MissingDataError
from castflow.core.logging import get_logger
from castflow.database.models import (
    BuilderProfileModel,
    CastModel,
    DerivedDataModel,
    EmbeddingModel,
    GrantModel,
    ProfileModel,
    StoryModel,
    TokenMetadataModel,
)
from castflow.models.domain import (
    AgentCastContext,
    BuilderProfile,
    Cast,
    CastForStory,
    CastReply,
    CastWithParent,
    EmbeddingRecord,
    Grant,
    GrantAndParent,
    ImpactVerification,
    Profile,
    Story,
    TokenMetadata,
    normalize_hash,
)

logger = get_logger().bind(module="data_store")


def hash_to_bytes(cast_hash: str) -> bytes:
    return bytes.fromhex(normalize_hash(cast_hash))


def bytes_to_hash(value: bytes | None) -> str | None:
    return f"0x{value.hex()}" if value is not None else None


def _cast_from_row(row: CastModel, author_fname: str | None = None) -> Cast:
    return Cast(
        id=row.id,
        hash=bytes_to_hash(row.hash) or "",
        fid=row.fid,
        text=row.text or "",
        timestamp=row.timestamp,
        embeds=row.embeds,
        embed_summaries=row.embed_summaries,
        parent_hash=bytes_to_hash(row.parent_hash),
        root_parent_url=row.root_parent_url,
        author_fname=author_fname,
        story_ids=row.story_ids or [],
        computed_tags=row.computed_tags or [],
        impact_verifications=[
            ImpactVerification.model_validate(item)
            for item in (row.impact_verifications or [])
        ],
    )


def _profile_from_row(row: ProfileModel) -> Profile:
    return Profile(
        fid=row.fid,
        fname=row.fname,
        display_name=row.display_name,
        bio=row.bio,
        avatar_url=row.avatar_url,
        verified_addresses=row.verified_addresses or [],
    )


def _grant_from_row(row: GrantModel) -> Grant:
    return Grant(
        id=row.id,
        title=row.title,
        description=row.description,
        recipient=row.recipient,
        parent_contract=row.parent_contract,
        is_flow=row.is_flow,
    )


def _story_from_row(row: StoryModel) -> Story:
    return Story(
        id=row.id,
        title=row.title,
        tagline=row.tagline,
        summary=row.summary,
        key_points=row.key_points or [],
        participants=row.participants or [],
        timeline=row.timeline or [],
        sentiment=row.sentiment,
        completeness=row.completeness,
        complete=row.complete,
        sources=row.sources or [],
        media_urls=row.media_urls or [],
        header_image=row.header_image,
        cast_hashes=row.cast_hashes or [],
        edits=row.edits or [],
        info_needed_to_complete=row.info_needed_to_complete,
        mint_urls=row.mint_urls or [],
        author=row.author,
        grant_ids=row.grant_ids or [],
        parent_flow_ids=row.parent_flow_ids or [],
        created_at=row.created_at,
    )


def _story_values(story: Story) -> dict[str, Any]:
    values = story.model_dump(mode="json", by_alias=False)
    if story.created_at is None:
        values.pop("created_at")
    else:
        values["created_at"] = story.created_at
    return values


class SqlDataStore:
    """Data store backed by an async SQLAlchemy session.

    Writes commit immediately; each is a single statement.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _execute_write(self, statement: Any, params: dict[str, Any] | None = None) -> Any:
        result = await self.session.execute(statement, params or {})
        await self.session.commit()
        return result

    # Reads

    def _cast_query(self) -> Any:
        return select(CastModel, ProfileModel.fname).outerjoin(
            ProfileModel, ProfileModel.fid == CastModel.fid
        )

    async def get_cast_by_hash(self, cast_hash: str) -> Cast | None:
        result = await self.session.execute(
            self._cast_query().where(CastModel.hash == hash_to_bytes(cast_hash))
        )
        row = result.first()
        return _cast_from_row(row[0], row[1]) if row else None

    async def get_cast_by_id(self, cast_id: int) -> Cast | None:
        result = await self.session.execute(
            self._cast_query().where(CastModel.id == cast_id)
        )
        row = result.first()
        return _cast_from_row(row[0], row[1]) if row else None

    async def get_casts_by_hashes(self, cast_hashes: list[str]) -> list[Cast]:
        if not cast_hashes:
            return []
        result = await self.session.execute(
            self._cast_query().where(
                CastModel.hash.in_([hash_to_bytes(h) for h in cast_hashes])
            )
        )
        return [_cast_from_row(cast, fname) for cast, fname in result.all()]

    async def get_casts_with_parent_for_fid(self, fid: int) -> list[CastWithParent]:
        """Return a builder's casts, newest first, with their parent casts."""
        parent = aliased(CastModel)
        parent_profile = aliased(ProfileModel)
        query = (
            select(CastModel, ProfileModel.fname, parent, parent_profile.fname)
            .outerjoin(ProfileModel, ProfileModel.fid == CastModel.fid)
            .outerjoin(parent, parent.hash == CastModel.parent_hash)
            .outerjoin(parent_profile, parent_profile.fid == parent.fid)
            .where(CastModel.fid == fid, CastModel.deleted_at.is_(None))
            .order_by(CastModel.timestamp.desc())
        )
        result = await self.session.execute(query)
        casts: list[CastWithParent] = []
        for cast, fname, parent_cast, parent_fname in result.all():
            base = _cast_from_row(cast, fname)
            casts.append(
                CastWithParent(
                    **base.model_dump(),
                    parent_text=parent_cast.text if parent_cast else None,
                    parent_embeds=parent_cast.embeds if parent_cast else None,
                    parent_author_fname=parent_fname,
                )
            )
        return casts

    async def get_casts_for_grant_stories(self, grant_id: str) -> list[CastForStory]:
        """Return the grant's update casts with their direct replies."""
        result = await self.session.execute(
            self._cast_query()
            .where(
                CastModel.computed_tags.any(grant_id),
                CastModel.deleted_at.is_(None),
            )
            .order_by(CastModel.timestamp.asc())
        )
        rows = result.all()
        if not rows:
            return []

        reply_result = await self.session.execute(
            select(CastModel, ProfileModel.fname)
            .outerjoin(ProfileModel, ProfileModel.fid == CastModel.fid)
            .where(
                CastModel.parent_hash.in_([cast.hash for cast, _ in rows]),
                CastModel.deleted_at.is_(None),
            )
            .order_by(CastModel.timestamp.asc())
        )
        replies: dict[bytes, list[CastReply]] = {}
        for reply, fname in reply_result.all():
            replies.setdefault(reply.parent_hash, []).append(
                CastReply(author_fname=fname, text=reply.text or "", timestamp=reply.timestamp)
            )

        return [
            CastForStory(
                **_cast_from_row(cast, fname).model_dump(),
                replies=replies.get(cast.hash, []),
            )
            for cast, fname in rows
        ]

    async def get_agent_cast_context(self, cast_id: int) -> AgentCastContext | None:
        cast = await self.get_cast_by_id(cast_id)
        if cast is None:
            return None
        parent = (
            await self.get_cast_by_hash(cast.parent_hash) if cast.parent_hash else None
        )
        root = parent
        while root is not None and root.parent_hash:
            next_root = await self.get_cast_by_hash(root.parent_hash)
            if next_root is None:
                break
            root = next_root
        reply_result = await self.session.execute(
            self._cast_query()
            .where(CastModel.parent_hash == hash_to_bytes(cast.hash))
            .order_by(CastModel.timestamp.asc())
        )
        replies = [_cast_from_row(reply, fname) for reply, fname in reply_result.all()]
        return AgentCastContext(cast=cast, parent=parent, root=root, replies=replies)

    async def get_profile_by_fid(self, fid: int) -> Profile | None:
        row = await self.session.get(ProfileModel, fid)
        return _profile_from_row(row) if row else None

    async def get_profile_by_address(self, address: str) -> Profile | None:
        result = await self.session.execute(
            select(ProfileModel)
            .where(ProfileModel.verified_addresses.any(address.lower()))
            .limit(1)
        )
        row = result.scalars().first()
        return _profile_from_row(row) if row else None

    async def get_profiles_by_fnames(self, fnames: list[str]) -> list[Profile]:
        if not fnames:
            return []
        result = await self.session.execute(
            select(ProfileModel).where(ProfileModel.fname.in_(fnames))
        )
        return [_profile_from_row(row) for row in result.scalars().all()]

    async def get_builder_profile(self, fid: int) -> BuilderProfile | None:
        row = await self.session.get(BuilderProfileModel, fid)
        return BuilderProfile(fid=row.fid, content=row.content) if row else None

    async def get_grants_by_recipient_addresses(
        self, addresses: list[str]
    ) -> list[Grant]:
        if not addresses:
            return []
        result = await self.session.execute(
            select(GrantModel).where(
                func.lower(GrantModel.recipient).in_([a.lower() for a in addresses]),
                GrantModel.is_flow.is_(False),
                GrantModel.is_active.is_(True),
            )
        )
        return [_grant_from_row(row) for row in result.scalars().all()]

    async def get_all_grant_recipients(self) -> set[str]:
        result = await self.session.execute(
            select(func.lower(GrantModel.recipient)).where(GrantModel.is_flow.is_(False))
        )
        return set(result.scalars().all())

    async def get_grant_and_parent(self, grant_id: str) -> GrantAndParent:
        grant = await self.session.get(GrantModel, grant_id)
        if grant is None:
            return GrantAndParent()
        parent = None
        if grant.parent_contract:
            result = await self.session.execute(
                select(GrantModel).where(
                    and_(
                        func.lower(GrantModel.recipient) == grant.parent_contract.lower(),
                        GrantModel.is_flow.is_(True),
                    )
                )
            )
            parent = result.scalars().first()
        return GrantAndParent(
            grant=_grant_from_row(grant),
            parent=_grant_from_row(parent) if parent else None,
        )

    async def get_stories_for_grant(self, grant_id: str) -> list[Story]:
        result = await self.session.execute(
            select(StoryModel)
            .where(StoryModel.grant_ids.any(grant_id))
            .order_by(StoryModel.created_at.desc())
        )
        return [_story_from_row(row) for row in result.scalars().all()]

    async def get_token_metadata_for_url(self, url: str) -> TokenMetadata | None:
        row = await self.session.get(TokenMetadataModel, url)
        if row is None:
            return None
        return TokenMetadata(
            url=row.url,
            name=row.name,
            description=row.description,
            image=row.image,
            animation_url=row.animation_url,
            mime_type=row.mime_type,
        )

    # Writes

    async def upsert_embedding(self, record: EmbeddingRecord) -> None:
        """Insert an embedding or refresh the one stored for its content hash."""
        values = record.model_dump(by_alias=False)
        statement = insert(EmbeddingModel).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[EmbeddingModel.content_hash],
            set_={
                "embedding": statement.excluded.embedding,
                "version": statement.excluded.version,
                "url_summaries": statement.excluded.url_summaries,
                "updated_at": datetime.utcnow(),
            },
        )
        await self._execute_write(statement)

    async def delete_embedding_by_external_id(
        self, external_id: str, content_type: str
    ) -> int:
        result = await self._execute_write(
            delete(EmbeddingModel).where(
                EmbeddingModel.external_id == external_id,
                EmbeddingModel.type == content_type,
            )
        )
        return result.rowcount or 0

    async def delete_embeddings_by_content_hash(
        self, content_hash: str, content_type: str
    ) -> int:
        result = await self._execute_write(
            delete(EmbeddingModel).where(
                EmbeddingModel.content_hash == content_hash,
                EmbeddingModel.type == content_type,
            )
        )
        return result.rowcount or 0

    async def save_cast_embed_summaries(
        self, cast_hash: str, summaries: list[str]
    ) -> None:
        await self._execute_write(
            text("UPDATE casts SET embed_summaries = :summaries WHERE hash = :hash"),
            {"summaries": summaries, "hash": hash_to_bytes(cast_hash)},
        )

    async def tag_cast(self, cast_hash: str, tags: list[str]) -> Cast | None:
        """Add tags to a cast without duplicating existing ones."""
        result = await self._execute_write(
            text(
                "UPDATE casts SET computed_tags = ARRAY("
                "SELECT DISTINCT t FROM unnest("
                "array_cat(coalesce(computed_tags, '{}'::text[]), CAST(:tags AS text[]))"
                ") AS t) WHERE hash = :hash RETURNING id"
            ),
            {"tags": tags, "hash": hash_to_bytes(cast_hash)},
        )
        cast_id = result.scalar()
        if cast_id is None:
            return None
        return await self.get_cast_by_id(cast_id)

    async def replace_cast_impact_verification(
        self, cast_hash: str, verification: ImpactVerification
    ) -> None:
        """Swap in a verdict, dropping any from the same model, prompt and grant.

        Raises:
            MissingDataError: If no cast has the given hash
        """
        result = await self._execute_write(
            text(
                "UPDATE casts SET impact_verifications = coalesce(("
                "SELECT jsonb_agg(v) FROM jsonb_array_elements("
                "coalesce(impact_verifications, '[]'::jsonb)) AS v "
                "WHERE NOT (v->>'model' IS NOT DISTINCT FROM CAST(:model AS text) "
                "AND v->>'prompt_version' IS NOT DISTINCT FROM CAST(:prompt_version AS text) "
                "AND v->>'grant_id' IS NOT DISTINCT FROM CAST(:grant_id AS text))), "
                "'[]'::jsonb) || CAST(:entry AS jsonb) "
                "WHERE hash = :hash RETURNING id"
            ),
            {
                "model": verification.model,
                "prompt_version": verification.prompt_version,
                "grant_id": verification.grant_id,
                "entry": json.dumps([verification.model_dump(by_alias=False)]),
                "hash": hash_to_bytes(cast_hash),
            },
        )
        if result.scalar() is None:
            raise MissingDataError(f"Cast {cast_hash} not found")

    async def append_cast_story_id(self, cast_hash: str, story_id: str) -> None:
        await self._execute_write(
            text(
                "UPDATE casts SET story_ids = array_append("
                "coalesce(story_ids, '{}'::text[]), CAST(:story_id AS text)) "
                "WHERE hash = :hash AND NOT (CAST(:story_id AS text) = ANY(coalesce(story_ids, '{}'::text[])))"
            ),
            {"story_id": story_id, "hash": hash_to_bytes(cast_hash)},
        )

    async def upsert_stories(self, stories: list[Story]) -> None:
        if not stories:
            return
        statement = insert(StoryModel).values([_story_values(story) for story in stories])
        updatable = [
            "title",
            "tagline",
            "summary",
            "key_points",
            "participants",
            "timeline",
            "sentiment",
            "completeness",
            "complete",
            "sources",
            "media_urls",
            "header_image",
            "cast_hashes",
            "edits",
            "info_needed_to_complete",
            "mint_urls",
            "author",
            "grant_ids",
            "parent_flow_ids",
        ]
        statement = statement.on_conflict_do_update(
            index_elements=[StoryModel.id],
            set_={
                **{column: getattr(statement.excluded, column) for column in updatable},
                "updated_at": datetime.utcnow(),
            },
        )
        await self._execute_write(statement)
        logger.info("Upserted stories", count=len(stories))

    async def advance_last_builder_update(
        self, grant_id: str, timestamp: datetime
    ) -> None:
        """Move the grant's last update time forward, never backward."""
        statement = insert(DerivedDataModel).values(
            grant_id=grant_id, last_builder_update=timestamp
        )
        statement = statement.on_conflict_do_update(
            index_elements=[DerivedDataModel.grant_id],
            set_={
                "last_builder_update": func.greatest(
                    DerivedDataModel.last_builder_update,
                    statement.excluded.last_builder_update,
                )
            },
        )
        await self._execute_write(statement)
