"""SQLAlchemy models for casts, profiles, grants, stories and embeddings."""

from datetime import datetime
from uuid import uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

EMBEDDING_DIM = 1536


class EmbeddingModel(Base):
    """Vector embedding of a piece of content."""

    __tablename__ = "embeddings"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()), nullable=False)
    type = Column(Text, nullable=False, index=True)
    content = Column(Text, nullable=False)
    raw_content = Column(Text, nullable=True)
    content_hash = Column(Text, nullable=False, unique=True)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=False)
    groups = Column(ARRAY(Text), nullable=False, default=list)
    users = Column(ARRAY(Text), nullable=False, default=list)
    tags = Column(ARRAY(Text), nullable=False, default=list)
    external_id = Column(Text, nullable=False, index=True)
    external_url = Column(Text, nullable=True)
    urls = Column(ARRAY(Text), nullable=False, default=list)
    url_summaries = Column(ARRAY(Text), nullable=False, default=list)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class CastModel(Base):
    """A Farcaster cast."""

    __tablename__ = "casts"

    id = Column(BigInteger, primary_key=True)
    hash = Column(LargeBinary, nullable=False, unique=True)
    fid = Column(BigInteger, nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime, nullable=False)
    embeds = Column(Text, nullable=True)
    embed_summaries = Column(ARRAY(Text), nullable=True)
    parent_hash = Column(LargeBinary, nullable=True, index=True)
    root_parent_url = Column(Text, nullable=True)
    story_ids = Column(ARRAY(Text), nullable=True)
    computed_tags = Column(ARRAY(Text), nullable=True)
    impact_verifications = Column(JSONB, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


class ProfileModel(Base):
    __tablename__ = "profiles"

    fid = Column(BigInteger, primary_key=True)
    fname = Column(Text, nullable=True, index=True)
    display_name = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    verified_addresses = Column(ARRAY(Text), nullable=False, default=list)


class BuilderProfileModel(Base):
    __tablename__ = "builder_profiles"

    fid = Column(BigInteger, primary_key=True)
    content = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GrantModel(Base):
    """A grant, or a flow when ``is_flow`` is set."""

    __tablename__ = "grants"

    id = Column(Text, primary_key=True)
    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    recipient = Column(Text, nullable=False, index=True)
    parent_contract = Column(Text, nullable=True)
    is_flow = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class StoryModel(Base):
    """A narrative about a grant's impact."""

    __tablename__ = "stories"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()))
    title = Column(Text, nullable=False)
    tagline = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=False, default="")
    key_points = Column(ARRAY(Text), nullable=False, default=list)
    participants = Column(ARRAY(Text), nullable=False, default=list)
    timeline = Column(JSONB, nullable=False, default=list)
    sentiment = Column(Text, nullable=False, default="neutral")
    completeness = Column(Float, nullable=False, default=0)
    complete = Column(Boolean, nullable=False, default=False)
    sources = Column(ARRAY(Text), nullable=False, default=list)
    media_urls = Column(ARRAY(Text), nullable=False, default=list)
    header_image = Column(Text, nullable=True)
    cast_hashes = Column(ARRAY(Text), nullable=False, default=list)
    edits = Column(JSONB, nullable=False, default=list)
    info_needed_to_complete = Column(Text, nullable=True)
    mint_urls = Column(ARRAY(Text), nullable=False, default=list)
    author = Column(Text, nullable=True)
    grant_ids = Column(ARRAY(Text), nullable=False, default=list)
    parent_flow_ids = Column(ARRAY(Text), nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class DerivedDataModel(Base):
    """Values computed from a grant's activity."""

    __tablename__ = "derived_data"

    grant_id = Column(Text, primary_key=True)
    last_builder_update = Column(DateTime, nullable=True)


class TokenMetadataModel(Base):
    __tablename__ = "token_metadata"

    url = Column(Text, primary_key=True)
    name = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    animation_url = Column(Text, nullable=True)
    mime_type = Column(Text, nullable=True)
