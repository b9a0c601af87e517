"""Key prefixes used in the shared key-value store."""

# Per-entity locks
STORY_LOCK_PREFIX = "story-locked-v1:"
BUILDER_PROFILE_LOCK_PREFIX = "builder-profile-locked-v2:"

# Analysis results
CAST_ANALYSIS_PREFIX = "ai-cast-analysis-v1:"
FARCASTER_AGENT_ANALYSIS_PREFIX = "ai-farcaster-agent-analysis-v1:"
BUILDER_PROFILE_CHUNK_PREFIX = "builder-profile-analyze-chunk:"
SUMMARY_ANALYSIS_PREFIX = "summary-analysis-v1:"

# Media descriptions
IMAGE_DESCRIPTION_PREFIX = "ai-studio-image-description:"
VIDEO_DESCRIPTION_PREFIX = "ai-studio-video-description:"
YOUTUBE_DESCRIPTION_PREFIX = "ai-studio-youtube-description:"
ZORA_DESCRIPTION_PREFIX = "ai-zora-description:"
CAST_DESCRIPTION_PREFIX = "cast:"


def content_prefix(version: int) -> str:
    """Prefix of the content-hash dedup keys for an embedding cache version."""
    return f"v{version}-content:"
