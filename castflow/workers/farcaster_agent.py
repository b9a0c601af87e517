"""Agent stage: decide whether and how the agent replies to a cast."""

from typing import Any

from castflow.cache.keys import FARCASTER_AGENT_ANALYSIS_PREFIX
from castflow.core.errors import MissingDataError, ValidationError
from castflow.llm.prompts import agent_decision_messages, agent_reply_messages
from castflow.models.analysis import AgentReplyDecision, FarcasterAgentAnalysis
from castflow.models.domain import AgentCastContext, Cast, Grant, Profile
from castflow.models.jobs import FarcasterAgentJobBody
from castflow.queue.context import JobContext
from castflow.queue.runtime import run_job
from castflow.queue.stages import FARCASTER_AGENT_QUEUE
from castflow.services import Services


def agent_cache_key(body: FarcasterAgentJobBody) -> str:
    target = body.reply_to_cast_id
    if target is None:
        target = body.post_to_channel_id or "post"
    return f"{body.agent_fid}-{target}"


def describe_profile(profile: Profile) -> str:
    name = profile.display_name or profile.fname or str(profile.fid)
    handle = f" (@{profile.fname})" if profile.fname else ""
    return f"{name}{handle}: {profile.bio or 'no bio'}"


def _cast_line(label: str, cast: Cast) -> str:
    author = cast.author_fname or str(cast.fid)
    return f"{label} by {author} at {cast.timestamp.isoformat()}: {cast.text}"


def format_conversation(context: AgentCastContext) -> str:
    """Render the thread around the cast being replied to."""
    lines = []
    if context.root is not None and context.root.hash != getattr(context.parent, "hash", None):
        lines.append(_cast_line("ROOT CAST", context.root))
    if context.parent is not None:
        lines.append(_cast_line("PARENT CAST", context.parent))
    lines.append(_cast_line("CAST TO REPLY TO", context.cast))
    lines.extend(_cast_line("EXISTING REPLY", reply) for reply in context.replies)
    return "\n".join(lines)


async def load_reply_context(
    services: Services, cast_id: int
) -> tuple[AgentCastContext, str, list[Grant]]:
    """Load the thread, the author's builder profile and their grants.

    Raises:
        MissingDataError: If the cast or the author's builder profile is unknown
    """
    thread = await services.store.get_agent_cast_context(cast_id)
    if thread is None:
        raise MissingDataError(f"Cast {cast_id} not found")

    builder_profile = await services.store.get_builder_profile(thread.cast.fid)
    if builder_profile is None:
        raise MissingDataError(f"Builder profile not found for fid {thread.cast.fid}")

    author = await services.store.get_profile_by_fid(thread.cast.fid)
    grants: list[Grant] = []
    if author is not None and author.verified_addresses:
        grants = await services.store.get_grants_by_recipient_addresses(
            author.verified_addresses
        )
    return thread, builder_profile.content, grants


async def handle_farcaster_agent(
    payload: dict[str, Any], services: Services, context: JobContext
) -> dict[str, Any]:
    body = FarcasterAgentJobBody.model_validate(payload)
    if not body.custom_instructions.strip():
        raise ValidationError("customInstructions is required")

    cache_key = agent_cache_key(body)
    cached = await services.cache.get_cached_model(
        cache_key, FARCASTER_AGENT_ANALYSIS_PREFIX, FarcasterAgentAnalysis
    )
    if cached is not None:
        context.log("Using cached agent analysis", key=cache_key)
        return {"jobId": context.id, **cached.to_payload()}

    agent = await services.store.get_profile_by_fid(body.agent_fid)
    if agent is None:
        raise MissingDataError(f"Agent profile not found for fid {body.agent_fid}")

    thread: AgentCastContext | None = None
    builder_profile: str | None = None
    grants: list[Grant] = []
    conversation = f"Write a new post for channel {body.post_to_channel_id or 'home'}."
    if body.reply_to_cast_id is not None:
        thread, builder_profile, grants = await load_reply_context(
            services, body.reply_to_cast_id
        )
        conversation = format_conversation(thread)

    settings = services.settings
    plan = await services.llm.generate_text(
        agent_reply_messages(
            body.custom_instructions,
            describe_profile(agent),
            conversation,
            builder_profile,
            grants,
            body.urls_to_include,
        ),
        models=[settings.LLM_ANTHROPIC_MODEL, settings.LLM_OPENAI_MODEL],
        temperature=1,
        context=f"agent-plan:{cache_key}",
    )
    decision = await services.llm.generate_object(
        agent_decision_messages(plan),
        AgentReplyDecision,
        models=settings.default_models,
        context=f"agent-decision:{cache_key}",
    )

    analysis = FarcasterAgentAnalysis(
        should_reply=decision.should_reply,
        proposed_reply=decision.proposed_reply,
        reason=decision.reason,
        confidence_score=decision.confidence_score,
        agent_fid=body.agent_fid,
        custom_instructions=body.custom_instructions,
        reply_to_cast_id=body.reply_to_cast_id,
        reply_to_hash=thread.cast.hash if thread else None,
        reply_to_fid=thread.cast.fid if thread else None,
    )
    await services.cache.set_cached_result(cache_key, FARCASTER_AGENT_ANALYSIS_PREFIX, analysis)
    context.log("Agent decision", should_reply=analysis.should_reply, key=cache_key)
    return {"jobId": context.id, **analysis.to_payload()}


def process_farcaster_agent_job(payload: dict[str, Any]) -> dict[str, Any]:
    """RQ entry point for the agent queue."""
    return run_job(FARCASTER_AGENT_QUEUE, handle_farcaster_agent, payload)
