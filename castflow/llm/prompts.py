"""Prompt text for every model call in the pipeline."""

from datetime import datetime

from castflow.llm.providers.types import Message
from castflow.models.domain import Grant, Story

IMAGE_DESCRIPTION_PROMPT = (
    "Describe this image in detail. Mention any people, objects, text, logos "
    "and the setting. If the image shows work being done (building, events, "
    "products, code, charts), explain what is happening. If you cannot access "
    "the image, say that you cannot access it."
)

VIDEO_DESCRIPTION_PROMPT = (
    "Describe this video in detail. Summarize what happens, who appears, any "
    "spoken or written text, and what work or impact it shows. If you cannot "
    "access the video, say that you cannot access it."
)

YOUTUBE_DESCRIPTION_PROMPT = (
    "Summarize this YouTube video. Explain what it is about, who is speaking, "
    "and any concrete outcomes, products or events it shows. If you cannot "
    "access the video, say that you cannot access it."
)

CANNOT_ACCESS_PHRASES = ("cannot access", "can't access", "unable to access")

GRANT_UPDATE_PROMPT_VERSION = "1.1"


def _grants_text(grants: list[Grant]) -> str:
    return "\n".join(
        f"GRANT_ID: {grant.id}\nTITLE: {grant.title}\nDESCRIPTION: {grant.description}\n---"
        for grant in grants
    )


def grant_update_analysis_messages(
    cast_content: str,
    summaries: list[str],
    grants: list[Grant],
    builder_profile: str | None,
) -> list[Message]:
    """Messages asking for a reasoned analysis of a possible grant update."""
    attachments = "\n".join(summaries) if summaries else "None"
    return [
        {
            "role": "system",
            "content": (
                "You review posts from builders who receive grants. Decide whether "
                "a post is an update on work funded by one of their grants. An update "
                "shows progress, shipped work, events, results or other concrete "
                "impact. Announcements of intent, memes and unrelated chatter are not "
                "updates. Think step by step inside <detailed_analysis> tags, then "
                "name the grant the update belongs to, if any.\n\n"
                f"The builder's grants:\n{_grants_text(grants)}\n\n"
                f"What we know about the builder:\n{builder_profile or 'Nothing yet.'}"
            ),
        },
        {
            "role": "user",
            "content": f"POST CONTENT: {cast_content}\nATTACHMENTS: {attachments}",
        },
        {"role": "assistant", "content": "<detailed_analysis>"},
    ]


def grant_update_classification_messages(
    analysis: str, grants: list[Grant]
) -> list[Message]:
    grant_ids = ", ".join(grant.id for grant in grants)
    return [
        {
            "role": "system",
            "content": (
                "Turn the analysis into a structured verdict. The grantId must be one "
                f"of: {grant_ids}. Return an empty grantId if the post is not a grant "
                "update. Set shouldRequestMoreInfo when the post looks like progress "
                "but lacks the detail needed to be sure."
            ),
        },
        {"role": "user", "content": analysis},
    ]


def _stories_text(stories: list[Story]) -> str:
    if not stories:
        return "None"
    return "\n".join(
        f"STORY_ID: {story.id}\nTITLE: {story.title}\nTAGLINE: {story.tagline}\n"
        f"SUMMARY: {story.summary}\nSOURCES: {', '.join(story.sources)}\n---"
        for story in stories
    )


def story_generation_messages(
    cast_data: str,
    existing_stories: list[Story],
    grant: Grant,
    parent_grant: Grant,
    agent_address: str,
) -> list[Message]:
    """Messages asking for narrative drafts from a grant's update casts."""
    return [
        {
            "role": "system",
            "content": (
                "You are a journalist writing short stories about the impact of "
                "builders funded by a grant. Group related posts into stories, keep "
                "every claim grounded in the posts, and note what information is "
                "missing to complete each story. Update an existing story instead of "
                "repeating it when new posts extend it. Plan inside <story_planning> "
                f"tags first. Your address as an author is {agent_address}.\n\n"
                f"GRANT: {grant.title}\n{grant.description}\n\n"
                f"FLOW: {parent_grant.title}\n{parent_grant.description}\n\n"
                f"EXISTING STORIES:\n{_stories_text(existing_stories)}"
            ),
        },
        {"role": "user", "content": cast_data},
        {"role": "assistant", "content": "<story_planning>"},
    ]


def story_object_messages(story_text: str) -> list[Message]:
    return [
        {
            "role": "system",
            "content": (
                "Convert the planned stories into structured story objects. Use the "
                "text as written; do not summarize it again. Fill every field, "
                "including castHashes, sources, mintUrls and infoNeededToComplete. "
                "Set storyId only when the story updates an existing one."
            ),
        },
        {"role": "user", "content": story_text},
    ]


def story_edits_messages(existing: Story, title: str, summary: str, address: str) -> list[Message]:
    return [
        {
            "role": "system",
            "content": (
                "List the edits that turn the old version of a story into the new "
                "one. Each edit has an ISO timestamp, a short message describing the "
                f"change and the editor address {address}."
            ),
        },
        {
            "role": "user",
            "content": (
                f"OLD TITLE: {existing.title}\nOLD SUMMARY: {existing.summary}\n\n"
                f"NEW TITLE: {title}\nNEW SUMMARY: {summary}\n\n"
                f"NOW: {datetime.utcnow().isoformat()}"
            ),
        },
    ]


def header_image_messages(title: str, summary: str, candidates: list[str]) -> list[Message]:
    return [
        {
            "role": "system",
            "content": (
                "Pick the best header image for a story. Prefer clear photos of the "
                "work or event over logos, screenshots and text. Return one of the "
                "candidate urls exactly as given."
            ),
        },
        {
            "role": "user",
            "content": (
                f"TITLE: {title}\nSUMMARY: {summary}\n\nCANDIDATES:\n"
                + "\n".join(candidates)
            ),
        },
    ]


def builder_chunk_messages(casts_text: str) -> list[Message]:
    return [
        {
            "role": "system",
            "content": (
                "Build a profile of a builder from their posts. Describe what they "
                "work on, the projects and communities they are part of, their skills, "
                "shipped work and recurring interests. Cite concrete dates and "
                "projects. Write in plain prose."
            ),
        },
        {"role": "user", "content": casts_text},
    ]


def builder_summary_messages(analyses: list[str]) -> list[Message]:
    sections = "\n\n".join(
        f"ANALYSIS {index + 1} (newest first):\n{analysis}"
        for index, analysis in enumerate(analyses)
    )
    return [
        {
            "role": "system",
            "content": (
                "Merge these partial builder profiles into one. Give more weight to "
                "the newer analyses when they conflict and keep every concrete "
                "project, date and result."
            ),
        },
        {"role": "user", "content": sections},
    ]


def agent_reply_messages(
    custom_instructions: str,
    agent_profile: str,
    context: str,
    builder_profile: str | None,
    grants: list[Grant],
    urls_to_include: list[str],
) -> list[Message]:
    urls = ", ".join(urls_to_include) if urls_to_include else "None"
    return [
        {
            "role": "system",
            "content": (
                f"You are {agent_profile}, an agent posting on Farcaster.\n"
                f"INSTRUCTIONS: {custom_instructions}\n\n"
                f"BUILDER PROFILE: {builder_profile or 'None'}\n\n"
                f"BUILDER GRANTS:\n{_grants_text(grants) or 'None'}\n\n"
                f"URLS TO INCLUDE: {urls}\n\n"
                "Plan the reply inside <story_planning> tags, then write it. Keep it "
                "short, specific and friendly. Decide not to reply when there is "
                "nothing useful to say."
            ),
        },
        {"role": "user", "content": context},
        {"role": "assistant", "content": "<story_planning>"},
    ]


def agent_decision_messages(plan: str) -> list[Message]:
    return [
        {
            "role": "system",
            "content": (
                "Turn the plan into a decision. proposedReply must be the final text "
                "to post, without planning notes, or empty if the agent should not "
                "reply."
            ),
        },
        {"role": "user", "content": plan},
    ]
