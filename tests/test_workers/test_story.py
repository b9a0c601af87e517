"""Tests for the story stage."""

import json
from datetime import datetime, timezone

import pytest

from castflow.cache.keys import STORY_LOCK_PREFIX
from castflow.core.errors import MissingDataError
from castflow.models.domain import CastForStory, Grant, Profile
from castflow.queue.stages import BULK_EMBEDDINGS_QUEUE, FARCASTER_AGENT_QUEUE
from castflow.workers.story import handle_story

CAST_HASH = "0x" + "ab" * 20
IMAGE = "https://i.imgur.com/launch.png"
PAYLOAD = {"jobs": [{"newCastId": 11, "grantId": "g1"}]}


def story_drafts(completeness: float = 0.9, info_needed: str | None = None):
    return {
        "stories": [
            {
                "title": "Onboarding shipped",
                "summary": "**Rocket** shipped onboarding",
                "keyPoints": ["shipped onboarding"],
                "participants": ["@rocket"],
                "tagline": "New users",
                "timeline": [{"timestamp": "2024-06-01", "event": "shipped"}],
                "castHashes": [CAST_HASH],
                "sentiment": "positive",
                "completeness": completeness,
                "complete": completeness >= 0.8,
                "sources": [f"https://warpcast.com/rocket/{CAST_HASH}"],
                "createdAt": "2024-06-01T00:00:00Z",
                "infoNeededToComplete": info_needed,
            }
        ]
    }


@pytest.fixture
def grant_store(store, describer):
    store.grants["g1"] = Grant(id="g1", title="Onboarding", parent_contract="flow1")
    store.grants["flow1"] = Grant(id="flow1", title="Builders flow", is_flow=True)
    store.profiles[7] = Profile(fid=7, fname="rocket", verified_addresses=["0xBuilder"])
    store.grant_casts["g1"] = [
        CastForStory(
            id=11,
            hash=CAST_HASH,
            fid=7,
            text="shipped onboarding",
            timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc),
            author_fname="rocket",
            embeds=json.dumps([{"url": IMAGE}]),
        )
    ]
    describer.descriptions[IMAGE] = "a launch photo"
    return store


@pytest.mark.asyncio
async def test_should_build_store_and_embed_stories(services, grant_store, generator, job_context):
    generator.queue("A narrative about onboarding", story_drafts())

    result = await handle_story(PAYLOAD, services, job_context)

    assert result == {"jobId": None, "stories": 1, "agentJobs": 0}
    [story] = grant_store.stories.values()
    assert story.header_image == IMAGE
    assert story.media_urls == [IMAGE]
    assert story.participants == ["0xbuilder"]
    assert story.complete is True
    assert story.author == "0xagent"
    assert story.grant_ids == ["g1"] and story.parent_flow_ids == ["flow1"]
    assert grant_store.story_links == [(CAST_HASH, story.id)]

    [bulk] = services.queues.payloads(BULK_EMBEDDINGS_QUEUE)
    [embedding_job] = bulk["jobs"]
    assert embedding_job["type"] == "story"
    assert embedding_job["content"] == "Rocket shipped onboarding"
    assert embedding_job["externalId"] == story.id
    assert embedding_job["externalUrl"] == f"https://flows.wtf/story/{story.id}"
    assert embedding_job["groups"] == ["g1", "flow1"]


@pytest.mark.asyncio
async def test_should_ask_for_missing_information(services, grant_store, generator, job_context):
    generator.queue("narrative", story_drafts(completeness=0.5, info_needed="Usage numbers"))

    result = await handle_story(PAYLOAD, services, job_context)

    assert result["agentJobs"] == 1
    [agent_job] = services.queues.payloads(FARCASTER_AGENT_QUEUE)
    assert agent_job["replyToCastId"] == 11
    assert "Usage numbers" in agent_job["customInstructions"]
    assert agent_job["urlsToInclude"][0].startswith("https://flows.wtf/story/")


@pytest.mark.asyncio
async def test_should_skip_locked_grant(services, grant_store, generator, job_context):
    await services.locks.acquire(STORY_LOCK_PREFIX, "g1")

    result = await handle_story(PAYLOAD, services, job_context)

    assert result["stories"] == 0
    assert generator.calls == []
    assert grant_store.stories == {}


@pytest.mark.asyncio
async def test_should_skip_grant_without_new_casts(services, store, generator, job_context):
    result = await handle_story(PAYLOAD, services, job_context)

    assert result["stories"] == 0
    assert services.queues.enqueued == []


@pytest.mark.asyncio
async def test_should_fail_and_release_lock_when_parent_missing(
    services, grant_store, fake_redis, job_context
):
    del grant_store.grants["flow1"]

    with pytest.raises(MissingDataError):
        await handle_story(PAYLOAD, services, job_context)

    assert f"{STORY_LOCK_PREFIX}g1" not in fake_redis.data
