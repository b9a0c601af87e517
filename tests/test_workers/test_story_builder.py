"""Tests for story generation helpers."""

import json
from datetime import datetime, timezone

import pytest

from castflow.models.analysis import StoryAnalysis, StoryDraft
from castflow.models.domain import CastForStory, Grant, Profile, Story, StoryEdit
from castflow.workers.story_builder import (
    StoryCandidate,
    build_participants_map,
    filter_relevant_casts,
    get_header_image,
    get_media_urls,
    prepare_stories_for_insertion,
    process_stories,
    relevant_stories,
)
from tests.fixtures.fakes import FakeDataStore

H1, H2, H3, H4 = ("0x" + c * 40 for c in "abcd")
STAMP = datetime(2024, 6, 1, tzinfo=timezone.utc)
STREAM = "https://stream.warpcast.com/v1/video/abc.m3u8"


def cast_for_story(cast_hash: str, story_ids=(), urls=()) -> CastForStory:
    return CastForStory(
        id=int(cast_hash[2], 16),
        hash=cast_hash,
        fid=7,
        text="update",
        timestamp=STAMP,
        story_ids=list(story_ids),
        embeds=json.dumps([{"url": url} for url in urls]),
    )


def draft(**overrides):
    data = {
        "title": "Onboarding shipped",
        "summary": "Rocket shipped onboarding",
        "keyPoints": ["shipped"],
        "participants": ["rocket"],
        "tagline": "New users",
        "timeline": [],
        "castHashes": [H1],
        "sentiment": "positive",
        "completeness": 0.9,
        "complete": True,
        "sources": [],
        "createdAt": "2024-06-01T00:00:00Z",
    }
    data.update(overrides)
    return data


def test_filter_relevant_casts():
    stories = [
        Story(
            id="s1",
            title="Existing",
            sources=[f"https://warpcast.com/rocket/{H2}"],
            cast_hashes=[H3.upper()],
        )
    ]
    casts = [
        cast_for_story(H1),
        cast_for_story(H1, story_ids=["s1"]),
        cast_for_story(H2, story_ids=["deleted"]),
        cast_for_story(H3, story_ids=["deleted"]),
        cast_for_story(H4, story_ids=["deleted"]),
    ]

    kept = filter_relevant_casts(casts, stories)

    assert [(c.hash, c.story_ids) for c in kept] == [(H1, []), (H4, ["deleted"])]


def test_relevant_stories_excludes_full_stories():
    open_story = Story(id="a", title="a", sources=["x"] * 4)
    full_story = Story(id="b", title="b", sources=["x"] * 5)

    assert relevant_stories([open_story, full_story]) == [open_story]


def test_prepare_stories_for_insertion():
    analysis = StoryAnalysis(
        title="Onboarding",
        tagline="New users",
        summary="s",
        participants=["0xabc", "0xabc"],
        sources=["u", "u"],
        cast_hashes=[H1.upper(), H1[2:], "0xshort"],
        author="0xAGENT",
        created_at="2024-06-01T00:00:00Z",
    )
    grant = Grant(id="g1")
    parent = Grant(id="flow1")

    [story] = prepare_stories_for_insertion([analysis], grant, parent)

    assert story.id
    assert story.cast_hashes == [H1]
    assert story.participants == ["0xabc"]
    assert story.sources == ["u"]
    assert story.author == "0xagent"
    assert story.header_image is None
    assert story.grant_ids == ["g1"]
    assert story.parent_flow_ids == ["flow1"]
    assert story.created_at == STAMP


def test_prepare_stories_keeps_existing_ids():
    analysis = StoryAnalysis(id="s1", title="t", tagline="", summary="", created_at="soon")

    [story] = prepare_stories_for_insertion([analysis], Grant(id="g"), Grant(id="p"))

    assert story.id == "s1"
    assert story.created_at is None


@pytest.mark.asyncio
async def test_process_stories_matches_existing_and_appends_edits(services, generator):
    previous_edit = StoryEdit(timestamp="2024-05-01", message="created", address="0xagent")
    existing = Story(
        id="s1",
        title="Onboarding shipped",
        tagline="New users",
        header_image="https://i.imgur.com/h.png",
        edits=[previous_edit],
    )
    generator.queue(
        {"edits": [{"timestamp": "2024-06-01", "message": "added launch", "address": "0xagent"}]}
    )

    drafts = [
        StoryDraft.model_validate(draft()),
        StoryDraft.model_validate(draft(title="Something new")),
    ]

    matched, fresh = await process_stories(services, drafts, [existing])

    assert matched.existing is existing
    assert matched.analysis.id == "s1"
    assert matched.analysis.header_image == "https://i.imgur.com/h.png"
    assert [edit.message for edit in matched.analysis.edits] == ["created", "added launch"]
    assert fresh.existing is None
    assert fresh.analysis.id == ""
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_build_participants_map_prefers_grant_recipients(services, store: FakeDataStore):
    store.profiles[7] = Profile(fid=7, fname="Rocket", verified_addresses=["0xA1", "0xB2"])
    store.profiles[8] = Profile(fid=8, fname="nobody", verified_addresses=[])
    store.profiles[9] = Profile(fid=9, fname="wallet", verified_addresses=["0xC3"])
    store.grants["g1"] = Grant(id="g1", recipient="0xb2")

    mapping = await build_participants_map(services, ["@rocket", "nobody", "0xC3", "0xD4"])

    assert mapping == {"rocket": "0xb2", "0xc3": "0xc3"}


@pytest.mark.asyncio
async def test_get_media_urls_orders_streams_then_longest_descriptions(services, describer):
    describer.descriptions.update(
        {
            "https://i.imgur.com/a.png": "short",
            "https://i.imgur.com/b.png": "a much longer description",
        }
    )
    cast = cast_for_story(
        H1,
        urls=[
            "https://i.imgur.com/a.png",
            "https://i.imgur.com/b.png",
            "https://i.imgur.com/c.png",
            STREAM,
            f"https://warpcast.com/rocket/{H2}",
            "https://youtu.be/abc",
        ],
    )
    candidate = StoryCandidate(
        analysis=StoryAnalysis(title="t", tagline="", summary="", cast_hashes=[H1])
    )

    media = await get_media_urls(services, candidate, [cast])

    assert media == [STREAM, "https://i.imgur.com/b.png", "https://i.imgur.com/a.png"]
    assert "https://youtu.be/abc" not in describer.requested


@pytest.mark.asyncio
async def test_get_header_image_keeps_existing(services, generator):
    candidate = StoryCandidate(
        analysis=StoryAnalysis(title="t", tagline="", summary="", header_image="https://h.png")
    )

    assert await get_header_image(services, candidate, [], []) == "https://h.png"
    assert generator.calls == []


@pytest.mark.asyncio
async def test_get_header_image_single_candidate_skips_model(services, generator):
    cast = cast_for_story(H1, urls=["https://i.imgur.com/a.png", STREAM])
    candidate = StoryCandidate(
        analysis=StoryAnalysis(title="t", tagline="", summary="", cast_hashes=[H1])
    )

    assert await get_header_image(services, candidate, [cast], []) == "https://i.imgur.com/a.png"
    assert generator.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "choice,expected",
    [
        ("https://i.imgur.com/b.png", "https://i.imgur.com/b.png"),
        ("https://invented.example/x.png", "https://i.imgur.com/a.png"),
    ],
)
async def test_get_header_image_uses_model_choice(services, generator, choice, expected):
    generator.queue({"bestImageUrl": choice, "reason": "clear"})
    cast = cast_for_story(H1, urls=["https://i.imgur.com/a.png", "https://i.imgur.com/b.png"])
    candidate = StoryCandidate(
        analysis=StoryAnalysis(title="t", tagline="", summary="", cast_hashes=[H1])
    )

    assert await get_header_image(services, candidate, [cast], []) == expected
    assert generator.calls[0]["model"] == services.settings.default_models[0]
