"""Tests for grant update classification and the story hand-off."""

from datetime import datetime, timezone

import pytest

from castflow.cache.keys import CAST_ANALYSIS_PREFIX
from castflow.core.errors import DataIntegrityError, MissingDataError
from castflow.models.analysis import CastAnalysis, GrantUpdateClassification
from castflow.models.domain import Cast, Grant, Profile
from castflow.models.jobs import IsGrantUpdateJobBody
from castflow.queue.stages import FARCASTER_AGENT_QUEUE, STORY_QUEUE
from castflow.workers.cast_analysis import analyze_cast, validate_grant_id
from castflow.workers.grant_update import FLOWS_TAG, handle_grant_update
from tests.fixtures.fakes import FakeDataStore, FakeRedis, ScriptedGenerator
from tests.fixtures.services import build_services

CAST_HASH = "0x" + "12" * 20
CAST_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


def verdict(**overrides):
    data = {
        "isGrantUpdate": True,
        "reason": "Shipped the onboarding flow",
        "confidenceScore": 0.9,
        "grantId": "g1",
    }
    data.update(overrides)
    return data


@pytest.fixture
def builder_store(store: FakeDataStore) -> FakeDataStore:
    store.profiles[7] = Profile(fid=7, fname="rocket", verified_addresses=["0xBuilder"])
    store.grants["g1"] = Grant(id="g1", title="Onboarding", recipient="0xbuilder")
    store.add_cast(
        Cast(id=11, hash=CAST_HASH, fid=7, text="shipped onboarding", timestamp=CAST_TIME)
    )
    return store


def job_payload(**overrides):
    item = {"castHash": CAST_HASH, "castContent": "shipped onboarding", "builderFid": 7}
    item.update(overrides)
    return {"jobs": [item]}


@pytest.mark.parametrize(
    "grant_id,is_update",
    [("unknown", True), ("unknown", False), ("", True)],
)
def test_validate_grant_id_rejects(grant_id, is_update):
    classification = GrantUpdateClassification(
        is_grant_update=is_update, reason="r", confidence_score=0.5, grant_id=grant_id
    )

    with pytest.raises(DataIntegrityError):
        validate_grant_id(classification, [Grant(id="g1")])


@pytest.mark.parametrize("grant_id,is_update", [("g1", True), ("", False)])
def test_validate_grant_id_accepts(grant_id, is_update):
    classification = GrantUpdateClassification(
        is_grant_update=is_update, reason="r", confidence_score=0.5, grant_id=grant_id
    )

    validate_grant_id(classification, [Grant(id="g1")])


@pytest.mark.asyncio
async def test_should_tag_update_and_queue_story_job(
    services, builder_store, generator, job_context
):
    generator.queue("The cast reports shipped work.", verdict())

    result = await handle_grant_update(job_payload(), services, job_context)

    assert result["storyJobs"] == 1
    assert result["results"][0]["isGrantUpdate"] is True
    cast = builder_store.casts[CAST_HASH[2:]]
    assert cast.computed_tags == ["g1", FLOWS_TAG]
    assert builder_store.last_builder_update["g1"] == CAST_TIME
    assert services.queues.payloads(STORY_QUEUE) == [
        {"jobs": [{"newCastId": 11, "grantId": "g1"}]}
    ]


@pytest.mark.asyncio
async def test_should_record_impact_verification(services, builder_store, generator, job_context):
    generator.queue("analysis", verdict())

    await handle_grant_update(job_payload(), services, job_context)

    [verification] = builder_store.casts[CAST_HASH[2:]].impact_verifications
    assert verification.model == services.settings.default_models[0]
    assert verification.grant_id == "g1"
    assert verification.score == 0.9
    assert verification.prompt_version == "1.1"


@pytest.mark.asyncio
async def test_should_not_queue_story_for_non_updates(
    services, builder_store, generator, job_context
):
    generator.queue("analysis", verdict(isGrantUpdate=False, grantId=""))

    result = await handle_grant_update(job_payload(), services, job_context)

    assert result["storyJobs"] == 0
    assert services.queues.enqueued == []
    assert builder_store.casts[CAST_HASH[2:]].computed_tags == []


@pytest.mark.asyncio
async def test_should_reuse_cached_analysis(services, builder_store, generator, job_context):
    cached = CastAnalysis(
        cast_hash=CAST_HASH,
        grant_id="g1",
        is_grant_update=True,
        reason="cached",
        confidence_score=0.8,
    )
    await services.cache.set_cached_result(CAST_HASH, CAST_ANALYSIS_PREFIX, cached)
    item = IsGrantUpdateJobBody.model_validate(job_payload()["jobs"][0])

    analysis = await analyze_cast(services, item, [builder_store.grants["g1"]], job_context)

    assert analysis == cached
    assert generator.calls == []


@pytest.mark.asyncio
async def test_should_cache_fresh_analysis(services, builder_store, generator, fake_redis, job_context):
    generator.queue("analysis", verdict())
    item = IsGrantUpdateJobBody.model_validate(job_payload()["jobs"][0])

    await analyze_cast(services, item, [builder_store.grants["g1"]], job_context)

    assert f"{CAST_ANALYSIS_PREFIX}{CAST_HASH}" in fake_redis.data
    assert [call["kind"] for call in generator.calls] == ["text", "object"]


@pytest.mark.asyncio
async def test_should_request_more_info_when_enabled(builder_store, job_context):
    generator = ScriptedGenerator(
        "analysis",
        verdict(isGrantUpdate=False, grantId="", shouldRequestMoreInfo=True),
    )
    services = build_services(
        FakeRedis(), builder_store, generator, REQUEST_MORE_INFO_ENABLED=True
    )

    await handle_grant_update(job_payload(), services, job_context)

    [agent_job] = services.queues.payloads(FARCASTER_AGENT_QUEUE)
    assert agent_job["replyToCastId"] == 11
    assert agent_job["agentFid"] == services.settings.AGENT_FID
    assert services.queues.payloads(STORY_QUEUE) == []


@pytest.mark.asyncio
async def test_should_fail_without_verified_addresses(services, store, job_context):
    store.profiles[7] = Profile(fid=7, verified_addresses=[])

    with pytest.raises(MissingDataError):
        await handle_grant_update(job_payload(), services, job_context)


@pytest.mark.asyncio
async def test_should_fail_when_builder_has_no_grants(services, store, job_context):
    store.profiles[7] = Profile(fid=7, verified_addresses=["0xnobody"])

    with pytest.raises(MissingDataError):
        await handle_grant_update(job_payload(), services, job_context)


@pytest.mark.asyncio
async def test_should_reject_misattributed_grant(services, builder_store, generator, job_context):
    generator.queue("analysis", verdict(grantId="someone-else"))

    with pytest.raises(DataIntegrityError):
        await handle_grant_update(job_payload(), services, job_context)
