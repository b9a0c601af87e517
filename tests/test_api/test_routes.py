"""Tests for the job submission API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from castflow.api.routes import get_dedup, get_queues
from castflow.cache.hashing import DedupCache, compute_hash
from castflow.core.config import settings
from castflow.main import app
from castflow.queue.stages import (
    BUILDER_PROFILE_QUEUE,
    BULK_EMBEDDINGS_QUEUE,
    DELETION_QUEUE,
    EMBEDDINGS_QUEUE,
    IS_GRANT_UPDATE_QUEUE,
    STORY_QUEUE,
)
from tests.fixtures.fakes import FakeQueues, FakeRedis

HEADERS = {"x-api-key": "test-key"}
GRANT_JOB = {
    "type": "grant",
    "content": "Grant text",
    "groups": [],
    "users": [],
    "tags": [],
    "externalId": "grant-1",
}


@pytest.fixture
def dedup() -> DedupCache:
    return DedupCache(FakeRedis(), version=settings.EMBEDDING_CACHE_VERSION)  # type: ignore[arg-type]


@pytest.fixture
def queues() -> FakeQueues:
    return FakeQueues()


@pytest.fixture
def client(monkeypatch, dedup, queues):
    monkeypatch.setattr(settings, "API_KEY", "test-key")
    app.dependency_overrides[get_dedup] = lambda: dedup
    app.dependency_overrides[get_queues] = lambda: queues
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.parametrize("headers", [{}, {"x-api-key": "wrong"}])
def test_should_reject_missing_or_wrong_api_key(client, queues, headers):
    response = client.post("/add-job", json=GRANT_JOB, headers=headers)

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthorized"
    assert queues.enqueued == []


def test_should_reject_when_no_api_key_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", None)

    response = client.post("/add-job", json=GRANT_JOB, headers=HEADERS)

    assert response.status_code == 401


def test_should_enqueue_new_content(client, queues):
    response = client.post("/add-job", json=GRANT_JOB, headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "jobName": "embed-grant-grant-1",
        "jobId": "job-1",
        "contentHash": compute_hash("Grant text", "grant"),
    }
    [(stage, payload, job_name)] = queues.enqueued
    assert stage == EMBEDDINGS_QUEUE
    assert payload["externalId"] == "grant-1"
    assert job_name == "embed-grant-grant-1"


def test_should_return_existing_job_for_seen_content(client, dedup, queues):
    content_hash = compute_hash("Grant text", "grant")
    dedup.redis.data[dedup.key(content_hash)] = "job-9"

    response = client.post("/add-job", json=GRANT_JOB, headers=HEADERS)

    body = response.json()
    assert body["jobId"] == "job-9"
    assert body["message"] == "Job already exists"
    assert queues.enqueued == []


def test_should_return_validation_details(client):
    response = client.post(
        "/add-job", json={"type": "grant", "content": "x"}, headers=HEADERS
    )

    assert response.status_code == 400
    body = response.json()
    assert body["status_code"] == 400
    assert any(detail["loc"][-1] == "externalId" for detail in body["details"])


def test_should_require_group_user_and_tag_arrays(client, queues):
    job = {key: value for key, value in GRANT_JOB.items() if key != "tags"}

    response = client.post("/add-job", json=job, headers=HEADERS)

    assert response.status_code == 400
    assert any(detail["loc"][-1] == "tags" for detail in response.json()["details"])
    assert queues.enqueued == []


def test_should_echo_valid_request_id(client):
    request_id = str(uuid.uuid4())

    response = client.post(
        "/add-job", json=GRANT_JOB, headers={**HEADERS, "X-Request-ID": request_id}
    )

    assert response.headers["X-Request-ID"] == request_id


@pytest.mark.parametrize(
    "path,body,stage,job_name",
    [
        ("/bulk-add-job", {"jobs": [GRANT_JOB, GRANT_JOB]}, BULK_EMBEDDINGS_QUEUE, "bulk-embed-2"),
        (
            "/delete-embedding",
            {"contentHash": "abc", "type": "cast"},
            DELETION_QUEUE,
            "delete-cast-abc",
        ),
        (
            "/bulk-add-is-grants-update",
            {"jobs": [{"castHash": "0x1", "castContent": "shipped", "builderFid": 7}]},
            IS_GRANT_UPDATE_QUEUE,
            "is-grant-update-1",
        ),
        (
            "/bulk-add-builder-profile",
            {"jobs": [{"fid": 7}, {"fid": 8}, {"fid": 9}]},
            BUILDER_PROFILE_QUEUE,
            "builder-profile-3",
        ),
        ("/bulk-add-story", {"jobs": [{"newCastId": 1, "grantId": "g1"}]}, STORY_QUEUE, "story-1"),
    ],
)
def test_should_enqueue_bulk_routes(client, queues, path, body, stage, job_name):
    response = client.post(path, json=body, headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "jobName": job_name, "jobId": "job-1"}
    assert queues.enqueued[0][0] == stage


def test_should_reject_empty_bulk_jobs(client, queues):
    response = client.post("/bulk-add-story", json={"jobs": []}, headers=HEADERS)

    assert response.status_code == 400
    assert queues.enqueued == []
