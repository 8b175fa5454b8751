from __future__ import annotations
import uuid

import httpx
import pytest
import pytest_asyncio
from fastapi import status
from httpx import AsyncClient

from reelrank.jobs import recompute_leaderboard as recompute_jobs
from reelrank.main import app
from reelrank.routes.leaderboards import get_ranking_service
from reelrank.services.ranking import RankingService
from reelrank.services.ranking_cache import InMemoryRankingCache
from reelrank.services.recompute import RecomputeJob
from reelrank.services.submission_store import SubmissionStore


class SlowStore(SubmissionStore):
    async def query_ranked(self, *args, **kwargs):
        raise TimeoutError("statement timeout")


@pytest.fixture
def cache():
    return InMemoryRankingCache()


@pytest_asyncio.fixture
async def client(session, cache, now):
    app.dependency_overrides[get_ranking_service] = lambda: RankingService(cache, SubmissionStore(session), now=lambda: now)
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_challenge_leaderboard_page(client, cache, session, factory, now):
    ch = await factory.challenge()
    for up in (1, 4, 9):
        await factory.submission(ch, await factory.user(), up=up)
    await RecomputeJob(SubmissionStore(session), cache, now=lambda: now).run(ch.id)

    r = await client.get(f"/leaderboards/challenge/{ch.id}", params={"limit": 2})
    assert r.status_code == 200, r.text
    body = r.json()
    assert set(body) == {"data", "total", "page", "limit", "total_pages"}
    assert (body["total"], body["page"], body["limit"], body["total_pages"]) == (3, 1, 2, 2)
    assert [row["rank"] for row in body["data"]] == [1, 2]
    assert body["data"][0]["score"] >= body["data"][1]["score"]
    assert body["data"][0]["username"]


@pytest.mark.asyncio
async def test_bad_query_params_rejected(client):
    cid = uuid.uuid4()
    assert (await client.get(f"/leaderboards/challenge/{cid}", params={"period": "monthly"})).status_code == 422
    assert (await client.get(f"/leaderboards/challenge/{cid}", params={"limit": 101})).status_code == 422
    assert (await client.get(f"/leaderboards/challenge/{cid}", params={"page": 0})).status_code == 422
    assert (await client.get("/leaderboards/challenge/not-a-uuid")).status_code == 422


@pytest.mark.asyncio
async def test_viewer_routes_need_identity(client):
    cid = uuid.uuid4()
    for path in ("me", "friends", "best"):
        r = await client.get(f"/leaderboards/challenge/{cid}/{path}")
        assert r.status_code == status.HTTP_401_UNAUTHORIZED
    r = await client.get(f"/leaderboards/challenge/{cid}/me", headers={"X-User-Id": "nobody"})
    assert r.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_my_rank(client, factory):
    ch = await factory.challenge()
    me = await factory.user()
    await factory.submission(ch, await factory.user(), score=0.8)
    mine = await factory.submission(ch, me, score=0.5)
    hdrs = {"X-User-Id": str(me.id)}

    r = await client.get(f"/leaderboards/challenge/{ch.id}/me", headers=hdrs)
    assert r.status_code == 200, r.text
    assert r.json() == {"rank": 2, "score": 0.5, "total_participants": 2, "submission_id": str(mine.id)}

    outsider = {"X-User-Id": str(uuid.uuid4())}
    r = await client.get(f"/leaderboards/challenge/{ch.id}/me", headers=outsider)
    assert r.json()["rank"] is None
    assert r.json()["score"] == 0


@pytest.mark.asyncio
async def test_top_creators_route(client, factory):
    ch = await factory.challenge()
    alice = await factory.user("alice")
    await factory.submission(ch, alice, score=0.6)

    r = await client.get("/leaderboards/top-creators", params={"period": "weekly"})
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data[0]["username"] == "alice"
    assert data[0]["submission_count"] == 1


@pytest.mark.asyncio
async def test_queue_recompute(client, monkeypatch):
    queued = []

    def fake_enqueue(challenge_id, queue=None):
        queued.append(challenge_id)
        return "job-123"

    monkeypatch.setattr(recompute_jobs, "enqueue_recompute", fake_enqueue)
    cid = uuid.uuid4()

    r = await client.post(f"/leaderboards/challenge/{cid}/recompute")
    assert r.status_code == status.HTTP_202_ACCEPTED
    assert r.json() == {"challenge_id": str(cid), "job_id": "job-123", "status": "queued"}
    assert queued == [cid]


@pytest.mark.asyncio
async def test_store_timeout_is_retryable(session, now):
    app.dependency_overrides[get_ranking_service] = lambda: RankingService(InMemoryRankingCache(), SlowStore(session), now=lambda: now)
    try:
        async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            r = await ac.get(f"/leaderboards/challenge/{uuid.uuid4()}")
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 503
    assert r.headers["retry-after"] == "1"
