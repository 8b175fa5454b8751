from __future__ import annotations
from datetime import timedelta

import pytest
from sqlalchemy import select

from reelrank.models.leaderboard import LeaderboardSnapshot
from reelrank.schemas.leaderboard import Period
from reelrank.services.ranking_cache import CacheUnavailable, InMemoryRankingCache, challenge_key
from reelrank.services.recompute import RecomputeJob, SubmissionNotFound
from reelrank.services.scoring import wilson_score
from reelrank.services.submission_store import SubmissionStore


class FlakyStore(SubmissionStore):
    """Fails the nth score write."""

    def __init__(self, session, fail_on: int):
        super().__init__(session)
        self.fail_on = fail_on
        self.writes = 0

    async def persist_score(self, submission_id, score):
        self.writes += 1
        if self.writes == self.fail_on:
            raise RuntimeError("db connection lost")
        await super().persist_score(submission_id, score)


class DownCache(InMemoryRankingCache):
    async def _replace(self, key, entries, ttl):
        raise CacheUnavailable("redis down")

    async def invalidate(self, key):
        raise CacheUnavailable("redis down")


async def _seed(factory, now):
    ch = await factory.challenge()
    a = await factory.user()
    b = await factory.user()
    subs = {
        "today": await factory.submission(ch, a, up=10, down=0),
        "week": await factory.submission(ch, b, up=8, down=2, super_votes=2, created_at=now - timedelta(days=2)),
        "old": await factory.submission(ch, a, up=3, down=3, created_at=now - timedelta(days=40)),
    }
    return ch, subs


@pytest.mark.asyncio
async def test_run_scores_persists_and_rebuilds_every_period(session, factory, now):
    ch, subs = await _seed(factory, now)
    cache = InMemoryRankingCache()

    result = await RecomputeJob(SubmissionStore(session), cache, now=lambda: now).run(ch.id)

    assert result.scored == 3
    assert result.cached_periods == ["daily", "weekly", "all_time"]
    assert result.cache_errors == []

    for s in subs.values():
        await session.refresh(s)
    assert subs["today"].score == wilson_score(10, 10, 0)
    assert subs["week"].score == wilson_score(8, 10, 2)
    assert subs["old"].score == wilson_score(3, 6, 0)

    all_time = await cache.range(challenge_key(ch.id, Period.ALL_TIME), 0, -1)
    assert [r.member for r in all_time] == [str(subs["today"].id), str(subs["week"].id), str(subs["old"].id)]
    weekly = await cache.range(challenge_key(ch.id, Period.WEEKLY), 0, -1)
    assert [r.member for r in weekly] == [str(subs["today"].id), str(subs["week"].id)]
    daily = await cache.range(challenge_key(ch.id, Period.DAILY), 0, -1)
    assert [r.member for r in daily] == [str(subs["today"].id)]


@pytest.mark.asyncio
async def test_run_writes_one_all_time_snapshot(session, factory, now):
    ch, subs = await _seed(factory, now)
    result = await RecomputeJob(SubmissionStore(session), InMemoryRankingCache(), now=lambda: now).run(ch.id)

    snaps = (await session.execute(select(LeaderboardSnapshot))).scalars().all()
    assert len(snaps) == 1
    snap = snaps[0]
    assert snap.id == result.snapshot_id
    assert snap.period == "all_time"
    assert [e["rank"] for e in snap.entries] == [1, 2, 3]
    assert snap.entries[0]["submission_id"] == str(subs["today"].id)
    assert snap.entries[0]["score"] == wilson_score(10, 10, 0)


@pytest.mark.asyncio
async def test_rerun_with_unchanged_votes_is_identical(session, factory, now):
    ch, subs = await _seed(factory, now)
    cache = InMemoryRankingCache()
    job = RecomputeJob(SubmissionStore(session), cache, now=lambda: now)

    await job.run(ch.id)
    first = {p: await cache.range(challenge_key(ch.id, p), 0, -1) for p in Period}
    for s in subs.values():
        await session.refresh(s)
    scores = {k: s.score for k, s in subs.items()}

    await job.run(ch.id)
    second = {p: await cache.range(challenge_key(ch.id, p), 0, -1) for p in Period}
    for s in subs.values():
        await session.refresh(s)

    assert first == second
    assert {k: s.score for k, s in subs.items()} == scores


@pytest.mark.asyncio
async def test_persist_failure_aborts_before_cache_and_snapshot(session, factory, now):
    ch, _subs = await _seed(factory, now)
    cache = InMemoryRankingCache()
    key = challenge_key(ch.id, Period.ALL_TIME)
    await cache.replace_all(key, [("previous", 0.5)], ttl=60)

    with pytest.raises(RuntimeError):
        await RecomputeJob(FlakyStore(session, fail_on=2), cache, now=lambda: now).run(ch.id)

    # previous generation untouched, nothing published
    assert [r.member for r in await cache.range(key, 0, -1)] == ["previous"]
    assert not await cache.exists(challenge_key(ch.id, Period.DAILY))
    await session.rollback()
    snaps = (await session.execute(select(LeaderboardSnapshot))).scalars().all()
    assert snaps == []


@pytest.mark.asyncio
async def test_empty_challenge_keeps_previous_cache(session, factory, now):
    ch = await factory.challenge()
    cache = InMemoryRankingCache()
    key = challenge_key(ch.id, Period.ALL_TIME)
    await cache.replace_all(key, [(f"s{i}", i / 10) for i in range(5)], ttl=60)

    result = await RecomputeJob(SubmissionStore(session), cache, now=lambda: now).run(ch.id)

    assert result.scored == 0
    assert result.cached_periods == []
    assert await cache.count(key) == 5


@pytest.mark.asyncio
async def test_period_with_no_members_drops_stale_key(session, factory, now):
    ch = await factory.challenge()
    await factory.submission(ch, await factory.user(), up=2, created_at=now - timedelta(days=40))
    cache = InMemoryRankingCache()
    daily = challenge_key(ch.id, Period.DAILY)
    await cache.replace_all(daily, [("yesterday", 0.9)], ttl=3600)

    result = await RecomputeJob(SubmissionStore(session), cache, now=lambda: now).run(ch.id)

    assert result.cached_periods == ["all_time"]
    assert not await cache.exists(daily)


@pytest.mark.asyncio
async def test_cache_outage_during_rebuild_still_snapshots(session, factory, now):
    ch, _subs = await _seed(factory, now)

    result = await RecomputeJob(SubmissionStore(session), DownCache(), now=lambda: now).run(ch.id)

    assert result.scored == 3
    assert result.cache_errors == ["daily", "weekly", "all_time"]
    assert result.snapshot_id is not None


@pytest.mark.asyncio
async def test_rescore_single_submission(session, factory, now):
    ch = await factory.challenge()
    sub = await factory.submission(ch, await factory.user(), up=4, down=1, super_votes=1)
    job = RecomputeJob(SubmissionStore(session), InMemoryRankingCache(), now=lambda: now)

    score = await job.rescore_submission(sub.id)

    assert score == wilson_score(4, 5, 1)
    await session.refresh(sub)
    assert sub.score == score


@pytest.mark.asyncio
async def test_rescore_unknown_or_ineligible_submission(session, factory, now):
    ch = await factory.challenge()
    hidden = await factory.submission(ch, await factory.user(), up=1, moderation_status="rejected")
    job = RecomputeJob(SubmissionStore(session), InMemoryRankingCache(), now=lambda: now)

    with pytest.raises(SubmissionNotFound):
        await job.rescore_submission(hidden.id)
