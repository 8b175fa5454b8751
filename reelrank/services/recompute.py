from __future__ import annotations
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_tz
from typing import Callable

import structlog

from reelrank.schemas.leaderboard import Period
from reelrank.services.ranking_cache import CacheUnavailable, RankingCache, challenge_key, ttl_for
from reelrank.services.scoring import wilson_score
from reelrank.services.submission_store import SubmissionStore, VoteAggregate
from reelrank.services.time_windows import in_period

log = structlog.get_logger()


class SubmissionNotFound(LookupError):
    pass


@dataclass
class RecomputeResult:
    challenge_id: str
    scored: int = 0
    cached_periods: list[str] = field(default_factory=list)
    cache_errors: list[str] = field(default_factory=list)
    snapshot_id: uuid.UUID | None = None
    duration_ms: int = 0


def _rank_order(item: tuple[VoteAggregate, float]):
    agg, score = item
    # Same order as the store's fallback query: score desc, oldest first, id
    created = agg.created_at if agg.created_at.tzinfo else agg.created_at.replace(tzinfo=dt_tz.utc)
    return (-score, created, agg.submission_id.hex)


class RecomputeJob:
    """
    Single writer of ranking state for a challenge.

    1. read vote aggregates for eligible submissions
    2. score and persist each one (failure aborts here; no rollback of scores
       already written, re-running is safe)
    3. rebuild one cache key per period, each atomically
    4. write an all_time snapshot

    Runs for the same challenge must not overlap; the worker holds a
    per-challenge lock around `run`.
    """

    def __init__(
        self,
        store: SubmissionStore,
        cache: RankingCache,
        now: Callable[[], datetime] | None = None,
        scorer: Callable[[int, int, int], float] = wilson_score,
    ):
        self.store = store
        self.cache = cache
        self.scorer = scorer
        self._now = now or (lambda: datetime.now(dt_tz.utc))

    async def run(self, challenge_id) -> RecomputeResult:
        cid = str(challenge_id)
        started = time.perf_counter()
        result = RecomputeResult(challenge_id=cid)
        log.info("leaderboard.recompute.started", challenge_id=cid)

        aggregates = await self.store.aggregate_votes(cid)
        scored: list[tuple[VoteAggregate, float]] = []
        try:
            for agg in aggregates:
                score = self.scorer(agg.upvotes, agg.total_votes, agg.super_votes)
                await self.store.persist_score(agg.submission_id, score)
                scored.append((agg, score))
        except Exception:
            log.error("leaderboard.recompute.aborted", challenge_id=cid, scored=len(scored), total=len(aggregates))
            raise
        result.scored = len(scored)
        scored.sort(key=_rank_order)

        now = self._now()
        for period in Period:
            key = challenge_key(cid, period)
            entries = [(str(agg.submission_id), score) for agg, score in scored if in_period(agg.created_at, period, now)]
            try:
                if entries:
                    await self.cache.replace_all(key, entries, ttl_for(period))
                    result.cached_periods.append(period.value)
                elif scored:
                    # Nothing falls inside this window any more; the previous
                    # generation would list submissions from an earlier window.
                    await self.cache.invalidate(key)
            except CacheUnavailable as exc:
                # Reads fall back to the store until the next successful run
                result.cache_errors.append(period.value)
                log.warning("leaderboard.recompute.cache_failed", challenge_id=cid, period=period.value, error=str(exc))

        snapshot = await self.store.save_snapshot(
            cid,
            Period.ALL_TIME,
            [
                {"rank": i + 1, "submission_id": str(agg.submission_id), "user_id": str(agg.owner_id), "score": score}
                for i, (agg, score) in enumerate(scored)
            ],
        )
        result.snapshot_id = snapshot.id
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        log.info(
            "leaderboard.recompute.completed",
            challenge_id=cid,
            scored=result.scored,
            cached_periods=result.cached_periods,
            cache_errors=result.cache_errors,
            duration_ms=result.duration_ms,
        )
        return result

    async def rescore_submission(self, submission_id) -> float:
        """Recalculate and persist one submission's score. The cache is left to the next full run."""
        agg = await self.store.aggregate_votes_for_submission(submission_id)
        if agg is None:
            raise SubmissionNotFound(f"eligible submission {submission_id} not found")
        score = self.scorer(agg.upvotes, agg.total_votes, agg.super_votes)
        await self.store.persist_score(agg.submission_id, score)
        log.debug(
            "leaderboard.submission.rescored",
            submission_id=str(agg.submission_id),
            upvotes=agg.upvotes,
            total=agg.total_votes,
            super_votes=agg.super_votes,
            score=score,
        )
        return score
