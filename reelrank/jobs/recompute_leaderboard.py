from __future__ import annotations
import asyncio
from dataclasses import asdict

import structlog
from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import LockError
from rq import Queue

from reelrank.config import settings
from reelrank.db import SessionLocal
from reelrank.services.ranking_cache import build_ranking_cache
from reelrank.services.recompute import RecomputeJob
from reelrank.services.submission_store import SubmissionStore

log = structlog.get_logger()

# RQ queue (single instance; Redis connects lazily)
_redis = Redis.from_url(settings.redis_url)
_queue = Queue(settings.leaderboard_queue, connection=_redis)


def lock_name(challenge_id) -> str:
    return f"leaderboard:lock:{challenge_id}"


def enqueue_recompute(challenge_id, queue: Queue | None = None) -> str:
    """Queue a recompute for one challenge; returns the RQ job id."""
    if queue is None:
        queue = _queue
    job = queue.enqueue(
        recompute_leaderboard,
        str(challenge_id),
        job_timeout=settings.recompute_lock_timeout_seconds,
    )
    log.info("leaderboard.recompute.enqueued", challenge_id=str(challenge_id), job_id=job.id)
    return job.id


async def _recompute_locked(redis: AsyncRedis, cache, challenge_id: str) -> dict | None:
    # Overlapping runs for one challenge could interleave cache rebuilds
    lock = redis.lock(lock_name(challenge_id), timeout=settings.recompute_lock_timeout_seconds)
    if not await lock.acquire(blocking=False):
        log.info("leaderboard.recompute.skipped_locked", challenge_id=challenge_id)
        return None
    try:
        async with SessionLocal() as session:
            result = await RecomputeJob(SubmissionStore(session), cache).run(challenge_id)
            return asdict(result)
    finally:
        try:
            await lock.release()
        except LockError:
            log.warning("leaderboard.recompute.lock_expired", challenge_id=challenge_id)


async def _run(challenge_id: str) -> dict | None:
    redis = AsyncRedis.from_url(settings.redis_url)
    cache = build_ranking_cache()
    try:
        return await _recompute_locked(redis, cache, challenge_id)
    finally:
        await cache.close()
        await redis.aclose()


async def _run_active() -> list[dict]:
    redis = AsyncRedis.from_url(settings.redis_url)
    cache = build_ranking_cache()
    done: list[dict] = []
    try:
        async with SessionLocal() as session:
            challenge_ids = await SubmissionStore(session).challenge_ids_with_status(settings.snapshot_challenge_statuses)
        log.info("leaderboard.recompute_all.started", challenges=len(challenge_ids))
        for cid in challenge_ids:
            try:
                result = await _recompute_locked(redis, cache, str(cid))
            except Exception as exc:
                # log and move on to the next challenge
                log.error("leaderboard.recompute_all.challenge_failed", challenge_id=str(cid), error=repr(exc))
                continue
            if result:
                done.append(result)
        log.info("leaderboard.recompute_all.completed", challenges=len(challenge_ids), recomputed=len(done))
        return done
    finally:
        await cache.close()
        await redis.aclose()


def recompute_leaderboard(challenge_id: str):
    # RQ entry point (sync); run the async coroutine
    return asyncio.run(_run(challenge_id))


def recompute_active_leaderboards():
    # RQ / cron entry point for every active or voting challenge
    return asyncio.run(_run_active())
