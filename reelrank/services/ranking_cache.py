from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Sequence, TypeVar

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from reelrank.config import settings
from reelrank.schemas.leaderboard import Period

log = structlog.get_logger()

R = TypeVar("R")

# ---------- keys & TTLs ----------

def challenge_key(challenge_id, period: Period = Period.ALL_TIME) -> str:
    """`leaderboard:{challenge_id}:{period}`"""
    return f"leaderboard:{challenge_id}:{Period(period).value}"

def top_creators_key(period: Period = Period.ALL_TIME) -> str:
    """`leaderboard:top_creators:{period}`"""
    return f"leaderboard:top_creators:{Period(period).value}"

def ttl_for(period: Period) -> int:
    period = Period(period)
    if period == Period.DAILY:
        return settings.leaderboard_ttl_daily_seconds
    if period == Period.WEEKLY:
        return settings.leaderboard_ttl_weekly_seconds
    return settings.leaderboard_ttl_all_time_seconds


class CacheUnavailable(Exception):
    """Backing store errored or timed out. Callers treat it as a cache miss."""


@dataclass(frozen=True)
class RankedMember:
    member: str
    score: float
    rank: int  # 1-based, descending score


class RankingCache:
    """
    Sorted-set view of a leaderboard: member -> score, read in descending order.

    `replace_all` is the only write and is atomic per key: readers see either
    the previous generation or the new one, never a mix. An empty entry list
    is ignored so a bad recomputation cannot wipe a good leaderboard.
    """

    async def replace_all(self, key: str, entries: Sequence[tuple[str, float]], ttl: int | None = None) -> bool:
        if not entries:
            log.debug("leaderboard.cache.replace_skipped_empty", key=key)
            return False
        await self._replace(key, entries, ttl)
        log.debug("leaderboard.cache.replaced", key=key, count=len(entries), ttl=ttl)
        return True

    async def _replace(self, key: str, entries: Sequence[tuple[str, float]], ttl: int | None) -> None:
        raise NotImplementedError

    async def range(self, key: str, start: int, stop: int) -> list[RankedMember]:
        raise NotImplementedError

    async def rank(self, key: str, member: str) -> int | None:
        raise NotImplementedError

    async def score(self, key: str, member: str) -> float | None:
        raise NotImplementedError

    async def count(self, key: str) -> int:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _normalize_range(start: int, stop: int, size: int) -> tuple[int, int] | None:
    # Same index semantics as ZREVRANGE: inclusive, negatives count from the end
    if start < 0:
        start = max(0, size + start)
    if stop < 0:
        stop = size + stop
    stop = min(stop, size - 1)
    if size == 0 or start > stop:
        return None
    return start, stop


# ---------- Redis ----------

class RedisRankingCache(RankingCache):
    def __init__(self, redis: Redis, timeout: float | None = None):
        self.redis = redis
        self.timeout = settings.cache_timeout_seconds if timeout is None else timeout

    @classmethod
    def from_url(cls, url: str, timeout: float | None = None) -> "RedisRankingCache":
        return cls(Redis.from_url(url, decode_responses=True), timeout=timeout)

    async def _call(self, op: str, key: str, fn: Callable[[], Awaitable[R]]) -> R:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheUnavailable(f"{op} {key}: {exc!r}") from exc

    async def _replace(self, key, entries, ttl):
        mapping = {str(member): float(score) for member, score in entries}

        async def _tx():
            # MULTI/EXEC: DEL + ZADD + EXPIRE land together
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.zadd(key, mapping)
                if ttl and ttl > 0:
                    pipe.expire(key, ttl)
                await pipe.execute()

        await self._call("replace_all", key, _tx)

    async def range(self, key, start, stop):
        async def _read():
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zcard(key)
                pipe.zrevrange(key, start, stop, withscores=True)
                return await pipe.execute()

        size, rows = await self._call("range", key, _read)
        bounds = _normalize_range(start, stop, int(size or 0))
        if bounds is None or not rows:
            return []
        first = bounds[0]
        return [RankedMember(member=m, score=float(s), rank=first + i + 1) for i, (m, s) in enumerate(rows)]

    async def rank(self, key, member):
        r = await self._call("rank", key, lambda: self.redis.zrevrank(key, str(member)))
        return None if r is None else int(r) + 1

    async def score(self, key, member):
        s = await self._call("score", key, lambda: self.redis.zscore(key, str(member)))
        return None if s is None else float(s)

    async def count(self, key):
        return int(await self._call("count", key, lambda: self.redis.zcard(key)) or 0)

    async def exists(self, key):
        return int(await self._call("exists", key, lambda: self.redis.exists(key)) or 0) == 1

    async def invalidate(self, key):
        await self._call("invalidate", key, lambda: self.redis.delete(key))
        log.debug("leaderboard.cache.invalidated", key=key)

    async def close(self):
        await self.redis.aclose()


# ---------- in-process ----------

@dataclass
class _Generation:
    members: list[tuple[str, float]]
    positions: dict[str, int]
    expires_at: float | None


class InMemoryRankingCache(RankingCache):
    """
    Process-local implementation for development and tests.
    A generation is swapped in with a single assignment, so replacement is atomic.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, _Generation] = {}

    def _get(self, key: str) -> _Generation | None:
        gen = self._data.get(key)
        if gen is None:
            return None
        if gen.expires_at is not None and self._clock() >= gen.expires_at:
            self._data.pop(key, None)
            return None
        return gen

    async def _replace(self, key, entries: Iterable[tuple[str, float]], ttl):
        scores: dict[str, float] = {}
        for member, score in entries:
            scores[str(member)] = float(score)
        # sorted() is stable: equal scores keep insertion order
        members = sorted(scores.items(), key=lambda kv: -kv[1])
        positions = {m: i for i, (m, _s) in enumerate(members)}
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._data[key] = _Generation(members=members, positions=positions, expires_at=expires_at)

    async def range(self, key, start, stop):
        gen = self._get(key)
        if gen is None:
            return []
        bounds = _normalize_range(start, stop, len(gen.members))
        if bounds is None:
            return []
        first, last = bounds
        return [
            RankedMember(member=m, score=s, rank=first + i + 1)
            for i, (m, s) in enumerate(gen.members[first:last + 1])
        ]

    async def rank(self, key, member):
        gen = self._get(key)
        if gen is None:
            return None
        pos = gen.positions.get(str(member))
        return None if pos is None else pos + 1

    async def score(self, key, member):
        gen = self._get(key)
        if gen is None:
            return None
        pos = gen.positions.get(str(member))
        return None if pos is None else gen.members[pos][1]

    async def count(self, key):
        gen = self._get(key)
        return len(gen.members) if gen else 0

    async def exists(self, key):
        return self._get(key) is not None

    async def invalidate(self, key):
        self._data.pop(key, None)
        log.debug("leaderboard.cache.invalidated", key=key)


def build_ranking_cache(backend: str | None = None) -> RankingCache:
    backend = backend or settings.ranking_cache_backend
    if backend == "memory":
        return InMemoryRankingCache()
    if backend == "redis":
        return RedisRankingCache.from_url(settings.redis_url)
    raise ValueError(f"unknown ranking cache backend: {backend}")
