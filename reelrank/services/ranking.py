from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from typing import Callable

import structlog

from reelrank.config import settings
from reelrank.schemas.leaderboard import (
    BestRank,
    LeaderboardRow,
    Page,
    Period,
    SnapshotPublic,
    TopCreatorRow,
    UserRank,
)
from reelrank.services.ranking_cache import (
    CacheUnavailable,
    RankedMember,
    RankingCache,
    challenge_key,
    top_creators_key,
    ttl_for,
)
from reelrank.services.submission_store import RankedSubmission, SubmissionStore

log = structlog.get_logger()


def _offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def _row(rank: int, sub: RankedSubmission, score: float | None = None) -> LeaderboardRow:
    return LeaderboardRow(
        rank=rank,
        submission_id=sub.submission_id,
        user_id=sub.user_id,
        username=sub.username,
        display_name=sub.display_name,
        avatar_url=sub.avatar_url,
        score=sub.score if score is None else score,
        vote_count=sub.vote_count,
        super_vote_count=sub.super_vote_count,
    )


class RankingService:
    """
    Leaderboard reads: cache first, authoritative store as fallback.

    Cache failures are absorbed and served from the store; store failures
    propagate. Only the recompute job fills per-challenge keys. The top
    creators view is the exception: its miss path writes the aggregate back.
    """

    def __init__(
        self,
        cache: RankingCache,
        store: SubmissionStore,
        now: Callable[[], datetime] | None = None,
    ):
        self.cache = cache
        self.store = store
        self._now = now or (lambda: datetime.now(dt_tz.utc))

    # ---------- challenge leaderboard ----------

    async def challenge_leaderboard(
        self,
        challenge_id,
        period: Period = Period.ALL_TIME,
        page: int = 1,
        limit: int = 20,
    ) -> Page[LeaderboardRow]:
        page, limit = max(1, page), max(1, limit)
        start = _offset(page, limit)
        key = challenge_key(challenge_id, period)

        try:
            if await self.cache.exists(key):
                entries = await self.cache.range(key, start, start + limit - 1)
                total = await self.cache.count(key)
                if not entries:
                    # past the last cached rank
                    return Page[LeaderboardRow].build([], total, page, limit)
                rows = await self._hydrate_page(key, entries)
                if rows is not None:
                    return Page[LeaderboardRow].build(rows, total, page, limit)
                log.info("leaderboard.cache.page_unresolved", key=key, page=page, members=len(entries))
        except CacheUnavailable as exc:
            log.warning("leaderboard.cache.unavailable", key=key, error=str(exc))

        now = self._now()
        subs = await self.store.query_ranked(challenge_id, period, start, limit, now=now)
        total = await self.store.count(challenge_id, period, now=now)
        rows = [_row(start + i + 1, s) for i, s in enumerate(subs)]
        return Page[LeaderboardRow].build(rows, total, page, limit)

    async def _hydrate_page(self, key: str, entries: list[RankedMember]) -> list[LeaderboardRow] | None:
        # None means "treat as a miss": nothing on the page resolved to a submission
        subs = await self.store.hydrate_submissions(e.member for e in entries)
        if not subs:
            return None
        rows: list[LeaderboardRow] = []
        missing = 0
        for e in entries:
            sub = subs.get(e.member)
            if sub is None:
                missing += 1
                rows.append(LeaderboardRow(rank=e.rank, submission_id=e.member, score=e.score))
                continue
            rows.append(_row(e.rank, sub, score=e.score))
        if missing:
            log.warning("leaderboard.cache.partial_hydration", key=key, missing=missing, page_size=len(entries))
        return rows

    # ---------- per-user rank ----------

    async def user_rank(self, user_id, challenge_id, period: Period = Period.ALL_TIME) -> UserRank:
        now = self._now()
        sub = await self.store.user_eligible_submission(user_id, challenge_id, period, now=now)
        if sub is None:
            total = await self.store.count(challenge_id, period, now=now)
            return UserRank(rank=None, score=0.0, total_participants=total)

        key = challenge_key(challenge_id, period)
        try:
            if await self.cache.exists(key):
                rank = await self.cache.rank(key, str(sub.submission_id))
                if rank is not None:
                    total = await self.cache.count(key)
                    return UserRank(rank=rank, score=sub.score, total_participants=total, submission_id=sub.submission_id)
                # submitted after the last recompute
                log.info("leaderboard.cache.member_missing", key=key, submission_id=str(sub.submission_id))
        except CacheUnavailable as exc:
            log.warning("leaderboard.cache.unavailable", key=key, error=str(exc))

        higher = await self.store.higher_scoring_count(challenge_id, period, sub.score, now=now)
        total = await self.store.count(challenge_id, period, now=now)
        return UserRank(rank=higher + 1, score=sub.score, total_participants=total, submission_id=sub.submission_id)

    # ---------- friends ----------

    async def friends_leaderboard(self, user_id, challenge_id, page: int = 1, limit: int = 20) -> Page[LeaderboardRow]:
        # Viewer-specific and small: always read from the store
        page, limit = max(1, page), max(1, limit)
        start = _offset(page, limit)
        subs = await self.store.query_friends(user_id, challenge_id, start, limit)
        total = await self.store.count_friends(user_id, challenge_id)
        rows = [_row(start + i + 1, s) for i, s in enumerate(subs)]
        return Page[LeaderboardRow].build(rows, total, page, limit)

    # ---------- top creators ----------

    async def top_creators(self, period: Period = Period.ALL_TIME, page: int = 1, limit: int = 20) -> Page[TopCreatorRow]:
        page, limit = max(1, page), max(1, limit)
        start = _offset(page, limit)
        key = top_creators_key(period)
        now = self._now()

        try:
            if await self.cache.exists(key):
                entries = await self.cache.range(key, start, start + limit - 1)
                total = await self.cache.count(key)
                if not entries:
                    return Page[TopCreatorRow].build([], total, page, limit)
                rows = await self._hydrate_creators(entries, period, now)
                if rows is not None:
                    return Page[TopCreatorRow].build(rows, total, page, limit)
                log.info("leaderboard.cache.page_unresolved", key=key, page=page, members=len(entries))
        except CacheUnavailable as exc:
            log.warning("leaderboard.cache.unavailable", key=key, error=str(exc))

        creators = await self.store.top_creators(period, settings.top_creators_cache_size, now=now)
        if creators:
            try:
                await self.cache.replace_all(
                    key, [(str(c.user_id), c.aggregate_score) for c in creators], ttl_for(period)
                )
            except CacheUnavailable as exc:
                log.warning("leaderboard.cache.write_failed", key=key, error=str(exc))

        ranked = [
            TopCreatorRow(
                rank=i + 1,
                user_id=c.user_id,
                username=c.username,
                display_name=c.display_name,
                avatar_url=c.avatar_url,
                aggregate_score=c.aggregate_score,
                submission_count=c.submission_count,
            )
            for i, c in enumerate(creators)
        ]
        return Page[TopCreatorRow].build(ranked[start:start + limit], len(ranked), page, limit)

    async def _hydrate_creators(self, entries: list[RankedMember], period: Period, now: datetime) -> list[TopCreatorRow] | None:
        users = await self.store.hydrate_creators((e.member for e in entries), period, now=now)
        if not users:
            return None
        rows: list[TopCreatorRow] = []
        for e in entries:
            user, submission_count = users.get(e.member, (None, 0))
            rows.append(TopCreatorRow(
                rank=e.rank,
                user_id=e.member,
                username=user.username if user else "",
                display_name=user.display_name if user else "",
                avatar_url=user.avatar_url if user else None,
                aggregate_score=e.score,
                submission_count=submission_count,
            ))
        return rows

    # ---------- history ----------

    async def best_rank(self, user_id, challenge_id) -> BestRank:
        """Best all-time rank any of the user's submissions held in a persisted snapshot."""
        mine = {str(s) for s in await self.store.user_submission_ids(user_id, challenge_id)}
        if not mine:
            return BestRank()
        best: BestRank | None = None
        # newest first; `<=` keeps the earliest snapshot for an equal rank
        for snap in await self.store.list_snapshots(challenge_id, Period.ALL_TIME):
            for entry in snap.entries or []:
                if entry.get("submission_id") not in mine:
                    continue
                rank = int(entry["rank"])
                if best is None or rank <= best.best_rank:
                    best = BestRank(best_rank=rank, submission_id=entry["submission_id"], achieved_at=snap.created_at)
        return best or BestRank()

    async def snapshots(self, challenge_id, limit: int = 10) -> list[SnapshotPublic]:
        snaps = await self.store.list_snapshots(challenge_id, limit=max(1, limit))
        return [
            SnapshotPublic(
                id=s.id,
                challenge_id=s.challenge_id,
                period=Period(s.period),
                created_at=s.created_at,
                entries=s.entries or [],
            )
            for s in snaps
        ]
