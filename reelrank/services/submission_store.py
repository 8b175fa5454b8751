from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone as dt_tz
from typing import Iterable

from sqlalchemy import select, update, func, case, or_
from sqlalchemy.ext.asyncio import AsyncSession

from reelrank.config import settings
from reelrank.models.challenge import Challenge
from reelrank.models.leaderboard import LeaderboardSnapshot
from reelrank.models.submission import Submission
from reelrank.models.user import User, Follow
from reelrank.models.vote import Vote
from reelrank.schemas.leaderboard import Period
from reelrank.services.time_windows import period_start


@dataclass(frozen=True)
class VoteAggregate:
    submission_id: uuid.UUID
    owner_id: uuid.UUID
    upvotes: int
    downvotes: int
    super_votes: int
    total_votes: int
    created_at: datetime


@dataclass(frozen=True)
class RankedSubmission:
    submission_id: uuid.UUID
    user_id: uuid.UUID
    username: str
    display_name: str
    avatar_url: str | None
    score: float
    vote_count: int
    super_vote_count: int


@dataclass(frozen=True)
class EligibleSubmission:
    submission_id: uuid.UUID
    score: float
    created_at: datetime


@dataclass(frozen=True)
class CreatorAggregate:
    user_id: uuid.UUID
    username: str
    display_name: str
    avatar_url: str | None
    aggregate_score: float
    submission_count: int


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def eligible_clauses() -> list:
    """Approved by moderation, fully transcoded, not soft-deleted."""
    return [
        Submission.moderation_status == "approved",
        Submission.transcode_status == "completed",
        Submission.deleted_at.is_(None),
    ]


def period_clauses(period: Period, now: datetime | None = None) -> list:
    start = period_start(period, now)
    return [] if start is None else [Submission.created_at >= start]


class SubmissionStore:
    """
    Authoritative submission/vote reads and score writes.

    Errors from the database propagate unchanged; a statement that runs longer
    than `timeout` seconds raises TimeoutError. Nothing here retries.
    """

    def __init__(self, session: AsyncSession, timeout: float | None = None):
        self.session = session
        self.timeout = settings.store_timeout_seconds if timeout is None else timeout

    async def _execute(self, stmt):
        return await asyncio.wait_for(self.session.execute(stmt), timeout=self.timeout)

    async def _scalar(self, stmt):
        return (await self._execute(stmt)).scalar()

    # ---------- recompute inputs / outputs ----------

    def _aggregate_stmt(self):
        up = func.coalesce(func.sum(case((Vote.value == 1, 1), else_=0)), 0)
        down = func.coalesce(func.sum(case((Vote.value == -1, 1), else_=0)), 0)
        sup = func.coalesce(func.sum(case(((Vote.value == 1) & (Vote.is_super_vote.is_(True)), 1), else_=0)), 0)
        return (
            select(
                Submission.id,
                Submission.user_id,
                up.label("upvotes"),
                down.label("downvotes"),
                sup.label("super_votes"),
                func.count(Vote.id).label("total_votes"),
                Submission.created_at,
            )
            .outerjoin(Vote, Vote.submission_id == Submission.id)
            .where(*eligible_clauses())
            .group_by(Submission.id, Submission.user_id, Submission.created_at)
        )

    @staticmethod
    def _to_aggregate(row) -> VoteAggregate:
        return VoteAggregate(
            submission_id=row.id,
            owner_id=row.user_id,
            upvotes=int(row.upvotes or 0),
            downvotes=int(row.downvotes or 0),
            super_votes=int(row.super_votes or 0),
            total_votes=int(row.total_votes or 0),
            created_at=row.created_at,
        )

    async def aggregate_votes(self, challenge_id) -> list[VoteAggregate]:
        """Vote totals for every eligible submission in the challenge."""
        stmt = self._aggregate_stmt().where(Submission.challenge_id == _as_uuid(challenge_id))
        rows = (await self._execute(stmt)).all()
        return [self._to_aggregate(r) for r in rows]

    async def aggregate_votes_for_submission(self, submission_id) -> VoteAggregate | None:
        stmt = self._aggregate_stmt().where(Submission.id == _as_uuid(submission_id))
        row = (await self._execute(stmt)).first()
        return self._to_aggregate(row) if row else None

    async def persist_score(self, submission_id, score: float) -> None:
        """Idempotent: writing the same score twice leaves the row unchanged."""
        await self._execute(
            update(Submission)
            .where(Submission.id == _as_uuid(submission_id))
            .values(score=float(score), updated_at=func.now())
        )
        await self.session.commit()

    async def save_snapshot(self, challenge_id, period: Period, entries: list[dict]) -> LeaderboardSnapshot:
        snap = LeaderboardSnapshot(
            challenge_id=_as_uuid(challenge_id),
            period=Period(period).value,
            entries=entries,
            created_at=datetime.now(dt_tz.utc),
        )
        self.session.add(snap)
        await asyncio.wait_for(self.session.commit(), timeout=self.timeout)
        return snap

    async def challenge_ids_with_status(self, statuses: Iterable[str]) -> list[uuid.UUID]:
        rows = await self._execute(
            select(Challenge.id).where(Challenge.status.in_(list(statuses))).order_by(Challenge.created_at.asc())
        )
        return list(rows.scalars().all())

    # ---------- challenge leaderboard (fallback path) ----------

    def _ranked_select(self):
        return (
            select(
                Submission.id,
                Submission.user_id,
                User.username,
                User.display_name,
                User.avatar_url,
                Submission.score,
                Submission.vote_count,
                Submission.super_vote_count,
            )
            .join(User, User.id == Submission.user_id)
        )

    @staticmethod
    def _to_ranked(row) -> RankedSubmission:
        return RankedSubmission(
            submission_id=row.id,
            user_id=row.user_id,
            username=row.username or "",
            display_name=row.display_name or "",
            avatar_url=row.avatar_url,
            score=float(row.score or 0.0),
            vote_count=int(row.vote_count or 0),
            super_vote_count=int(row.super_vote_count or 0),
        )

    async def query_ranked(self, challenge_id, period: Period, offset: int, limit: int, now: datetime | None = None) -> list[RankedSubmission]:
        stmt = (
            self._ranked_select()
            .where(Submission.challenge_id == _as_uuid(challenge_id), *eligible_clauses(), *period_clauses(period, now))
            .order_by(Submission.score.desc(), Submission.created_at.asc(), Submission.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_ranked(r) for r in (await self._execute(stmt)).all()]

    async def count(self, challenge_id, period: Period = Period.ALL_TIME, now: datetime | None = None) -> int:
        total = await self._scalar(
            select(func.count()).select_from(Submission)
            .where(Submission.challenge_id == _as_uuid(challenge_id), *eligible_clauses(), *period_clauses(period, now))
        )
        return int(total or 0)

    async def hydrate_submissions(self, submission_ids: Iterable) -> dict[str, RankedSubmission]:
        """Current owner display data for cached members, keyed by str(submission id)."""
        ids = [_as_uuid(s) for s in submission_ids]
        if not ids:
            return {}
        rows = (await self._execute(self._ranked_select().where(Submission.id.in_(ids)))).all()
        return {str(r.id): self._to_ranked(r) for r in rows}

    # ---------- per-user ----------

    async def user_eligible_submission(self, user_id, challenge_id, period: Period = Period.ALL_TIME, now: datetime | None = None) -> EligibleSubmission | None:
        """The user's best-scoring eligible submission in the challenge."""
        row = (await self._execute(
            select(Submission.id, Submission.score, Submission.created_at)
            .where(
                Submission.user_id == _as_uuid(user_id),
                Submission.challenge_id == _as_uuid(challenge_id),
                *eligible_clauses(),
                *period_clauses(period, now),
            )
            .order_by(Submission.score.desc(), Submission.created_at.asc())
            .limit(1)
        )).first()
        if not row:
            return None
        return EligibleSubmission(submission_id=row.id, score=float(row.score or 0.0), created_at=row.created_at)

    async def higher_scoring_count(self, challenge_id, period: Period, score_threshold: float, now: datetime | None = None) -> int:
        total = await self._scalar(
            select(func.count()).select_from(Submission)
            .where(
                Submission.challenge_id == _as_uuid(challenge_id),
                Submission.score > float(score_threshold),
                *eligible_clauses(),
                *period_clauses(period, now),
            )
        )
        return int(total or 0)

    async def user_submission_ids(self, user_id, challenge_id) -> list[uuid.UUID]:
        rows = await self._execute(
            select(Submission.id).where(
                Submission.user_id == _as_uuid(user_id),
                Submission.challenge_id == _as_uuid(challenge_id),
            )
        )
        return list(rows.scalars().all())

    # ---------- friends ----------

    def _friends_clauses(self, user_id, challenge_id) -> list:
        uid = _as_uuid(user_id)
        following = select(Follow.following_id).where(Follow.follower_id == uid)
        return [
            Submission.challenge_id == _as_uuid(challenge_id),
            or_(Submission.user_id.in_(following), Submission.user_id == uid),
            *eligible_clauses(),
        ]

    async def query_friends(self, user_id, challenge_id, offset: int, limit: int) -> list[RankedSubmission]:
        stmt = (
            self._ranked_select()
            .where(*self._friends_clauses(user_id, challenge_id))
            .order_by(Submission.score.desc(), Submission.created_at.asc(), Submission.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_ranked(r) for r in (await self._execute(stmt)).all()]

    async def count_friends(self, user_id, challenge_id) -> int:
        total = await self._scalar(
            select(func.count()).select_from(Submission).where(*self._friends_clauses(user_id, challenge_id))
        )
        return int(total or 0)

    # ---------- top creators ----------

    async def top_creators(self, period: Period, limit: int, now: datetime | None = None) -> list[CreatorAggregate]:
        aggregate = func.coalesce(func.sum(Submission.score), 0.0)
        stmt = (
            select(
                Submission.user_id,
                User.username,
                User.display_name,
                User.avatar_url,
                aggregate.label("aggregate_score"),
                func.count(Submission.id).label("submission_count"),
            )
            .join(User, User.id == Submission.user_id)
            .where(*eligible_clauses(), *period_clauses(period, now))
            .group_by(Submission.user_id, User.username, User.display_name, User.avatar_url)
            .order_by(aggregate.desc(), Submission.user_id.asc())
            .limit(limit)
        )
        return [
            CreatorAggregate(
                user_id=r.user_id,
                username=r.username or "",
                display_name=r.display_name or "",
                avatar_url=r.avatar_url,
                aggregate_score=float(r.aggregate_score or 0.0),
                submission_count=int(r.submission_count or 0),
            )
            for r in (await self._execute(stmt)).all()
        ]

    async def hydrate_creators(self, user_ids: Iterable, period: Period, now: datetime | None = None) -> dict[str, tuple[User, int]]:
        """User rows plus eligible submission counts in the period, keyed by str(user id)."""
        ids = [_as_uuid(u) for u in user_ids]
        if not ids:
            return {}
        users = (await self._execute(select(User).where(User.id.in_(ids)))).scalars().all()
        counts = dict((await self._execute(
            select(Submission.user_id, func.count(Submission.id))
            .where(Submission.user_id.in_(ids), *eligible_clauses(), *period_clauses(period, now))
            .group_by(Submission.user_id)
        )).all())
        return {str(u.id): (u, int(counts.get(u.id, 0))) for u in users}

    # ---------- snapshots ----------

    async def list_snapshots(self, challenge_id, period: Period | None = None, limit: int | None = None) -> list[LeaderboardSnapshot]:
        stmt = select(LeaderboardSnapshot).where(LeaderboardSnapshot.challenge_id == _as_uuid(challenge_id))
        if period is not None:
            stmt = stmt.where(LeaderboardSnapshot.period == Period(period).value)
        stmt = stmt.order_by(LeaderboardSnapshot.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self._execute(stmt)).scalars().all())
