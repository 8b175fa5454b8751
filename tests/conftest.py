from __future__ import annotations
import itertools
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from reelrank.db import Base
from reelrank.models.challenge import Challenge
from reelrank.models.submission import Submission
from reelrank.models.user import User, Follow
from reelrank.models.vote import Vote
import reelrank.models.leaderboard  # noqa: F401  (register table)

# A Wednesday: daily window starts 2025-01-15, weekly window starts Sunday 2025-01-12
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reelrank.db'}", future=True)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as s:
        yield s


class Factory:
    """Seeds rows the way the upload, moderation and voting paths would leave them."""

    def __init__(self, session: AsyncSession, now: datetime):
        self.session = session
        self.now = now
        self._seq = itertools.count(1)

    async def user(self, username: str | None = None, display_name: str | None = None) -> User:
        n = next(self._seq)
        u = User(username=username or f"user_{n}", display_name=display_name or f"User {n}")
        self.session.add(u)
        await self.session.commit()
        return u

    async def challenge(self, status: str = "active") -> Challenge:
        ch = Challenge(
            title=f"Challenge {next(self._seq)}",
            status=status,
            starts_at=self.now - timedelta(days=30),
            ends_at=self.now + timedelta(days=30),
            created_at=self.now - timedelta(days=30),
        )
        self.session.add(ch)
        await self.session.commit()
        return ch

    async def submission(
        self,
        challenge: Challenge,
        owner: User,
        *,
        up: int = 0,
        down: int = 0,
        super_votes: int = 0,
        created_at: datetime | None = None,
        moderation_status: str = "approved",
        transcode_status: str = "completed",
        deleted_at: datetime | None = None,
        score: float = 0.0,
    ) -> Submission:
        s = Submission(
            challenge_id=challenge.id,
            user_id=owner.id,
            moderation_status=moderation_status,
            transcode_status=transcode_status,
            deleted_at=deleted_at,
            vote_count=up - down,
            super_vote_count=super_votes,
            score=score,
            created_at=created_at or (self.now - timedelta(hours=1)),
        )
        self.session.add(s)
        await self.session.flush()
        for i in range(up + down):
            voter = User(username=f"voter_{next(self._seq)}", display_name="")
            self.session.add(voter)
            await self.session.flush()
            self.session.add(Vote(
                submission_id=s.id,
                user_id=voter.id,
                value=1 if i < up else -1,
                is_super_vote=i < super_votes,
            ))
        await self.session.commit()
        return s

    async def follow(self, follower: User, following: User) -> None:
        self.session.add(Follow(follower_id=follower.id, following_id=following.id))
        await self.session.commit()


@pytest.fixture
def factory(session, now) -> Factory:
    return Factory(session, now)
