from __future__ import annotations
from enum import Enum
from math import ceil
from typing import Generic, TypeVar
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

T = TypeVar("T")


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ALL_TIME = "all_time"


class LeaderboardRow(BaseModel):
    rank: int
    submission_id: UUID
    user_id: UUID | None = None
    username: str = ""
    display_name: str = ""
    avatar_url: str | None = None
    score: float
    vote_count: int = 0
    super_vote_count: int = 0


class UserRank(BaseModel):
    rank: int | None = None   # None = not ranked (no eligible submission)
    score: float = 0.0
    total_participants: int = 0
    submission_id: UUID | None = None


class TopCreatorRow(BaseModel):
    rank: int
    user_id: UUID
    username: str = ""
    display_name: str = ""
    avatar_url: str | None = None
    aggregate_score: float
    submission_count: int = 0


class SnapshotEntry(BaseModel):
    rank: int
    submission_id: UUID
    user_id: UUID | None = None
    score: float


class SnapshotPublic(BaseModel):
    id: UUID
    challenge_id: UUID
    period: Period
    created_at: datetime
    entries: list[SnapshotEntry] = Field(default_factory=list)


class BestRank(BaseModel):
    best_rank: int | None = None
    submission_id: UUID | None = None
    achieved_at: datetime | None = None


class Page(BaseModel, Generic[T]):
    data: list[T]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, data: list[T], total: int, page: int, limit: int) -> "Page[T]":
        return cls(
            data=data,
            total=total,
            page=page,
            limit=limit,
            total_pages=ceil(total / limit) if limit > 0 else 0,
        )


class RecomputeQueued(BaseModel):
    challenge_id: UUID
    job_id: str
    status: str = "queued"
