from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from reelrank.auth_deps import get_viewer_id
from reelrank.config import settings
from reelrank.db import get_session
from reelrank.jobs import recompute_leaderboard as recompute_jobs
from reelrank.schemas.leaderboard import (
    BestRank,
    LeaderboardRow,
    Page,
    Period,
    RecomputeQueued,
    SnapshotPublic,
    TopCreatorRow,
    UserRank,
)
from reelrank.services.ranking import RankingService
from reelrank.services.ranking_cache import RankingCache
from reelrank.services.submission_store import SubmissionStore

router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])



def get_ranking_cache(request: Request) -> RankingCache:
    return request.app.state.ranking_cache


async def get_ranking_service(
    session: AsyncSession = Depends(get_session),
    cache: RankingCache = Depends(get_ranking_cache),
) -> RankingService:
    return RankingService(cache, SubmissionStore(session))


# NOTE: declared before /challenge/{challenge_id} routes
@router.get("/top-creators", response_model=Page[TopCreatorRow])
async def top_creators(
    period: Period = Query(default=Period.ALL_TIME),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.leaderboard_default_page_size, ge=1, le=settings.leaderboard_max_page_size),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.top_creators(period, page, limit)


@router.get("/challenge/{challenge_id}", response_model=Page[LeaderboardRow])
async def challenge_leaderboard(
    challenge_id: UUID,
    period: Period = Query(default=Period.ALL_TIME),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.leaderboard_default_page_size, ge=1, le=settings.leaderboard_max_page_size),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.challenge_leaderboard(challenge_id, period, page, limit)


@router.get("/challenge/{challenge_id}/me", response_model=UserRank)
async def my_rank(
    challenge_id: UUID,
    period: Period = Query(default=Period.ALL_TIME),
    viewer_id: UUID = Depends(get_viewer_id),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.user_rank(viewer_id, challenge_id, period)


@router.get("/challenge/{challenge_id}/friends", response_model=Page[LeaderboardRow])
async def friends_leaderboard(
    challenge_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.leaderboard_default_page_size, ge=1, le=settings.leaderboard_max_page_size),
    viewer_id: UUID = Depends(get_viewer_id),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.friends_leaderboard(viewer_id, challenge_id, page, limit)


@router.get("/challenge/{challenge_id}/best", response_model=BestRank)
async def my_best_rank(
    challenge_id: UUID,
    viewer_id: UUID = Depends(get_viewer_id),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.best_rank(viewer_id, challenge_id)


@router.get("/challenge/{challenge_id}/snapshots", response_model=list[SnapshotPublic])
async def snapshots(
    challenge_id: UUID,
    limit: int = Query(default=10, ge=1, le=100),
    svc: RankingService = Depends(get_ranking_service),
):
    return await svc.snapshots(challenge_id, limit)


@router.post("/challenge/{challenge_id}/recompute", response_model=RecomputeQueued, status_code=status.HTTP_202_ACCEPTED)
async def queue_recompute(challenge_id: UUID):
    job_id = recompute_jobs.enqueue_recompute(challenge_id)
    return RecomputeQueued(challenge_id=challenge_id, job_id=job_id)
