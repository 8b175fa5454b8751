from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "reelrank")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "ReelRank")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/reelrank_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Ranking cache
    ranking_cache_backend: str = os.getenv("RANKING_CACHE_BACKEND", "redis")  # redis|memory
    leaderboard_ttl_daily_seconds: int = int(os.getenv("LEADERBOARD_TTL_DAILY_SECONDS", str(60 * 60)))
    leaderboard_ttl_weekly_seconds: int = int(os.getenv("LEADERBOARD_TTL_WEEKLY_SECONDS", str(60 * 60 * 4)))
    leaderboard_ttl_all_time_seconds: int = int(os.getenv("LEADERBOARD_TTL_ALL_TIME_SECONDS", str(60 * 60 * 24)))
    cache_timeout_seconds: float = float(os.getenv("CACHE_TIMEOUT_SECONDS", "0.5"))
    top_creators_cache_size: int = int(os.getenv("TOP_CREATORS_CACHE_SIZE", "100"))

    # Authoritative store
    store_timeout_seconds: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

    # Read path
    leaderboard_default_page_size: int = int(os.getenv("LEADERBOARD_DEFAULT_PAGE_SIZE", "20"))
    leaderboard_max_page_size: int = int(os.getenv("LEADERBOARD_MAX_PAGE_SIZE", "100"))

    # Recompute worker
    leaderboard_queue: str = os.getenv("LEADERBOARD_QUEUE", "leaderboard")
    recompute_lock_timeout_seconds: int = int(os.getenv("RECOMPUTE_LOCK_TIMEOUT_SECONDS", "300"))
    snapshot_challenge_statuses: list[str] = os.getenv("SNAPSHOT_CHALLENGE_STATUSES", "active,voting").split(",")

settings = Settings()
