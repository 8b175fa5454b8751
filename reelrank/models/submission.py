from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Float, Integer, String, DateTime, ForeignKey, Index, func
from sqlalchemy.dialects.postgresql import UUID
from reelrank.db import Base


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    challenge_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )

    moderation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # 'pending'|'approved'|'rejected'
    transcode_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")   # 'pending'|'processing'|'completed'|'failed'
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Maintained by vote ingestion
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    super_vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Lower-bound Wilson score, written only by the recompute job
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    boost_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_submissions_challenge_score", "challenge_id", "score"),
    )
