"""Generation job and deck models.

GenerationJob tracks one request through the pipeline:
QUEUED → RUNNING → COMPLETED/FAILED

Deck and DeckSlide hold the presentation being produced. Slides are rows
appended one at a time in position order while the job runs, so a reader
can fetch a partial deck at any point.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class GenerationJob(Base):
    """One presentation generation request and its progress."""

    __tablename__ = "generation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="generation_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    request: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        comment="GenerationRequest as submitted (camelCase wire JSON)",
    )
    outline: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Final outline after composition and enforcement",
    )

    deck_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("decks.id", ondelete="SET NULL"),
        nullable=True,
    )

    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancel_requested: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "idempotency_key", name="uq_generation_jobs_workspace_idempotency"
        ),
        Index("ix_generation_jobs_workspace_created", "workspace_id", "created_at"),
        Index("ix_generation_jobs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<GenerationJob id={self.id} status={self.status} progress={self.progress}>"


class Deck(Base):
    __tablename__ = "decks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="no")
    theme_id: Mapped[str] = mapped_column(String(50), nullable=False)
    brand_kit: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    slides: Mapped[list[DeckSlide]] = relationship(
        "DeckSlide",
        back_populates="deck",
        order_by="DeckSlide.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Deck id={self.id} title={self.title!r}>"


class DeckSlide(Base):
    __tablename__ = "deck_slides"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    deck_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("decks.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        comment="Slide as camelCase wire JSON",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    deck: Mapped[Deck] = relationship("Deck", back_populates="slides")

    __table_args__ = (
        UniqueConstraint("deck_id", "position", name="uq_deck_slides_deck_position"),
    )
