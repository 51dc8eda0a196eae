"""
SQLAlchemy models for the client-side offline store.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from formqueue.constants import DEFAULT_MAX_ATTEMPTS, OfflineStatus


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OfflineJob(Base):
    """
    A submission waiting to be delivered to the queue server.

    One row per offline record id. ``payload`` holds the form data as JSON
    text and is decoded by the store, so an unreadable row can be skipped
    without failing the whole read. Datetimes are naive UTC.
    """

    __tablename__ = "offline_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=OfflineStatus.PENDING.value,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_offline_jobs_status", "status"),
        Index("ix_offline_jobs_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<OfflineJob(id={self.id}, status={self.status}, attempts={self.attempts})>"
