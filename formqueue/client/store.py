"""
Client-side offline job store.

A keyed set of offline records with whole-record read/replace operations.
``claim`` is the only compare-and-set: it atomically flips a pending record
to in-flight, which is what keeps two reconciliation passes from
resubmitting the same record at the same time.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from formqueue.client.models import Base, OfflineJob
from formqueue.config import get_settings
from formqueue.constants import OfflineStatus
from formqueue.types.job import utcnow
from formqueue.types.offline import OfflineRecord

logger = logging.getLogger(__name__)


class OfflineStore(ABC):
    """Keyed store of offline records, one logical record per id."""

    async def init(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release resources held by the store."""

    @abstractmethod
    async def add(self, record: OfflineRecord) -> None:
        """Insert ``record``, replacing any record with the same id."""

    @abstractmethod
    async def get(self, record_id: str) -> OfflineRecord | None:
        """Get one record by id."""

    @abstractmethod
    async def list_records(self) -> list[OfflineRecord]:
        """
        All readable records.

        Unreadable records are skipped and a failing read yields an empty
        list; neither raises.
        """

    @abstractmethod
    async def claim(self, record_id: str, stale_after: float) -> OfflineRecord | None:
        """
        Mark a record in flight.

        Succeeds for a pending record, or for an in-flight record whose claim
        is older than ``stale_after`` seconds (its claimer died).

        Returns:
            The claimed record, or None if it is missing or claimed elsewhere.
        """

    @abstractmethod
    async def release(self, record: OfflineRecord) -> None:
        """Write ``record`` back as pending, clearing its claim."""

    @abstractmethod
    async def remove(self, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records."""


def _claimable(record: OfflineRecord, now: datetime, stale_after: float) -> bool:
    if record.status == OfflineStatus.PENDING:
        return True
    return record.claimed_at is None or record.claimed_at < now - timedelta(seconds=stale_after)


class MemoryOfflineStore(OfflineStore):
    """
    Process-local store.

    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self):
        self._records: dict[str, OfflineRecord] = {}

    async def add(self, record: OfflineRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def get(self, record_id: str) -> OfflineRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def list_records(self) -> list[OfflineRecord]:
        records = sorted(self._records.values(), key=lambda record: record.timestamp)
        return [record.model_copy(deep=True) for record in records]

    async def claim(self, record_id: str, stale_after: float) -> OfflineRecord | None:
        record = self._records.get(record_id)
        now = utcnow()
        if record is None or not _claimable(record, now, stale_after):
            return None
        record.status = OfflineStatus.IN_FLIGHT
        record.claimed_at = now
        return record.model_copy(deep=True)

    async def release(self, record: OfflineRecord) -> None:
        if record.id not in self._records:
            return
        self._records[record.id] = record.model_copy(
            deep=True,
            update={"status": OfflineStatus.PENDING, "claimed_at": None},
        )

    async def remove(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    async def count(self) -> int:
        return len(self._records)


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class SqlOfflineStore(OfflineStore):
    """
    Durable store on SQLAlchemy's async engine (SQLite via aiosqlite by default).

    Survives client restarts; several client processes may share one
    database file.
    """

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """
        Args:
            database_url: SQLAlchemy async URL. Defaults to ``offline_store_url``.
            echo: Log emitted SQL.
        """
        self.database_url = database_url or get_settings().offline_store_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """
        Create the engine, the session factory and the table.
        Should be called before first use.
        """
        if self._engine is not None:
            return

        self._engine = create_async_engine(self.database_url, echo=self._echo)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Offline store initialized", extra={"url": self.database_url})

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Offline store closed")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """
        Session that commits on success and rolls back on error.

        Raises:
            RuntimeError: If the store is not initialized.
        """
        if self._session_factory is None:
            raise RuntimeError("Offline store not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @staticmethod
    def _to_record(row: OfflineJob) -> OfflineRecord:
        """
        Decode a row.

        Raises:
            ValueError: The payload is not valid JSON.
            ValidationError: The decoded row does not form a record.
        """
        return OfflineRecord(
            id=row.id,
            type=row.kind,
            data=json.loads(row.payload),
            timestamp=_from_db(row.timestamp),
            status=OfflineStatus(row.status),
            attempts=row.attempts,
            max_attempts=row.max_attempts,
            claimed_at=_from_db(row.claimed_at),
        )

    def _decode(self, row: OfflineJob) -> OfflineRecord | None:
        try:
            return self._to_record(row)
        except (ValueError, ValidationError) as e:
            logger.warning(
                "Skipping unreadable offline record",
                extra={"record_id": row.id, "error": str(e)},
            )
            return None

    async def add(self, record: OfflineRecord) -> None:
        async with self._session() as session:
            await session.merge(
                OfflineJob(
                    id=record.id,
                    kind=record.type,
                    payload=json.dumps(record.data),
                    timestamp=_to_db(record.timestamp),
                    status=record.status.value,
                    attempts=record.attempts,
                    max_attempts=record.max_attempts,
                    claimed_at=_to_db(record.claimed_at),
                )
            )

    async def get(self, record_id: str) -> OfflineRecord | None:
        async with self._session() as session:
            row = await session.get(OfflineJob, record_id)
            return self._decode(row) if row is not None else None

    async def list_records(self) -> list[OfflineRecord]:
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(OfflineJob).order_by(OfflineJob.timestamp)
                )
                rows = result.scalars().all()
        except SQLAlchemyError:
            logger.exception("Offline store read failed, treating as empty")
            return []

        records = (self._decode(row) for row in rows)
        return [record for record in records if record is not None]

    async def claim(self, record_id: str, stale_after: float) -> OfflineRecord | None:
        now = _to_db(utcnow())
        cutoff = now - timedelta(seconds=stale_after)

        async with self._session() as session:
            result = await session.execute(
                update(OfflineJob)
                .where(
                    OfflineJob.id == record_id,
                    or_(
                        OfflineJob.status == OfflineStatus.PENDING.value,
                        and_(
                            OfflineJob.status == OfflineStatus.IN_FLIGHT.value,
                            or_(
                                OfflineJob.claimed_at.is_(None),
                                OfflineJob.claimed_at < cutoff,
                            ),
                        ),
                    ),
                )
                .values(status=OfflineStatus.IN_FLIGHT.value, claimed_at=now)
            )
            if result.rowcount != 1:
                return None

            row = await session.get(OfflineJob, record_id, populate_existing=True)
            record = self._decode(row) if row is not None else None
            if record is None:
                await session.rollback()
            return record

    async def release(self, record: OfflineRecord) -> None:
        async with self._session() as session:
            await session.execute(
                update(OfflineJob)
                .where(OfflineJob.id == record.id)
                .values(
                    status=OfflineStatus.PENDING.value,
                    attempts=record.attempts,
                    max_attempts=record.max_attempts,
                    claimed_at=None,
                )
            )

    async def remove(self, record_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(OfflineJob).where(OfflineJob.id == record_id)
            )
            return result.rowcount == 1

    async def count(self) -> int:
        async with self._session() as session:
            result = await session.execute(select(func.count()).select_from(OfflineJob))
            return result.scalar_one()


def create_store(url: str | None = None) -> OfflineStore:
    """
    Build the store for a deployment target.

    ``memory://`` gives a process-local store; anything else is a
    SQLAlchemy async URL.
    """
    url = url or get_settings().offline_store_url
    if url.startswith("memory://"):
        return MemoryOfflineStore()
    return SqlOfflineStore(url)
