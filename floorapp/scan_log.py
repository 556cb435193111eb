# floorapp/scan_log.py
"""Append-only log of raw scans, kept in a relational table until uploaded."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Protocol, Sequence

from sqlalchemy import Boolean, DateTime, Float, Integer, String, delete, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from floorapp.errors import FloorAPIError
from floorapp.schemas import ScanLogItem

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ScannedLot(Base):
    __tablename__ = "scanned_lots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


def _epoch_ms(ts: datetime) -> int:
    # sqlite hands datetimes back naive; they were written as UTC
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


class ScanLog:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    @classmethod
    def from_url(cls, database_url: str) -> "ScanLog":
        return cls(create_async_engine(database_url, echo=False))

    async def init(self) -> None:
        """Create the table if it does not exist yet."""

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def add_scan(self, code: str, quantity: float = 1, *, timestamp: datetime | None = None) -> int:
        code = (code or "").strip()
        if not code:
            raise ValueError("scan code is empty")
        row = ScannedLot(
            code=code,
            quantity=quantity,
            timestamp=timestamp or datetime.now(timezone.utc),
            synced=False,
        )
        async with self._sessions() as session:
            session.add(row)
            await session.commit()
            return row.id

    async def pending_scans(self) -> list[ScannedLot]:
        async with self._sessions() as session:
            result = await session.execute(
                select(ScannedLot).where(ScannedLot.synced.is_(False)).order_by(ScannedLot.id)
            )
            return list(result.scalars().all())

    async def all_scans(self) -> list[ScannedLot]:
        """Newest first."""

        async with self._sessions() as session:
            result = await session.execute(
                select(ScannedLot).order_by(ScannedLot.timestamp.desc(), ScannedLot.id.desc())
            )
            return list(result.scalars().all())

    async def mark_synced(self, ids: Iterable[int]) -> None:
        ids = [int(i) for i in ids]
        if not ids:
            return
        async with self._sessions() as session:
            await session.execute(update(ScannedLot).where(ScannedLot.id.in_(ids)).values(synced=True))
            await session.commit()

    async def delete_scan(self, scan_id: int) -> None:
        async with self._sessions() as session:
            await session.execute(delete(ScannedLot).where(ScannedLot.id == int(scan_id)))
            await session.commit()

    async def prune_synced(self) -> int:
        async with self._sessions() as session:
            result = await session.execute(delete(ScannedLot).where(ScannedLot.synced.is_(True)))
            await session.commit()
            return int(result.rowcount or 0)

    async def clear_all(self) -> None:
        async with self._sessions() as session:
            await session.execute(delete(ScannedLot))
            await session.commit()


class ScanUploader(Protocol):
    async def push_scans(self, scans: Sequence[ScanLogItem]) -> dict: ...


async def sync_scan_log(client: ScanUploader, log: ScanLog, *, device_id: str = "mobile-app-1") -> int:
    """Upload every pending scan in one call and mark them synced.

    Returns how many rows were uploaded. A rejected upload leaves the rows
    pending and re-raises.
    """

    pending = await log.pending_scans()
    if not pending:
        return 0

    items = [
        ScanLogItem(code=row.code, quantity=row.quantity, timestamp=_epoch_ms(row.timestamp), device_id=device_id)
        for row in pending
    ]
    try:
        await client.push_scans(items)
    except FloorAPIError:
        logger.warning("Scan log upload of %s row(s) failed", len(items))
        raise

    await log.mark_synced(row.id for row in pending)
    logger.info("Uploaded %s scan(s) from the scan log", len(items))
    return len(items)


__all__ = ["ScanLog", "ScanUploader", "ScannedLot", "sync_scan_log"]
