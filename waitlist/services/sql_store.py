"""Relational subscriber store backed by async SQLAlchemy."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from waitlist.core.database import Base, create_session_maker
from waitlist.core.logging import get_logger
from waitlist.models.base import utcnow
from waitlist.models.subscriber import SubscriberRow
from waitlist.services.email_validator import is_valid_email, normalize_email
from waitlist.services.subscriber_store import (
    AddResult,
    MergeResult,
    MergeRow,
    Subscriber,
    SubscriberStore,
    UnsubscribeResult,
    normalize_name,
    prepare_merge_rows,
)

logger = get_logger("store.sql")

# Rows per multi-row upsert statement
MERGE_BATCH_SIZE = 500


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _to_subscriber(row: SubscriberRow) -> Subscriber:
    return Subscriber(
        id=str(row.id),
        name=row.name,
        email=row.email,
        created_at=_as_utc(row.created_at),
        unsubscribed=bool(row.unsubscribed),
    )


class SqlSubscriberStore(SubscriberStore):
    """Store using a unique email column and dialect upserts.

    Uniqueness and upsert atomicity come from the database, so concurrent
    signups for the same address cannot create two records.
    """

    backend = "sql"

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_maker = create_session_maker(engine)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def _insert(self) -> Any:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Upserts are not supported for dialect {dialect!r}")
        return insert(SubscriberRow.__table__)

    async def initialize(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all, tables=[SubscriberRow.__table__])
            self._initialized = True
            logger.info("Subscriber table ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def get_all_subscribers(self) -> list[Subscriber]:
        await self.initialize()
        async with self._session_maker() as session:
            result = await session.execute(
                select(SubscriberRow).order_by(
                    SubscriberRow.created_at.desc(), SubscriberRow.id.desc()
                )
            )
            return [_to_subscriber(row) for row in result.scalars()]

    async def find_by_email(self, email: str) -> Subscriber | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        await self.initialize()
        async with self._session_maker() as session:
            row = await session.scalar(
                select(SubscriberRow).where(SubscriberRow.email == normalized).limit(1)
            )
            return _to_subscriber(row) if row is not None else None

    async def add_or_resubscribe(self, name: str, email: str) -> AddResult:
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            return AddResult("invalid")
        clean_name = normalize_name(name)

        await self.initialize()
        async with self._session_maker() as session:
            existing = await session.scalar(
                select(SubscriberRow).where(SubscriberRow.email == normalized).limit(1)
            )
            if existing is not None and not existing.unsubscribed:
                return AddResult("duplicate")

            if existing is not None:
                result = await session.execute(
                    update(SubscriberRow)
                    .where(
                        SubscriberRow.email == normalized,
                        SubscriberRow.unsubscribed.is_(True),
                    )
                    .values(name=clean_name, unsubscribed=False, updated_at=utcnow())
                )
                await session.commit()
                # Zero rows: a concurrent request reactivated it first
                return AddResult("resubscribed" if result.rowcount else "duplicate")

            now = utcnow()
            stmt = (
                self._insert()
                .values(
                    id=uuid.uuid4(),
                    name=clean_name,
                    email=normalized,
                    unsubscribed=False,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["email"])
            )
            result = await session.execute(stmt)
            await session.commit()
            # Zero rows: lost the race against a concurrent insert
            return AddResult("created" if result.rowcount else "duplicate")

    async def merge_subscribers(
        self,
        rows: Iterable[Mapping[str, object] | Sequence[object] | MergeRow],
    ) -> MergeResult:
        incoming = prepare_merge_rows(rows)

        await self.initialize()
        async with self._session_maker() as session:
            now = utcnow()
            for start in range(0, len(incoming), MERGE_BATCH_SIZE):
                batch = incoming[start : start + MERGE_BATCH_SIZE]
                stmt = self._insert().values(
                    [
                        {
                            "id": uuid.uuid4(),
                            "name": row.name,
                            "email": row.email,
                            "unsubscribed": False,
                            "created_at": now,
                            "updated_at": now,
                        }
                        for row in batch
                    ]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["email"],
                    set_={"name": stmt.excluded.name, "updated_at": now},
                )
                await session.execute(stmt)
            await session.commit()

            count = await session.scalar(select(func.count()).select_from(SubscriberRow))
            return MergeResult(count=int(count or 0))

    async def unsubscribe_email(self, email: str) -> UnsubscribeResult:
        normalized = normalize_email(email)
        if not normalized:
            return UnsubscribeResult(ok=False, message="Invalid email")

        await self.initialize()
        async with self._session_maker() as session:
            result = await session.execute(
                update(SubscriberRow)
                .where(SubscriberRow.email == normalized)
                .values(unsubscribed=True, updated_at=utcnow())
            )
            await session.commit()
            if not result.rowcount:
                return UnsubscribeResult(ok=False, message="Subscriber not found")
            return UnsubscribeResult(ok=True)
