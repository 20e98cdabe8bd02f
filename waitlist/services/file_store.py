"""Flat-file subscriber store: the whole list as one JSON document."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from waitlist.core.logging import get_logger
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

logger = get_logger("store.file")

# Stand-in for rows saved without a usable timestamp; sorts them oldest
UNKNOWN_TIMESTAMP = datetime.fromtimestamp(0, UTC)


class StoreFileCorruptedError(RuntimeError):
    """The store document exists but is not a JSON list."""


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return UNKNOWN_TIMESTAMP


def _sort_newest_first(records: list[Subscriber]) -> list[Subscriber]:
    return sorted(records, key=lambda s: (s.created_at, s.id), reverse=True)


def normalize_file_rows(rows: Iterable[Mapping[str, Any]]) -> list[Subscriber]:
    """Coerce raw document rows into records, one per email (newest wins)."""
    by_email: dict[str, Subscriber] = {}
    for raw in rows:
        if not isinstance(raw, Mapping):
            continue
        email = normalize_email(raw.get("email"))
        if not email or "@" not in email:
            continue
        record = Subscriber(
            id=str(raw.get("id") or uuid.uuid4()),
            name=normalize_name(raw.get("name")),
            email=email,
            created_at=_parse_timestamp(raw.get("timestamp") or raw.get("created_at")),
            unsubscribed=bool(raw.get("unsubscribed", False)),
        )
        previous = by_email.get(email)
        if previous is None or previous.created_at < record.created_at:
            by_email[email] = record
    return _sort_newest_first(list(by_email.values()))


class FileSubscriberStore(SubscriberStore):
    """JSON-document store for low-traffic, single-process deployments.

    Each mutation is a read-modify-write of the entire document, replaced
    atomically. Writers inside this process are serialized by an asyncio
    lock; separate processes sharing the file are not coordinated.
    """

    backend = "file"

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # --- document I/O (runs in a worker thread) ---

    def _load(self) -> list[Subscriber]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            logger.error(f"Subscriber file {self.path} is not valid JSON: {e}")
            raise StoreFileCorruptedError(f"Subscriber file {self.path} is not valid JSON") from e
        if not isinstance(data, list):
            raise StoreFileCorruptedError(f"Subscriber file {self.path} must contain a JSON list")
        return normalize_file_rows(data)

    def _save(self, records: list[Subscriber]) -> None:
        payload = json.dumps([r.to_dict() for r in _sort_newest_first(records)], indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _read(self) -> list[Subscriber]:
        return await asyncio.to_thread(self._load)

    async def _write(self, records: list[Subscriber]) -> None:
        await asyncio.to_thread(self._save, records)

    # --- SubscriberStore ---

    async def get_all_subscribers(self) -> list[Subscriber]:
        return await self._read()

    async def find_by_email(self, email: str) -> Subscriber | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        for record in await self._read():
            if record.email == normalized:
                return record
        return None

    async def add_or_resubscribe(self, name: str, email: str) -> AddResult:
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            return AddResult("invalid")

        async with self._lock:
            records = await self._read()
            for i, record in enumerate(records):
                if record.email != normalized:
                    continue
                if record.active:
                    return AddResult("duplicate")
                records[i] = replace(
                    record,
                    name=normalize_name(name),
                    created_at=datetime.now(UTC),
                    unsubscribed=False,
                )
                await self._write(records)
                return AddResult("resubscribed")

            records.append(
                Subscriber(
                    id=str(uuid.uuid4()),
                    name=normalize_name(name),
                    email=normalized,
                    created_at=datetime.now(UTC),
                )
            )
            await self._write(records)
            return AddResult("created")

    async def merge_subscribers(
        self,
        rows: Iterable[Mapping[str, object] | Sequence[object] | MergeRow],
    ) -> MergeResult:
        incoming = prepare_merge_rows(rows)

        async with self._lock:
            records = await self._read()
            index = {r.email: i for i, r in enumerate(records)}
            now = datetime.now(UTC)
            for row in incoming:
                if row.email in index:
                    i = index[row.email]
                    records[i] = replace(records[i], name=row.name)
                else:
                    index[row.email] = len(records)
                    records.append(
                        Subscriber(
                            id=str(uuid.uuid4()),
                            name=row.name,
                            email=row.email,
                            created_at=now,
                        )
                    )
            if incoming:
                await self._write(records)
            return MergeResult(count=len(records))

    async def unsubscribe_email(self, email: str) -> UnsubscribeResult:
        normalized = normalize_email(email)
        if not normalized:
            return UnsubscribeResult(ok=False, message="Invalid email")

        async with self._lock:
            records = await self._read()
            for i, record in enumerate(records):
                if record.email == normalized:
                    if not record.unsubscribed:
                        records[i] = replace(record, unsubscribed=True)
                        await self._write(records)
                    return UnsubscribeResult(ok=True)
            return UnsubscribeResult(ok=False, message="Subscriber not found")
