"""Subscriber store interface and backend factory.

Two implementations share one behavioural contract:

- ``FileSubscriberStore`` keeps every record in a single JSON document.
- ``SqlSubscriberStore`` keeps records in the ``subscribers`` table.

Both return identical statuses, order listings newest-first, keep exactly
one record per normalized email, and merge idempotently. The backend is
chosen once at startup by ``create_subscriber_store``.
"""

from __future__ import annotations

import abc
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from waitlist.core.config import Settings
from waitlist.core.logging import get_logger
from waitlist.services.email_validator import is_valid_email, normalize_email

logger = get_logger("store")

DEFAULT_NAME = "Subscriber"

AddStatus = Literal["invalid", "duplicate", "created", "resubscribed"]


@dataclass(frozen=True)
class Subscriber:
    """A subscriber record as seen by handlers, independent of backend."""

    id: str
    name: str
    email: str
    created_at: datetime
    unsubscribed: bool = False

    @property
    def active(self) -> bool:
        return not self.unsubscribed

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "timestamp": self.created_at.isoformat(),
            "unsubscribed": self.unsubscribed,
        }


@dataclass(frozen=True)
class AddResult:
    status: AddStatus


@dataclass(frozen=True)
class MergeResult:
    count: int


@dataclass(frozen=True)
class UnsubscribeResult:
    ok: bool
    message: str | None = None


@dataclass(frozen=True)
class MergeRow:
    name: str
    email: str


def normalize_name(name: object) -> str:
    cleaned = str(name or "").strip()
    return cleaned or DEFAULT_NAME


def prepare_merge_rows(
    rows: Iterable[Mapping[str, object] | Sequence[object] | MergeRow],
) -> list[MergeRow]:
    """Normalize and de-duplicate a merge batch.

    Rows with an invalid email are dropped. When an email repeats within the
    batch the last occurrence wins; output keeps first-seen order.
    """
    by_email: dict[str, MergeRow] = {}
    for raw in rows:
        if isinstance(raw, MergeRow):
            name, email = raw.name, raw.email
        elif isinstance(raw, Mapping):
            name, email = raw.get("name"), raw.get("email")
        else:
            name, email = raw[0], raw[1]

        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            continue
        by_email[normalized] = MergeRow(name=normalize_name(name), email=normalized)
    return list(by_email.values())


class SubscriberStore(abc.ABC):
    """Persistence contract for subscriber records."""

    backend: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the backend (idempotent)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abc.abstractmethod
    async def get_all_subscribers(self) -> list[Subscriber]:
        """All records, newest first."""

    @abc.abstractmethod
    async def find_by_email(self, email: str) -> Subscriber | None: ...

    @abc.abstractmethod
    async def add_or_resubscribe(self, name: str, email: str) -> AddResult:
        """Create a record, or reactivate an unsubscribed one.

        Returns ``invalid`` for a bad email, ``duplicate`` when an active
        record exists, ``resubscribed`` when an unsubscribed record was
        reactivated and ``created`` otherwise.
        """

    @abc.abstractmethod
    async def merge_subscribers(
        self,
        rows: Iterable[Mapping[str, object] | Sequence[object] | MergeRow],
    ) -> MergeResult:
        """Upsert a batch: insert absent emails, update the name of existing
        ones (leaving the unsubscribed flag alone). Returns the total count."""

    @abc.abstractmethod
    async def unsubscribe_email(self, email: str) -> UnsubscribeResult: ...

    async def get_active_subscribers(self) -> list[Subscriber]:
        return [s for s in await self.get_all_subscribers() if s.active]


def create_subscriber_store(settings: Settings) -> SubscriberStore:
    """Pick the backend from configuration: SQL when a database URL is set."""
    if settings.uses_database:
        from waitlist.core.database import create_engine_from_settings
        from waitlist.services.sql_store import SqlSubscriberStore

        logger.info("Using relational subscriber store")
        return SqlSubscriberStore(create_engine_from_settings(settings))

    from waitlist.services.file_store import FileSubscriberStore

    logger.info(f"Using file subscriber store at {settings.waitlist_file}")
    return FileSubscriberStore(settings.waitlist_file)
