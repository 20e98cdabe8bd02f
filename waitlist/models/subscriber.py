"""Subscriber model for the relational store backend."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from waitlist.models.base import BaseModel


class SubscriberRow(BaseModel):
    """A waitlist subscriber.

    The email column holds the normalized (trimmed, lowercased) address and
    is unique, so the database itself guarantees one record per email.
    Rows are never deleted; opting out flips ``unsubscribed``.
    """

    __tablename__ = "subscribers"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    unsubscribed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<SubscriberRow {self.email}>"
