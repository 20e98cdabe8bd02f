"""Pydantic schemas for the waitlist, admin and unsubscribe APIs."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from waitlist.services.subscriber_store import Subscriber


class JoinWaitlistRequest(BaseModel):
    """Public signup form."""

    name: str = ""
    email: str = ""


class AdminActionRequest(BaseModel):
    """POST body for /api/admin; which fields matter depends on ``action``."""

    action: str = ""
    password: str | None = None
    subject: str | None = None
    message: str | None = None
    rows: str | None = None


class UnsubscribeRequest(BaseModel):
    email: str = ""
    token: str = ""


class StatusResponse(BaseModel):
    status: Literal["success", "error"] = "success"
    message: str


class LoginResponse(BaseModel):
    status: Literal["success"] = "success"
    expires_in: int = Field(
        serialization_alias="expiresIn",
        description="Session lifetime in seconds",
    )


class SubscriberResponse(BaseModel):
    """Subscriber as exposed by the admin API."""

    id: str
    name: str
    email: str
    timestamp: datetime
    unsubscribed: bool

    @classmethod
    def from_subscriber(cls, subscriber: Subscriber) -> "SubscriberResponse":
        return cls(
            id=subscriber.id,
            name=subscriber.name,
            email=subscriber.email,
            timestamp=subscriber.created_at,
            unsubscribed=subscriber.unsubscribed,
        )


class SubscriberListResponse(BaseModel):
    status: Literal["success"] = "success"
    count: int
    subscribers: list[SubscriberResponse]


class BroadcastResponse(BaseModel):
    status: Literal["success"] = "success"
    sent: int
    failed: int


class MergeResponse(BaseModel):
    status: Literal["success"] = "success"
    count: int
