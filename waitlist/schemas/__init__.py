# Waitlist Pydantic Schemas
from waitlist.schemas.subscriber import (
    AdminActionRequest,
    BroadcastResponse,
    JoinWaitlistRequest,
    LoginResponse,
    MergeResponse,
    StatusResponse,
    SubscriberListResponse,
    SubscriberResponse,
    UnsubscribeRequest,
)

__all__ = [
    "AdminActionRequest",
    "BroadcastResponse",
    "JoinWaitlistRequest",
    "LoginResponse",
    "MergeResponse",
    "StatusResponse",
    "SubscriberListResponse",
    "SubscriberResponse",
    "UnsubscribeRequest",
]
