# Waitlist Models
from waitlist.models.base import BaseModel
from waitlist.models.subscriber import SubscriberRow

__all__ = [
    "BaseModel",
    "SubscriberRow",
]
