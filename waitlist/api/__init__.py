# Waitlist API
from waitlist.api.router import api_router

__all__ = ["api_router"]
