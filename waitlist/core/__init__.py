# Waitlist Core Module
from .config import Settings, get_settings, settings
from .database import Base, check_db_connection, create_engine_from_settings
from .logging import get_logger, setup_logging

__all__ = [
    "settings",
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "Base",
    "create_engine_from_settings",
    "check_db_connection",
]
