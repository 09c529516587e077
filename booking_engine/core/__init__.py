"""
Core module - configuration, database and response formatting.
"""
from .config import configure_logging, get_settings, Settings
from .db import (
    AsyncSessionLocal,
    Base,
    UTCDateTime,
    build_engine,
    build_session_factory,
    engine,
    utcnow,
)
from .responses import (
    ErrorCodes,
    error_response,
    success_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Database
    "AsyncSessionLocal",
    "Base",
    "UTCDateTime",
    "build_engine",
    "build_session_factory",
    "engine",
    "utcnow",
    # Responses
    "ErrorCodes",
    "error_response",
    "success_response",
]
