"""Shared package for Vocalizz services."""

from .config import PricingPolicy, Settings, get_settings
from .db import Base, SessionLocal, engine, init_db, session_scope

__all__ = [
    "PricingPolicy",
    "Settings",
    "get_settings",
    "Base",
    "SessionLocal",
    "engine",
    "init_db",
    "session_scope",
]
