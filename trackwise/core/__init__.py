"""Core module for the Trackwise backend."""

from .config import settings
from .database import get_db, engine, Base, SessionLocal

__all__ = [
    "settings",
    "get_db",
    "engine",
    "Base",
    "SessionLocal",
]
