"""Database package"""

from boinvit.db.session import AsyncSessionLocal, engine, get_db
from boinvit.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
