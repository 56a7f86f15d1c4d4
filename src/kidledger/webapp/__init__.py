"""KidLedger web application package (FastAPI + SQLModel)."""
from __future__ import annotations

from .application import app, create_app
from .persistence import SqlAchievementTracker, SqlStore, create_db_and_tables

__all__ = ["SqlAchievementTracker", "SqlStore", "app", "create_app", "create_db_and_tables"]
