"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from studypal.db.models.profile import Profile
from studypal.db.models.daily_usage import DailyUsage

__all__ = [
    "Profile",
    "DailyUsage",
]
