# analytics_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .candidate import Candidate
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "Candidate",
    "User",
]
