"""Models package - imports all models for the application"""
from ..extensions import db

from .profile import Profile
from .ordinance import Ordinance

__all__ = [
    "db",
    "Profile",
    "Ordinance",
]
