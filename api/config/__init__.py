"""Configuration module for the RFP Insight API."""

from .settings import Settings, get_settings
from .database import Base, Database, get_db

__all__ = ["Settings", "get_settings", "Base", "Database", "get_db"]
