"""Configuration module for the form engine."""

from .database import DatabaseSettings, get_database_settings
from .settings import EngineSettings, ResilienceSettings, get_settings

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "EngineSettings",
    "ResilienceSettings",
    "get_settings",
]
