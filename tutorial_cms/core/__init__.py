# Tutorial CMS Core Module
from .config import Settings, get_settings
from .database import Base, Database
from .errors import AppError, ConfigurationError
from .logging import setup_logging

__all__ = [
    "AppError",
    "Base",
    "ConfigurationError",
    "Database",
    "Settings",
    "get_settings",
    "setup_logging",
]
