"""
Access Control Configuration Module

Provides centralized configuration management using Pydantic Settings.
"""

from .logging import configure_logging
from .settings import FieldPermissionDefault, Settings, get_settings

__all__ = ["Settings", "FieldPermissionDefault", "configure_logging", "get_settings"]
