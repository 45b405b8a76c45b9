"""
StreamGuard - Core Package
==========================

Configuration, logging and error types shared by every StreamGuard module.

DESIGN:
    - get_config() returns the same Config instance
    - logger is a global TreeLogger instance
"""

# =============================================================================
# Core Imports
# =============================================================================

from .config import Config, ConfigValidationError, get_config, load_config
from .errors import ClassifierError, InvalidInputError, ModerationError, PersistenceError
from .logger import logger, TreeLogger


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    # Config
    "Config",
    "ConfigValidationError",
    "get_config",
    "load_config",
    # Errors
    "ModerationError",
    "InvalidInputError",
    "ClassifierError",
    "PersistenceError",
    # Logger
    "logger",
    "TreeLogger",
]
