"""
ClaimCheck utilities module.
"""

from claimcheck.utils.config import Settings, get_project_root, get_settings, load_settings
from claimcheck.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "load_settings",
    "get_project_root",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "LogContext",
]
