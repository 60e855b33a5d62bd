"""Shared modules for compose-e2e.

Functionality used by both the harness engine and the CLI:
- Logging (structlog configuration)
- Paths (temporary directory layout)
"""

from .logging import configure_logging, get_logger
from .paths import TEMP_PREFIX, make_temp_dir, remove_temp_dir

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Paths
    "TEMP_PREFIX",
    "make_temp_dir",
    "remove_temp_dir",
]
