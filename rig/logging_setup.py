"""Logging configuration for the rig command line."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional


def configure_logging(level: Optional[str] = None, default_level: str = "WARNING") -> int:
    """Configure process-wide logging and return the resolved level.

    An explicit ``level`` (from ``--log-level``) wins over ``LOG_LEVEL``;
    with neither, ``default_level`` is used.  At INFO the boot sequence,
    group creation and effect linking are logged step by step.
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or default_level).upper()
    resolved = logging.getLevelName(level_name)
    invalid_level = None
    if not isinstance(resolved, int):
        invalid_level = level_name
        resolved = logging.getLevelName(default_level.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING

    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    if invalid_level is not None:
        logging.getLogger(__name__).warning(
            "Invalid log level '%s'; using %s", invalid_level, logging.getLevelName(resolved)
        )

    return resolved
