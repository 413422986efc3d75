"""Logging setup shared by the CLI and embedding applications."""

from __future__ import annotations

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVEL_ENV = "SWARMFLOW_LOG_LEVEL"
DEFAULT_LEVEL = "WARNING"


def resolve_level(level: Optional[str] = None) -> int:
    name = (level or os.getenv(LOG_LEVEL_ENV) or DEFAULT_LEVEL).upper()
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{name}'")
    return value


def configure_logging(level: Optional[str] = None, *, console: Optional[Console] = None) -> None:
    """Route every ``swarmflow`` logger through a single rich handler.

    The level comes from ``level``, else ``SWARMFLOW_LOG_LEVEL``, else WARNING.
    Calling it again replaces the handler instead of stacking another one.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(console=console or Console(stderr=True), rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
