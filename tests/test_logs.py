import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from swarmflow.logs import LOG_LEVEL_ENV, configure_logging, resolve_level


def test_level_comes_from_argument_then_environment(monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "debug")

    assert resolve_level("info") == logging.INFO
    assert resolve_level() == logging.DEBUG


def test_default_level_is_warning(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)

    assert resolve_level() == logging.WARNING


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError, match="Unknown log level"):
        resolve_level("chatty")


def test_configure_logging_replaces_rich_handler():
    root = logging.getLogger()
    console = Console(record=True, width=120)

    configure_logging("INFO", console=console)
    configure_logging("INFO", console=console)
    logging.getLogger("swarmflow.test").info("memory manager ready")

    rich_handlers = [handler for handler in root.handlers if isinstance(handler, RichHandler)]
    assert len(rich_handlers) == 1
    assert "memory manager ready" in console.export_text()
    root.removeHandler(rich_handlers[0])
    root.setLevel(logging.WARNING)
