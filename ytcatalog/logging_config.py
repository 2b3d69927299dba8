"""Logging setup shared by the CLI and the engine."""

import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "ytcatalog"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single Rich handler to the package logger."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers:
        if isinstance(handler, RichHandler):
            handler.setLevel(root.level)
            return root

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(root.level)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Get a child of the package logger."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
