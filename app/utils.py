"""
Shared helpers.
"""
import logging
import sys

from app.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    root = logging.getLogger("app")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the application's logger hierarchy.

    Modules call this with ``__name__``; scripts and ``server.py`` get mapped under
    ``app`` so they share the same handler.
    """
    _configure_root()
    if name != "app" and not name.startswith("app."):
        name = f"app.{name}"
    return logging.getLogger(name)
