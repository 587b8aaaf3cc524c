"""
Shared logging setup. Modules call get_logger("name") and get a child of the
"filedrop" logger, configured once from settings.log_level.
"""
from __future__ import annotations
import logging

from .config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False

def _configure() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger("filedrop")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
    _configured = True

def get_logger(name: str) -> logging.Logger:
    _configure()
    return logging.getLogger(f"filedrop.{name}")
