"""Console logging helper shared by the pipeline modules (optional UI hook).

Every record carries a ``unit_id`` field so failures in a grid of thousands of
tiles can be traced to the unit that produced them. Use :func:`unit_logger`
inside per-unit work; module-level records fall back to ``-``.
"""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_NAME = "binmap_viewer"


class _UnitIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "unit_id"):
            record.unit_id = "-"
        return True


class UnitLogger(logging.LoggerAdapter):
    """Adapter binding a unit id and, optionally, a tile mode to each record.

    The mode is the binarization signature of the tile (``none`` or
    ``bin:5,6``) and is prefixed to the message so raw and binarized failures
    of the same unit can be told apart.
    """

    def __init__(self, logger: logging.Logger, unit_id: str, mode: Optional[str] = None) -> None:
        super().__init__(logger, {"unit_id": unit_id})
        self.mode = mode

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        if self.mode is not None:
            msg = f"[{self.mode}] {msg}"
        return msg, kwargs


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for console output.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.

    Notes
    -----
    Records may carry ``extra={"unit_id": ...}``; a default of ``-`` is filled
    in otherwise so the shared format string always resolves.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(module)s unit=%(unit_id)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        handler.addFilter(_UnitIdFilter())
        base.addHandler(handler)
        base.propagate = False
    if name.startswith(f"{_LOGGER_NAME}."):
        name = name[len(_LOGGER_NAME) + 1 :]
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def unit_logger(logger: logging.Logger, unit_id: str, mode: Optional[str] = None) -> UnitLogger:
    """Return ``logger`` bound to one unit (and tile mode)."""
    return UnitLogger(logger, unit_id, mode)


def set_level(level: int) -> None:
    """Update log level for the base logger and all of its handlers."""
    base = logging.getLogger(_LOGGER_NAME)
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)


def attach_handler(handler: Optional[logging.Handler]) -> None:
    """Optionally attach an extra handler (e.g., a viewer log pane)."""
    if handler is None:
        return
    base = logging.getLogger(_LOGGER_NAME)
    if handler not in base.handlers:
        handler.addFilter(_UnitIdFilter())
        base.addHandler(handler)


def detach_handler(handler: Optional[logging.Handler]) -> None:
    """Remove a handler added with :func:`attach_handler`."""
    if handler is None:
        return
    logging.getLogger(_LOGGER_NAME).removeHandler(handler)
