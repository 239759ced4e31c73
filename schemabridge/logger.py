"""
schemabridge/logger.py
----------------------
Package-wide logging configuration.

Design Decisions:
    * A single root logger ("schemabridge") is configured once at import time.
    * All modules obtain a child logger via ``get_logger(__name__)``.
    * Optional file handler appends lines to a persistent log file
      (path set via LOG_FILE env variable).
    * Migration code wraps its logger with ``bind_context`` so every line
      carries the job id, phase and table it belongs to.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping

from schemabridge.config import CONFIG, get_log_level

_ROOT_LOGGER_NAME = "schemabridge"
_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def _configure_root_logger() -> None:
    """One-time setup of the root 'schemabridge' logger and its handlers."""
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(get_log_level())

    # --- Console handler ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(get_log_level())
    console_handler.setFormatter(
        logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )
    root.addHandler(console_handler)

    # --- Optional file handler ---
    if CONFIG.log.log_file:
        log_path = Path(CONFIG.log.log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)  # Log everything to file
            file_handler.setFormatter(
                logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT)
            )
            root.addHandler(file_handler)
        except OSError as exc:
            root.warning("Could not create log file '%s': %s", log_path, exc)


_configure_root_logger()


def get_logger(name: str) -> logging.Logger:
    """
    Return a child logger scoped to the given name.

    Args:
        name: Typically ``__name__`` of the calling module.

    Returns:
        A :class:`logging.Logger` instance under the 'schemabridge' hierarchy.
    """
    if name.startswith(_ROOT_LOGGER_NAME + ".") or name == _ROOT_LOGGER_NAME:
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[job=… phase=… table=…]``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        parts = [f"{k}={v}" for k, v in self.extra.items() if v is not None]
        if not parts:
            return msg, kwargs
        return f"[{' '.join(parts)}] {msg}", kwargs


def bind_context(logger: logging.Logger | ContextAdapter, **context: Any) -> ContextAdapter:
    """
    Return a logger adapter carrying *context* on every message.

    Binding onto an existing adapter merges the contexts, later keys win::

        job_log = bind_context(log, job=job_id, phase="analyzing")
        table_log = bind_context(job_log, table="CUSTOMERS")
        table_log.info("Streaming rows")
        # [job=… phase=analyzing table=CUSTOMERS] Streaming rows
    """
    if isinstance(logger, ContextAdapter):
        merged = {**logger.extra, **context}
        return ContextAdapter(logger.logger, merged)
    return ContextAdapter(logger, dict(context))
