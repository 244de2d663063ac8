from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "dlprov"
LOG_FORMAT = "%(asctime)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SUCCESS_MARKER = "Provisioning completed successfully"

_logger = logging.getLogger(LOGGER_NAME)


def configure(log_path: str, to_stderr: bool = True) -> logging.Logger:
    """Attach the install log (append-only) and optionally a stderr echo.

    Safe to call more than once; previous handlers are closed and replaced.
    """
    for h in list(_logger.handlers):
        _logger.removeHandler(h)
        h.close()

    parent = os.path.dirname(log_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    fh.setFormatter(fmt)
    _logger.addHandler(fh)

    if to_stderr:
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(fmt)
        _logger.addHandler(sh)

    _logger.setLevel(logging.INFO)
    _logger.propagate = False
    return _logger


def log_event(level: str, message: str, step: str | None = None, resource: str | None = None) -> None:
    level = level.upper()
    parts = []
    if level != "INFO":
        parts.append(level)
    if step:
        parts.append(f"[{step}]")
    if resource:
        parts.append(f"({resource})")
    parts.append(message)
    _logger.log(getattr(logging, level if level != "WARN" else "WARNING", logging.INFO), " ".join(parts))
