"""Application logging setup.

Log files live in `data/logs/` (relative to CWD) and rotate daily through
TimedRotatingFileHandler; a console handler mirrors everything to stdout
for container logs.
"""
from __future__ import annotations

import glob
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler

_LOG_DIR = os.path.join(os.getcwd(), "data", "logs")
_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers we installed, so reconfiguration replaces them instead of stacking.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None


def _ensure_log_dir() -> str:
    os.makedirs(_LOG_DIR, exist_ok=True)
    return _LOG_DIR


def setup_logging(level: str = "INFO", retention_days: int = 30) -> None:
    """Configure the root logger: rotating file handler + console handler."""
    global _file_handler, _console_handler

    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str, logging.INFO)

    retention_days = max(1, min(365, int(retention_days or 30)))

    root = logging.getLogger()

    if _file_handler and _file_handler in root.handlers:
        root.removeHandler(_file_handler)
        try:
            _file_handler.close()
        except Exception:
            pass
    if _console_handler and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    log_dir = _ensure_log_dir()
    log_file = os.path.join(log_dir, "adlookup.log")

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    fh = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    fh.suffix = "%Y-%m-%d"
    fh.setLevel(log_level)
    fh.setFormatter(formatter)
    _file_handler = fh

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    _console_handler = ch

    root.setLevel(log_level)
    root.addHandler(fh)
    root.addHandler(ch)

    _cleanup_old_logs(log_dir, retention_days)

    # ldap3 and uvicorn access logs are too chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("ldap3").setLevel(max(log_level, logging.WARNING))

    logging.getLogger("adlookup").info(
        "Logging configured: level=%s, retention=%d days", level_str, retention_days,
    )


def _cleanup_old_logs(log_dir: str, retention_days: int) -> None:
    """Remove rotated log files older than retention_days."""
    cutoff = time.time() - (retention_days * 86400)
    for f in glob.glob(os.path.join(log_dir, "adlookup.log.*")):
        try:
            if os.path.getmtime(f) < cutoff:
                os.remove(f)
        except OSError:
            pass
