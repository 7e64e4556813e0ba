"""
Central logging for PlanSync.

Three sinks hang off the `plansync` logger tree:
  - stderr console (INFO by default)
  - logs/app.log, rotated at midnight UTC, 14 days kept (DEBUG)
  - logs/YYYY-MM-DD/<action>_<run_id>.log, one file per run (DEBUG)

Every sink masks client secrets and tokens. Timestamps are UTC.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | run=%(run_id)s action=%(action)s | %(message)s"
APP_LOG = "app.log"
REDACTED = "***REDACTED***"


class MaskSecretsFilter(logging.Filter):
    """Redact bearer tokens, client secrets and passwords from message and args."""

    _patterns = (
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(client[_-]?secret\s*[=:]\s*)([^,\s&]+)", re.IGNORECASE),
        re.compile(r"(access[_-]?token\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    )

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1" + REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        # module loggers outside a run have no run context
        record.__dict__.setdefault("run_id", "-")
        record.__dict__.setdefault("action", "-")
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        return True


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _prepare(handler: logging.Handler, level: int) -> logging.Handler:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime  # type: ignore[assignment]
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(MaskSecretsFilter())
    return handler


def _install_base_handlers(base: logging.Logger, base_dir: str, console_level: str, file_level: str) -> None:
    """
    Leave `base` with exactly one stderr handler and one app.log handler
    rooted in `base_dir`. The stderr stream is rebound on every call since
    test runners swap sys.stderr between runs.
    """
    os.makedirs(base_dir, exist_ok=True)
    app_log = os.path.abspath(os.path.join(base_dir, APP_LOG))

    keep_rotating = False
    for h in list(base.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler) and h.baseFilename == app_log:
            keep_rotating = True
            continue
        if type(h) is logging.StreamHandler or isinstance(h, logging.handlers.TimedRotatingFileHandler):
            base.removeHandler(h)
            h.close()

    base.addHandler(_prepare(logging.StreamHandler(stream=sys.stderr), _level(console_level, logging.INFO)))
    if not keep_rotating:
        rotating = logging.handlers.TimedRotatingFileHandler(
            app_log, when="midnight", backupCount=14, encoding="utf-8", utc=True,
        )
        base.addHandler(_prepare(rotating, _level(file_level, logging.DEBUG)))


def build_logger(
    *,
    name: str = "plansync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
) -> logging.LoggerAdapter:
    """Configure the `name` logger tree for one run and return its adapter.

    The per-run child `<name>.<action>.<run_id>` owns the dated run file and
    propagates to `name`, which owns the console and app.log sinks.
    """
    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _install_base_handlers(base, base_dir, console_level, file_level)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True
    if not child.handlers:
        dated_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
        os.makedirs(dated_dir, exist_ok=True)
        run_file = logging.FileHandler(os.path.join(dated_dir, f"{action}_{run_id}.log"), encoding="utf-8")
        child.addHandler(_prepare(run_file, _level(file_level, logging.DEBUG)))

    adapter = logging.LoggerAdapter(child, {"run_id": run_id, "action": action})
    adapter.debug("Logger initialised")
    return adapter


def close_logger(adapter: logging.LoggerAdapter) -> None:
    """Detach and close the per-run file handler once the run is over."""
    child = adapter.logger
    for h in list(child.handlers):
        child.removeHandler(h)
        h.close()
