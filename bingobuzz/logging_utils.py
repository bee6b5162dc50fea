"""Logging setup for the BingoBuzz CLI.

``setup_logging`` wires a rotating log file plus an optional console stream
onto one logger. The ``--log-mode`` presets shift those targets:

- quiet: the console only shows warnings and errors;
- normal: console and file follow ``--log-level``;
- perf: everything drops to DEBUG and the engine records clip start timings
  with :class:`PerfTracer`.

Per-step fade ramp lines (``[audio.ramp]``) are noisy and stay hidden unless
``BINGOBUZZ_AUDIO_TRACE`` is set or perf mode is on.
"""

from __future__ import annotations

import contextlib
import json
import logging
import logging.handlers
import os
import time
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from .platform_paths import get_user_data_dir

LOG_FILENAME = "bingobuzz.log"
AUDIO_TRACE_ENV_VAR = "BINGOBUZZ_AUDIO_TRACE"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 3


class LogMode(str, Enum):
    QUIET = "quiet"
    NORMAL = "normal"
    PERF = "perf"


_active_mode = LogMode.NORMAL


def set_log_mode(mode: LogMode | str | None) -> LogMode:
    """Switch the process-wide preset; unknown names fall back to normal."""
    global _active_mode
    try:
        _active_mode = LogMode(mode.lower() if isinstance(mode, str) else mode or LogMode.NORMAL)
    except ValueError:
        _active_mode = LogMode.NORMAL
    return _active_mode


def get_log_mode() -> LogMode:
    return _active_mode


def is_perf_logging_enabled() -> bool:
    return _active_mode is LogMode.PERF


def get_default_log_path() -> Path:
    """Log file inside the per-user BingoBuzz directory, or the cwd if that is read-only."""
    folder = get_user_data_dir()
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError:
        folder = Path.cwd()
    return folder / LOG_FILENAME


class _RampTraceFilter(logging.Filter):
    """Hides ``[audio.ramp]`` records unless ramp tracing is switched on."""

    def filter(self, record: logging.LogRecord) -> bool:
        if "[audio.ramp]" not in str(record.msg):
            return True
        flag = os.environ.get(AUDIO_TRACE_ENV_VAR, "").strip().lower()
        return flag in {"1", "true", "yes", "on"} or is_perf_logging_enabled()


class _JsonLineFormatter(logging.Formatter):
    """One JSON object per record, for piping the log into other tools."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    *,
    level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    json_format: bool = False,
    logger_name: Optional[str] = None,
    log_mode: LogMode | str | None = None,
    add_console: bool = True,
) -> logging.Logger:
    """Attach file and console handlers to ``logger_name`` (the root logger by default).

    Calling it again only re-levels the existing handlers, so the CLI and
    tests can reconfigure without stacking duplicates.
    """
    mode = set_log_mode(log_mode) if log_mode is not None else get_log_mode()
    file_level = logging.DEBUG if mode is LogMode.PERF else _level_number(level)
    console_level = max(logging.WARNING, file_level) if mode is LogMode.QUIET else file_level

    logger = logging.getLogger(logger_name)
    logger.setLevel(file_level)
    if not any(isinstance(f, _RampTraceFilter) for f in logger.filters):
        logger.addFilter(_RampTraceFilter())

    if logger.handlers:
        for handler in logger.handlers:
            is_file = isinstance(handler, logging.FileHandler)
            handler.setLevel(file_level if is_file else console_level)
    else:
        formatter = (
            _JsonLineFormatter()
            if json_format
            else logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
        )
        path = Path(log_file) if log_file else get_default_log_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
            )
        except OSError as exc:
            # Console-only logging beats refusing to start
            logging.getLogger(__name__).warning("log file %s unavailable: %s", path, exc)
        else:
            file_handler.setLevel(file_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        if add_console:
            console = logging.StreamHandler()
            console.setLevel(console_level)
            console.setFormatter(formatter)
            logger.addHandler(console)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(logging.WARNING, file_level))
    return logger


class PerfTracer:
    """Collects named timing spans for one clip start; dumped at DEBUG in perf mode."""

    def __init__(self, label: str, *, enabled: Optional[bool] = None) -> None:
        self.label = label
        self.enabled = is_perf_logging_enabled() if enabled is None else bool(enabled)
        self._spans: list[dict[str, Any]] = []

    @contextlib.contextmanager
    def span(self, name: str, *, category: str = "misc", metadata: Optional[dict[str, Any]] = None) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        info = dict(metadata or {})
        started = time.perf_counter()
        try:
            yield
        except BaseException as exc:
            info["error"] = type(exc).__name__
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self._spans.append(
                {"name": name, "category": category, "duration_ms": round(elapsed_ms, 3), "metadata": info}
            )

    def snapshot(self) -> dict[str, Any]:
        totals: dict[str, float] = {}
        for entry in self._spans:
            totals[entry["category"]] = round(totals.get(entry["category"], 0.0) + entry["duration_ms"], 3)
        return {
            "label": self.label,
            "spans": list(self._spans),
            "categories": totals,
            "span_count": len(self._spans),
        }

    def clear(self) -> None:
        self._spans.clear()

    def dump_json(self) -> str:
        return json.dumps(self.snapshot(), ensure_ascii=False)
