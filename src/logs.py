"""
Logging for installer-digest:
- Rich console on stderr (default), so digests on stdout stay pipe-friendly.
- Optional JSON lines (for CI logs).
- Optional rotating file log.
- QueueHandler/QueueListener so worker threads never block on sinks.

Usage:
    from logs import init_logging, get_logger

    init_logging(level="DEBUG")
    log = get_logger("idg.cli")

Env vars:
    IDG_LOG_LEVEL   = DEBUG|INFO|WARNING|ERROR (default WARNING)
    IDG_LOG_JSON    = 0|1  (default 0)
    IDG_LOG_TO_FILE = 0|1  (default 0)
    IDG_LOG_FILE    = path to log file (default .idg/logs/idg.log)
"""

from __future__ import annotations

import atexit
import json
import logging
import os
import queue
import sys
from dataclasses import dataclass
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


_DEFAULT_FILE = Path(".idg/logs/idg.log")


@dataclass
class LogConfig:
    level: str = "WARNING"
    json: bool = False
    to_file: bool = False
    file_path: Path = _DEFAULT_FILE
    max_bytes: int = 2 * 1024 * 1024
    backup_count: int = 3


_CONSOLE = Console(stderr=True, highlight=False, soft_wrap=True)
_QUEUE: Optional[queue.Queue] = None
_LISTENER: Optional[QueueListener] = None
_INITIALIZED = False


class JsonFormatter(logging.Formatter):
    """One JSON object per record; keys are stable."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0") == "1"


def _resolve_config(
    level: Optional[str],
    json: Optional[bool],
    to_file: Optional[bool],
    file_path: Optional[Path],
) -> LogConfig:
    return LogConfig(
        level=(level or os.getenv("IDG_LOG_LEVEL") or "WARNING").upper(),
        json=json if json is not None else _env_flag("IDG_LOG_JSON"),
        to_file=to_file if to_file is not None else _env_flag("IDG_LOG_TO_FILE"),
        file_path=Path(os.getenv("IDG_LOG_FILE") or (file_path or _DEFAULT_FILE)),
    )


def _build_handlers(cfg: LogConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if cfg.json:
        console_handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler = RichHandler(
            console=_CONSOLE, show_time=True, show_path=False, markup=True
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(console_handler)

    if cfg.to_file:
        try:
            cfg.file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cfg.file_path,
                maxBytes=cfg.max_bytes,
                backupCount=cfg.backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            # File logging is optional; fall back to console only.
            print(f"idg: file logging disabled ({exc})", file=sys.stderr)
        else:
            file_handler.setFormatter(
                JsonFormatter()
                if cfg.json
                else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
            )
            handlers.append(file_handler)

    return handlers


def init_logging(
    level: Optional[str] = None,
    *,
    json: Optional[bool] = None,
    to_file: Optional[bool] = None,
    file_path: Optional[Path] = None,
) -> None:
    """
    Initialize process-wide logging once. Later calls only adjust the level.

    Arguments win over IDG_* env vars.
    """
    global _INITIALIZED, _QUEUE, _LISTENER

    cfg = _resolve_config(level, json, to_file, file_path)
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.WARNING))

    if _INITIALIZED:
        return

    if not any(isinstance(h, QueueHandler) for h in root.handlers):
        _QUEUE = queue.Queue(-1)
        root.addHandler(QueueHandler(_QUEUE))

    if _QUEUE is not None:
        _LISTENER = QueueListener(_QUEUE, *_build_handlers(cfg), respect_handler_level=True)
        _LISTENER.start()
        atexit.register(_stop_listener)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    _INITIALIZED = True


def _stop_listener() -> None:
    global _LISTENER
    if _LISTENER:
        _LISTENER.stop()
        _LISTENER = None


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Namespaced logger under "idg"; sinks are set up by init_logging()."""
    return logging.getLogger(name or "idg")
