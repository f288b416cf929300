"""Centralized logging configuration for companion-exec."""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

_APP_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
_APP_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_RESULT_LOGGER_NAME = "companion_exec.command_results"


def setup_logging(log_dir: Path | str | None = None, app_log_name: str = "companion_exec.log") -> None:
    """Configure logging for the entire application.

    Call once at startup, before the UI or the host server is created.
    """
    if log_dir is None:
        from companion_exec.config import get_config
        log_dir = get_config().log.dir
    base_dir = Path(log_dir).expanduser()
    base_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Daily rotating file handler for all application logs
    app_handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(base_dir / app_log_name),
        when="midnight",
        interval=1,
        backupCount=14,
        encoding="utf-8",
    )
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(
        logging.Formatter(_APP_LOG_FORMAT, datefmt=_APP_LOG_DATE_FORMAT)
    )
    root.addHandler(app_handler)

    # Dedicated command-result logger, JSON Lines, size-rotated
    result_logger = logging.getLogger(_RESULT_LOGGER_NAME)
    result_logger.propagate = False
    result_handler = logging.handlers.RotatingFileHandler(
        filename=str(base_dir / "command_results.jsonl"),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    result_handler.setLevel(logging.DEBUG)
    result_handler.setFormatter(logging.Formatter("%(message)s"))
    result_logger.addHandler(result_handler)


def log_command_result(
    command: str | None,
    request_id: int | None = None,
    output: Dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    """Log one finished command as a JSON Lines entry."""
    result_logger = logging.getLogger(_RESULT_LOGGER_NAME)
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "command": command,
        "exit_code": (output or {}).get("exit_code"),
        "stdout_len": len((output or {}).get("stdout") or ""),
        "stderr_len": len((output or {}).get("stderr") or ""),
        "error": error,
    }
    try:
        result_logger.info(json.dumps(entry, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        result_logger.info(
            json.dumps({"command": str(command), "error": "serialization_failed"})
        )
