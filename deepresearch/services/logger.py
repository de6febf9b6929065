"""Loguru sinks and structured log helpers for research runs.

Every helper writes a single line tagged with an upper-case marker
(``LLM_CALL``, ``RESEARCH_STEP``, ``DB_OPERATION``, ``SECURITY``, ``EVENT``)
followed by a dict of fields, so runs can be grepped out of the daily file.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepresearch.config import settings

LOG_DIR = Path("logs")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Third-party loggers that flood the console at INFO during fan-out rounds
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "supabase",
    "postgrest",
    "asyncio",
)


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)

    try:
        LOG_DIR.mkdir(exist_ok=True)
        logger.add(
            LOG_DIR / "deepresearch_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )
    except OSError as exc:
        logger.warning(f"File logging disabled: {exc}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


def _write(level: str, tag: str, fields: dict[str, Any]) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat()}
    record.update({k: v for k, v in fields.items() if v is not None})
    logger.opt(depth=2).log(level, f"{tag}: {record}")


def log_llm_call(
    model: str,
    caller: str,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Record one completion or stream against the configured provider."""
    fields = {"model": model, "caller": caller, "duration_ms": duration_ms, "status": status, "error": error}
    if error:
        _write("ERROR", "LLM_CALL_FAILED", fields)
    else:
        _write("INFO", "LLM_CALL", fields)


def log_research_step(task_id: str, step_type: str, status: str, data: Optional[dict] = None) -> None:
    _write("INFO", "RESEARCH_STEP", {"task_id": task_id, "step": step_type, "status": status, **(data or {})})


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    fields = {"operation": operation, "table": table, "status": status, "details": details, "error": error}
    # Task-store writes are best effort; failures are logged and never raised
    if error:
        _write("ERROR", "DB_OPERATION_FAILED", fields)
    else:
        _write("DEBUG", "DB_OPERATION", fields)


def log_security_event(event: str, **details: Any) -> None:
    """Record a rejected query or failed token check."""
    _write("WARNING", f"SECURITY:{event.upper()}", details)


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _write("INFO", "EVENT", {"event_type": event_type, "message": message, **kwargs})


configure_logging()
