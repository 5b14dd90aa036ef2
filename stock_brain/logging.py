"""Logging setup for command requests.

Every line written while a command runs is stamped with that command's
request id, organization and (once interpreted) action kind.
"""
from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from stock_brain.config import get_log_path, load_config

UNSET = "-"


@dataclass(frozen=True)
class CommandContext:
    request_id: str
    org_id: str = UNSET
    action: str = UNSET


_command: ContextVar[CommandContext | None] = ContextVar("command", default=None)


def current_command() -> CommandContext | None:
    return _command.get()


@contextmanager
def command_context(org_id: str, request_id: str | None = None) -> Generator[CommandContext, None, None]:
    """Open the logging scope of one command request."""
    old_ctx = _command.get()
    ctx = CommandContext(request_id=request_id or uuid.uuid4().hex[:12], org_id=org_id or UNSET)
    _command.set(ctx)
    try:
        yield ctx
    finally:
        _command.set(old_ctx)


def bind_action(action: str) -> None:
    """Tag the running command with the action kind it was interpreted as."""
    ctx = _command.get()
    if ctx is not None:
        _command.set(replace(ctx, action=action))


class CommandContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _command.get()
        record.request_id = ctx.request_id if ctx else UNSET
        record.org_id = ctx.org_id if ctx else UNSET
        record.action = ctx.action if ctx else UNSET
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", UNSET),
            "org_id": getattr(record, "org_id", UNSET),
            "action": getattr(record, "action", UNSET),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        # logger.info(..., extra={"extra_data": {...}})
        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data
        return json.dumps(log_entry, default=str)


def configure_logging(config: dict[str, Any] | None = None) -> None:
    cfg = config or load_config()
    level_name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = cfg.get("logging", {}).get("json_format", False)

    log_path = get_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    if root.handlers:
        # Avoid duplicate handlers when configured repeatedly in tests.
        return

    command_filter = CommandContextFilter()

    if use_json:
        fmt: logging.Formatter = StructuredFormatter()
    else:
        fmt = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(request_id)s | org=%(org_id)s action=%(action)s"
            " | %(name)s | %(message)s"
        )

    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    stream.addFilter(command_filter)
    root.addHandler(stream)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(fmt)
    file_handler.addFilter(command_filter)
    root.addHandler(file_handler)
