"""Loguru setup: one stdout sink, every record stamped with request context."""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

from loguru import logger

from storefront.core.config import settings

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")
user_code_ctx_var: ContextVar[str] = ContextVar("user_code", default="-")

_QUIET_LOGGERS = {
    "passlib.handlers.bcrypt": logging.ERROR,
    "urllib3": logging.WARNING,
}

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{extra[request_id]} {extra[user_code]} | <level>{message}</level> | {extra}"
)


def _patch_record(record: dict[str, Any]) -> None:
    extra = record["extra"]
    extra.setdefault("request_id", request_id_ctx_var.get())
    extra.setdefault("user_code", user_code_ctx_var.get())
    extra.setdefault("env", settings.ENV)


def setup_logging() -> None:
    """JSON lines on stdout; ``LOG_JSON=false`` switches to a readable format for local runs."""

    logging.basicConfig(level=settings.LOG_LEVEL)
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logger.remove()
    logger.configure(patcher=_patch_record)
    if settings.LOG_JSON:
        logger.add(
            sys.stdout,
            level=settings.LOG_LEVEL,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            serialize=True,
        )
    else:
        logger.add(
            sys.stdout,
            level=settings.LOG_LEVEL,
            format=_TEXT_FORMAT,
            colorize=True,
            backtrace=False,
            diagnose=False,
        )
