from __future__ import annotations

"""
Structured logging setup for proxy-upgrade.

This module configures **structlog** + the stdlib ``logging`` package so that:
- Every event goes to stderr; stdout is left to the command's own output.
- Operator runs get a readable console renderer; CI / log shipping can ask for JSON.
- Signer secrets are redacted wherever they show up in an event.

Quick start
-----------
    from proxy_upgrade.logging import setup_logging, get_logger

    setup_logging()  # call once on process start
    log = get_logger(__name__)
    log.info("step_applied", tx_hash="0x...")

Environment
-----------
- LOG_LEVEL: one of DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: "console" (default) or "json"
"""

import logging
import os
import sys
from typing import Any, Dict, Iterable, Optional

import structlog
from structlog.processors import JSONRenderer

REDACT_KEYS = {"private_key", "privatekey", "key", "mnemonic", "secret", "password", "authorization"}


def _redact_secrets(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        if k.lower() in REDACT_KEYS and event_dict[k] is not None:
            event_dict[k] = "***"
    return event_dict


def _base_processors() -> Iterable:
    yield structlog.stdlib.add_log_level
    yield structlog.stdlib.add_logger_name
    yield structlog.processors.TimeStamper(fmt="iso", utc=True)
    yield structlog.contextvars.merge_contextvars
    yield structlog.processors.StackInfoRenderer()
    yield _redact_secrets


def setup_logging(*, level: Optional[str | int] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog + stdlib logging. Safe to call more than once; the
    last call wins.
    """
    level = level or os.getenv("LOG_LEVEL", "") or "INFO"
    if isinstance(level, str):
        level = level.upper()
    log_format = (log_format or os.getenv("LOG_FORMAT", "") or "console").lower()

    processors = list(_base_processors())
    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        renderer = JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), sort_keys=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=processors,
        )
    )

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)

    # Request-level chatter from the HTTP stack
    logging.getLogger("httpcore").setLevel(os.getenv("LOG_LEVEL_HTTPCORE", "WARNING"))
    logging.getLogger("httpx").setLevel(os.getenv("LOG_LEVEL_HTTPX", "WARNING"))


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_run_context(**kv: Any) -> None:
    """Bind values (signer, proxy, chain id) into every event of this run."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = ["setup_logging", "get_logger", "bind_run_context", "clear_run_context"]
