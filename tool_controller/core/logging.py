from __future__ import annotations

import logging
from typing import Any

import structlog

TOOLCALL_CONTEXT_KEYS = ("namespace", "toolcall")


def configure_logging(level: str = "INFO", *, fmt: str = "json") -> None:
    """Route structlog through stdlib logging; ``fmt`` is ``json`` or ``console``."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))

    renderer: Any = (
        structlog.dev.ConsoleRenderer(colors=False) if fmt == "console" else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**kwargs) if kwargs else logger


def bind_toolcall(namespace: str, name: str) -> None:
    """Attach the tool call identity to every log line emitted by the current task."""
    structlog.contextvars.bind_contextvars(namespace=namespace, toolcall=name)


def clear_toolcall() -> None:
    structlog.contextvars.unbind_contextvars(*TOOLCALL_CONTEXT_KEYS)
