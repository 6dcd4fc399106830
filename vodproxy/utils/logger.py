"""structlog setup for vodproxy.

One line per event, JSON by default (``JSON_LOGS=false`` switches to the
coloured console renderer). Lines emitted while a proxy or aggregation call is
in flight carry its ``request_id``, a ULID minted by the route handler. A
relayed stream outlives its handler, so ``relay_stream`` re-binds the ID it
was created under.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor
from ulid import ULID

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Install the vodproxy processor chain.

    Called once at import of this module with defaults, and again by
    ``vodproxy.main`` with the ``LOG_LEVEL`` / ``JSON_LOGS`` settings.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "vodproxy") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# ─── Request IDs ──────────────────────────────────────────────────────────────


def new_request_id() -> str:
    """Mint a 26-character ULID and bind it for the current request."""
    request_id = str(ULID())
    request_id_var.set(request_id)
    return request_id


def current_request_id() -> Optional[str]:
    return request_id_var.get()


def bind_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


configure_logging()
