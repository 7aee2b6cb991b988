"""Structured logging: structlog and stdlib records share one renderer.

Engine modules log with ``logging.getLogger(__name__)``; the HTTP layer uses
structlog. Both end up in a ``ProcessorFormatter`` on the root handler, so the
request context bound by ``RequestIdMiddleware`` reaches every line.
"""

import logging

import structlog
from structlog.types import Processor

from learnity.config import Settings

HANDLER_NAME = "learnity"

# Applied to structlog events and, as the foreign pre-chain, to stdlib records
SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]


def build_formatter(log_format: str) -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering every record as JSON or as console key/values."""
    final: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if log_format == "json":
        final += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        final.append(structlog.dev.ConsoleRenderer(colors=False))

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*SHARED_PROCESSORS, structlog.stdlib.ExtraAdder()],
        processors=final,
    )


def setup_logging(settings: Settings) -> None:
    """Route structlog and stdlib logging through one root handler.

    Safe to call repeatedly: the handler installed by a previous call is
    replaced, other root handlers are left alone.
    """
    structlog.configure(
        processors=[
            *SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(build_formatter(settings.log_format))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
