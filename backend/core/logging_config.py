"""structlog setup for the engine.

Every record, whether it comes from a structlog logger or from a plain
stdlib logger inside a dependency, goes through the same processor chain
and ends up on stdout as a single line: JSON when ``LOG_FORMAT=json``
outside development, a colored console line otherwise.
"""

import logging
import sys
from typing import Optional

import structlog
from app.config import Settings, get_settings

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _build_renderer(settings: Settings):
    if settings.LOG_FORMAT == "text" or settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(level: Optional[str] = None) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    The embedding process calls this once at startup; ExecutionEngine
    leaves process-wide logging alone and only binds per-execution
    context (see bind_execution_context).

    Safe to call more than once; the root logger's handlers are
    replaced rather than appended to. ``level`` overrides ``LOG_LEVEL``.
    """
    settings = get_settings()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _build_renderer(settings),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_execution_context(execution_id: str, workflow_id: str) -> None:
    """Tag every log line emitted by the current execution task.

    asyncio tasks copy the context at creation, so binding inside an
    execution task does not leak into sibling executions.
    """
    structlog.contextvars.bind_contextvars(
        execution_id=execution_id,
        workflow_id=workflow_id,
    )
