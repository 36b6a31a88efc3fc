"""structlog setup for the execution engine.

Every event is a snake_case name plus key/value fields (order_placed,
exit_attach_failed, margin_rejected, ...). The orchestrator binds batch_id,
intent_index, symbol and action through structlog.contextvars, so retries
and repairs deep inside the submitter are attributable to one intent of one
batch without passing identifiers down the call chain.
"""

import logging
import logging.handlers
import os
from pathlib import Path

import structlog

_DEFAULT_RETENTION_DAYS = 30

_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: structlog.types.Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(log_level: str = "INFO") -> None:
    """Route engine events through the stdlib root logger.

    Called once per run_batch(); calling it again replaces the handlers
    rather than stacking them.

    Environment:
    - LOG_FORMAT: "json" for collectors, "console" (default) for a terminal
    - LOG_DIR: also keep a JSON-lines order audit file, rotated at midnight
    - LOG_RETENTION_DAYS: rotated audit files to keep (default 30)
    """
    if os.environ.get("LOG_FORMAT", "console").lower() == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler()
    console.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console)

    log_dir = os.environ.get("LOG_DIR")
    if log_dir:
        root_logger.addHandler(_audit_file_handler(Path(log_dir)))

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _audit_file_handler(log_dir: Path) -> logging.Handler:
    try:
        retention = int(os.environ.get("LOG_RETENTION_DAYS", _DEFAULT_RETENTION_DAYS))
    except ValueError:
        retention = _DEFAULT_RETENTION_DAYS

    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / "engine.log",
        when="midnight",
        backupCount=retention,
        encoding="utf-8",
    )
    # always JSON, whatever the console renders
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
