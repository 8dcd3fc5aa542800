"""structlog configuration."""

import logging
import sys

import structlog

# Track whether logging has been initialized to prevent double-init
_initialized = False


def configure_logging(debug: bool = False, json: bool = False) -> None:
    """Configure structlog and the stdlib root logger once per process.

    Args:
        debug: Log at DEBUG instead of INFO
        json: Render JSON lines instead of the console format
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer: structlog.types.Processor
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Suppress noisy third-party loggers
    for noisy_logger in ("httpx", "httpcore", "apscheduler"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)
