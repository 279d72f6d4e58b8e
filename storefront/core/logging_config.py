import logging
import structlog
from storefront.core.config import settings

# Loggers that drown out order and cart events at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "slowapi")


def _add_service_context(logger, method_name, event_dict):
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: str = None):
    """Configure structlog on top of stdlib logging.

    Request-scoped values bound with ``structlog.contextvars`` (request id,
    correlation id) are merged into every event. DEBUG switches to the
    console renderer; everything else emits one JSON object per line.
    """
    log_level = logging.DEBUG if settings.DEBUG else getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _add_service_context,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=log_level)
    logging.getLogger().setLevel(log_level)
    if not settings.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
