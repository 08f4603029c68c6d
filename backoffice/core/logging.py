import logging
import sys
import structlog
from pythonjsonlogger import jsonlogger

from ..config import get_settings


def setup_logging(level: int = logging.INFO):
    """Structured logging setup shared by the API process and scripts"""
    settings = get_settings()

    json_formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    renderer = structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=settings.is_production,
    )

    # Setup root logger once; repeated calls (tests, reloads) must not stack handlers
    logger = logging.getLogger()
    if not any(getattr(h, "_backoffice_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(json_formatter)
        handler._backoffice_handler = True
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if settings.debug else level)

    return structlog.get_logger()
