from __future__ import annotations
import logging

import structlog

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """structlog 를 JSON 출력으로 한 번만 설정한다."""
    global _configured
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True
