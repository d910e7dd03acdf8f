"""Shared logging setup for the portfolio services."""

import logging
import os

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


class HealthCheckFilter(logging.Filter):
    """Drop uvicorn access log lines for health checks."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False to suppress health check log entries."""
        return '/health' not in record.getMessage()


def log_level() -> int:
    """Return the root log level named by LOG_LEVEL, falling back to INFO."""
    name = os.environ.get('LOG_LEVEL', 'INFO').upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """Configure root logging and silence health checks in access logs."""
    logging.basicConfig(level=log_level(), format=LOG_FORMAT)
    logging.getLogger().setLevel(log_level())
    access_logger = logging.getLogger('uvicorn.access')
    if not any(isinstance(f, HealthCheckFilter) for f in access_logger.filters):
        access_logger.addFilter(HealthCheckFilter())
