"""Logging configuration with structured logging support."""

import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict
import structlog
from structlog.stdlib import LoggerFactory
from prometheus_client import Counter, Histogram, Gauge, Info

from . import __version__
from .config import Settings


# Prometheus metrics
PACKETS_SENT = Counter(
    'emulator_packets_sent_total',
    'Total number of packets successfully sent',
    ['kind']
)

SEND_ERRORS = Counter(
    'emulator_send_errors_total',
    'Total number of packets that failed to send'
)

CONNECT_ERRORS = Counter(
    'emulator_connect_errors_total',
    'Total number of failed connection attempts'
)

RESPONSES_RECEIVED = Counter(
    'emulator_responses_received_total',
    'Total number of inbound data chunks received from servers'
)

SESSIONS_CLOSED = Counter(
    'emulator_sessions_closed_total',
    'Total number of sessions closed',
    ['reason']
)

SEND_TIME = Histogram(
    'emulator_send_seconds',
    'Time to send one packet',
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

ACTIVE_SESSIONS = Gauge(
    'emulator_active_sessions',
    'Number of sessions currently connected'
)

APP_INFO = Info(
    'ais140_emulator',
    'Application information'
)


def setup_logging(settings: Settings) -> None:
    """
    Configure structured logging with structlog.

    Args:
        settings: Application settings
    """
    # Set up stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level)
    )

    # Configure structlog processors
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
    ]

    # Add appropriate renderer based on format
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if settings.log_file:
        setup_file_logging(settings.log_file, settings.log_level)

    APP_INFO.info({
        'version': __version__,
        'transport': settings.transport,
        'servers': settings.servers,
        'device_imei': settings.device_imei
    })


def setup_file_logging(log_file: str, log_level: str) -> None:
    """
    Set up file-based logging.

    Args:
        log_file: Path to log file
        log_level: Logging level
    """
    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(getattr(logging, log_level))
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

        logging.getLogger().addHandler(file_handler)

    except OSError as e:
        logger = structlog.get_logger(__name__)
        logger.error("Failed to setup file logging",
                     log_file=log_file,
                     error=str(e))


def add_app_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add application context to all log messages."""
    event_dict['app'] = 'ais140-emulator'
    return event_dict


class ErrorHandler:
    """Centralized error handling with metrics and logging."""

    def __init__(self):
        self.logger = structlog.get_logger(__name__)
        self.error_counts: Dict[str, int] = {}

    def _count(self, category: str) -> None:
        self.error_counts[category] = self.error_counts.get(category, 0) + 1

    def handle_validation_error(self, field: str, error: Exception) -> None:
        """Handle configuration rejected before transmission."""
        self._count('validation')

        self.logger.warning("Configuration validation error",
                            field=field,
                            error=str(error))

    def handle_connect_error(self, target: str, error: Exception) -> None:
        """Handle a failed connection attempt."""
        CONNECT_ERRORS.inc()
        self._count('connect')

        self.logger.error("Connection error",
                          target=target,
                          error=str(error),
                          error_type=type(error).__name__)

    def handle_send_error(self, target: str, kind: str, error: Exception) -> None:
        """Handle a packet that failed to send."""
        SEND_ERRORS.inc()
        self._count('send')

        self.logger.error("Send error",
                          target=target,
                          kind=kind,
                          error=str(error),
                          error_type=type(error).__name__)

    def handle_terminal_event(self, target: str, reason: str, error: Exception) -> None:
        """Handle close, error or timeout reported by an open transport."""
        self._count('terminal')

        self.logger.warning("Transport terminated session",
                            target=target,
                            reason=reason,
                            error=str(error))

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_counts.copy()

    def reset_stats(self) -> None:
        """Reset error statistics."""
        self.error_counts.clear()


# Global error handler instance
error_handler = ErrorHandler()
