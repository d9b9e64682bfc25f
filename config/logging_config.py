"""
Structured JSON logging configuration for the deployer.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from config.settings import OrchestratorSettings, get_settings

CONTEXT_ATTRS = ('deployment_id', 'component_id', 'cert_name', 'rule')


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in CONTEXT_ATTRS:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry, default=str)


def configure_logging(settings: Optional[OrchestratorSettings] = None) -> logging.Logger:
    """Configure logging for the deployer package.

    Args:
        settings: Settings to read level/format/file from, defaults to get_settings()

    Returns:
        Configured 'deployer' logger.
    """
    settings = settings or get_settings()

    logger = logging.getLogger('deployer')
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)

    if settings.log_format == 'json':
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logger.addHandler(console_handler)

    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


def deployment_logger(deployment_id: str) -> logging.Logger:
    """Child logger for a single deployment run."""
    return logging.getLogger(f'deployer.deployment.{deployment_id}')
