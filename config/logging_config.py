"""
Centralized logging configuration for the message routing engine.

This module provides a function to set up application-wide logging,
including JSON formatting, log levels, and handlers for console and file output.
"""

import logging
import logging.handlers
import os
import sys
import json

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_STANDARD_RECORD_FIELDS = set(
    logging.LogRecord('', 0, '', 0, '', None, None).__dict__.keys()
) | {'message', 'asctime'}


class StructuredLogFormatter(logging.Formatter):
    """
    Formatter that renders each record as a single JSON object.

    Features:
    - Includes tracking_id (the exchange a message belongs to) if present
    - Includes handler_name (the handler serving the run) if present
    - Copies any additional `extra=` fields into the payload
    - Preserves standard log fields (timestamp, level, logger, message)
    """

    def format(self, record):
        log_data = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage()
        }

        if hasattr(record, 'tracking_id'):
            log_data['tracking_id'] = record.tracking_id

        if hasattr(record, 'handler_name'):
            log_data['handler_name'] = record.handler_name

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key in log_data:
                continue
            log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


DEFAULT_LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that merges per-call `extra` with the adapter's bound context.

    The stock adapter replaces the call's `extra` with its own dictionary, which would
    drop the structured fields components attach to individual log lines.
    """

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs

    def bind(self, **fields) -> None:
        self.extra.update(fields)


def get_logger(name: str) -> ContextLoggerAdapter:
    """
    Get a logger that always carries tracking_id and handler_name.

    Args:
        name (str): Logger name (usually __name__)

    Returns:
        ContextLoggerAdapter: Adapter with null defaults for the custom fields
    """
    logger = logging.getLogger(name)
    return ContextLoggerAdapter(logger, {
        'tracking_id': 'no_id',
        'handler_name': 'no_handler'
    })


def setup_app_logging(config: dict = None, default_level=logging.INFO) -> None:
    """
    Set up logging for the entire application.

    This function configures the root logger with handlers for console
    and file output. Log levels and file paths can be specified via
    the optional config dictionary.

    Args:
        config (dict, optional): A dictionary containing logging configurations.
                                Expected keys:
                                - 'level': String representation of log level (e.g., "DEBUG", "INFO").
                                - 'file_path': Path to the log file; empty disables file logging.
                                - 'max_bytes': Max size of the log file before rotation.
                                - 'backup_count': Number of backup log files to keep.
                                - 'date_format': Custom log date format string.
        default_level (int, optional): The default logging level if not specified
                                     in the config. Defaults to logging.INFO.
    """
    if config is None:
        config = {}

    log_level_str = str(config.get('level', logging.getLevelName(default_level))).upper()
    numeric_log_level = getattr(logging, log_level_str, default_level)
    if not isinstance(numeric_log_level, int):
        print(f"Warning: Invalid log level string '{log_level_str}'. Using default level {logging.getLevelName(default_level)}.", file=sys.stderr)
        numeric_log_level = default_level

    formatter = StructuredLogFormatter(datefmt=config.get('date_format', DEFAULT_LOG_DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_log_level)

    if root_logger.hasHandlers():
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file_path = config.get('file_path')
    if log_file_path:
        try:
            directory = os.path.dirname(log_file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(config.get('max_bytes', 5*1024*1024)),
                backupCount=int(config.get('backup_count', 3)),
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except Exception as e:
            print(f"Error setting up file logging to {log_file_path}: {e}. File logging will be disabled.", file=sys.stderr)

    get_logger("LoggingConfig").info("Application logging setup complete. Level: %s", log_level_str)
