"""Centralized logging configuration for termrelay - one setup shared by the relay, the sessions and the Slack front end."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

# Global state for logging configuration
_log_enabled = False
_log_file = None
_is_configured = False


class MillisecondFormatter(logging.Formatter):
    """Formatter that prints timestamps with millisecond precision."""

    def formatTime(self, record, datefmt=None):
        ct = datetime.fromtimestamp(record.created)
        if datefmt:
            return ct.strftime(datefmt)[:-3]  # Remove last 3 digits to get milliseconds
        return ct.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]


def setup_logging(log_file_path: Optional[str] = None, mode: str = 'a', verbosity: int = 0) -> None:
    """Set up centralized logging with optional file output. Logging stays off without a log file."""
    global _log_enabled, _log_file, _is_configured

    if _is_configured:
        return

    if log_file_path:
        _log_enabled = True
        _log_file = Path(log_file_path)

    if not _log_enabled:
        return

    _log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear any existing handlers on the root logger to prevent console output
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    file_handler = logging.FileHandler(str(_log_file), mode=mode, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    formatter = MillisecondFormatter('[%(asctime)s] [%(levelname)s] [%(threadName)s] %(message)s',
                                     datefmt='%Y-%m-%d %H:%M:%S.%f')
    file_handler.setFormatter(formatter)

    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if verbosity > 0 else logging.INFO)

    # Slack SDK and its HTTP stack are chatty at debug level
    logging.getLogger('slack_sdk').setLevel(logging.WARNING)
    logging.getLogger('slack_sdk.socket_mode').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('websocket').setLevel(logging.ERROR)

    _is_configured = True

    get_logger(__name__).info("Logging initialized")


def reset_logging() -> None:
    """Drop the logging configuration so setup_logging can run again (used by tests and the CLI)."""
    global _log_enabled, _log_file, _is_configured
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)
    _log_enabled = False
    _log_file = None
    _is_configured = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the specified module name."""
    return logging.getLogger(name)


def log_message(level: str, message: str, logger_name: Optional[str] = None) -> None:
    """Log a message with custom level handling (supports BUFFER and FILTER levels)."""

    if level in ["ERROR", "CRITICAL"]:
        print(message)

    if not _log_enabled:
        return

    logger = get_logger(logger_name or __name__)

    # Get caller information
    import inspect
    frame = inspect.currentframe()
    try:
        caller_frame = frame.f_back

        if caller_frame:
            filename = caller_frame.f_code.co_filename.split('/')[-1]
            formatted_message = f"[{filename}:{caller_frame.f_lineno}] {message}"
        else:
            formatted_message = message

        # Map custom levels to standard ones
        if level == "BUFFER":
            logger.info(f"[BUFFER] {formatted_message}")
        elif level == "FILTER":
            logger.debug(f"[FILTER] {formatted_message}")
        elif level.upper() == "DEBUG":
            logger.debug(formatted_message)
        else:
            getattr(logger, level.lower(), logger.info)(formatted_message)
    finally:
        del frame


def is_logging_enabled() -> bool:
    """Check if logging is enabled."""
    return _log_enabled


def get_log_file() -> Optional[Path]:
    """Get the current log file path."""
    return _log_file
