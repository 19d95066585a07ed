import logging
import os
from collections import deque
from logging.handlers import TimedRotatingFileHandler


# ===========================================================================================================
# Logger Configuration
# ===========================================================================================================

BASE_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "../../..")
)
LOG_DIR = os.getenv("ZONE_ENGINE_LOG_DIR", os.path.join(BASE_DIR, "runtime", "node", "logs"))
LOG_FILE_NAME = "engine_log.log"

ROTATION_WHEN = 'midnight'  # Rotate logs at midnight
ROTATION_INTERVAL = 1       # Rotate every day
ROTATION_BACKUP_COUNT = 30  # Keep last 30 log files


# Common format for all handlers
formatter = logging.Formatter('%(asctime)s | %(name)s | %(levelname)s | %(message)s')

# Shared handlers, created on first use
_recent_log_handler = None
_file_handler = None
_console_handler = None

# Every logger handed out by get_logger, so configure_logging can re-level them
_loggers: dict[str, logging.Logger] = {}


class RecentLogHandler(logging.Handler):
    """Keeps the last few formatted records in memory for the health endpoint."""

    def __init__(self, max_logs=20):
        super().__init__()
        self.max_logs = max_logs
        self.logs = deque(maxlen=max_logs)

    def emit(self, record):
        try:
            msg = self.format(record)
            self.logs.append((record.levelname, msg))
        except Exception:
            self.handleError(record)


def get_recent_log_handler(max_logs=20) -> RecentLogHandler:
    global _recent_log_handler
    if _recent_log_handler is None:
        _recent_log_handler = RecentLogHandler(max_logs=max_logs)
        _recent_log_handler.setFormatter(formatter)
        _recent_log_handler.setLevel(logging.INFO)
    return _recent_log_handler


def _get_file_handler() -> TimedRotatingFileHandler:
    global _file_handler
    if _file_handler is None:
        os.makedirs(LOG_DIR, exist_ok=True)
        _file_handler = TimedRotatingFileHandler(
            os.path.join(LOG_DIR, LOG_FILE_NAME),
            when=ROTATION_WHEN,
            interval=ROTATION_INTERVAL,
            backupCount=ROTATION_BACKUP_COUNT,
            encoding='utf-8',
            delay=True                          # Delay file creation until first log write
        )
        _file_handler.setFormatter(formatter)
        _file_handler.setLevel(logging.DEBUG)
    return _file_handler


def _get_console_handler() -> logging.StreamHandler:
    global _console_handler
    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(formatter)
        _console_handler.setLevel(logging.WARNING)
    return _console_handler


def configure_logging(log_dir: str | None = None, level: str = "DEBUG", console_level: str = "WARNING") -> None:
    """
    Re-point the shared file handler to log_dir and apply levels to every engine logger.
    Called once by the node entry point after the configuration is loaded.
    """
    global LOG_DIR, _file_handler

    if log_dir and os.path.abspath(log_dir) != os.path.abspath(LOG_DIR):
        old_handler = _file_handler
        LOG_DIR = log_dir
        _file_handler = None
        new_handler = _get_file_handler()
        for logger in _loggers.values():
            if old_handler is not None:
                logger.removeHandler(old_handler)
            logger.addHandler(new_handler)
        if old_handler is not None:
            old_handler.close()

    _get_console_handler().setLevel(console_level)
    for logger in _loggers.values():
        logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Returns a logger with the specified name, configured with file, console and recent-log handlers."""
    logger = logging.getLogger(name)
    if not logger.handlers:  # Prevent duplicate handlers
        logger.setLevel(logging.DEBUG)
        logger.addHandler(_get_file_handler())
        logger.addHandler(_get_console_handler())
        logger.addHandler(get_recent_log_handler())
        logger.propagate = False  # Prevent log duplication up the hierarchy
    _loggers[name] = logger
    return logger
