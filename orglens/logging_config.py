"""
Logging configuration for the OrgLens engine
Colored console output, optional rotating log file, and cycle run ids
stamped on every record so interleaved cycle/resolver/pull threads can be
told apart.
"""

import contextvars
import logging
import logging.handlers
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
import colorama

# Initialize colorama for Windows color support
colorama.init()

LOG_LEVEL_ENV = 'ORGLENS_LOG_LEVEL'
NO_RUN = '-'

CONSOLE_FORMAT = '%(asctime)s - %(name)s - [%(run_id)s] %(levelname)s - %(message)s'
FILE_FORMAT = (
    '%(asctime)s - %(name)s - [%(run_id)s %(threadName)s] %(levelname)s - '
    '%(funcName)s:%(lineno)d - %(message)s'
)
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_run_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar('run_id', default=None)


def current_run_id() -> Optional[str]:
    """Run id of the cycle executing in this context, if any."""
    return _run_id_var.get()


@contextmanager
def run_context(run_id: str) -> Generator[str, None, None]:
    """
    Tag every log record emitted inside the block with a cycle run id.

    Work handed to other threads keeps the tag only when submitted through
    contextvars.copy_context().run.
    """
    token = _run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        _run_id_var.reset(token)


class RunContextFilter(logging.Filter):
    """Adds a short `run_id` attribute to each record ('-' outside a cycle)."""

    def filter(self, record):
        run_id = _run_id_var.get()
        record.run_id = run_id[:8] if run_id else NO_RUN
        return True


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        'DEBUG': colorama.Fore.CYAN,
        'INFO': colorama.Fore.GREEN,
        'WARNING': colorama.Fore.YELLOW,
        'ERROR': colorama.Fore.RED,
        'CRITICAL': colorama.Fore.RED + colorama.Style.BRIGHT,
    }

    def format(self, record):
        # Format a copy so other handlers still see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{colorama.Style.RESET_ALL}"
        if not hasattr(record, 'run_id'):
            record.run_id = NO_RUN
        return super().format(record)


def setup_logging(
    log_file: Optional[str] = None,
    log_level: Optional[str] = None,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Setup engine logging on the root logger

    Args:
        log_file: Path to log file (if None, logs to console only)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL; defaults to
            $ORGLENS_LOG_LEVEL, else INFO
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured root logger
    """
    level_name = (log_level or os.getenv(LOG_LEVEL_ENV) or 'INFO').upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()
    run_filter = RunContextFilter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    console_handler.addFilter(run_filter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        file_handler.addFilter(run_filter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get logger instance for a module"""
    return logging.getLogger(name)
