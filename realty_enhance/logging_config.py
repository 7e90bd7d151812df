"""
Centralized Logging Configuration
Provides structured logging for the enhancement client
"""
import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional

LOGS_DIR = Path.cwd() / "logs"

# Log format with detailed information
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Color codes for console output
COLORS = {
    'DEBUG': '\033[36m',      # Cyan
    'INFO': '\033[32m',       # Green
    'WARNING': '\033[33m',    # Yellow
    'ERROR': '\033[31m',      # Red
    'CRITICAL': '\033[35m',   # Magenta
    'RESET': '\033[0m'
}

QUEUE_LOGGER = 'realty_enhance.queue_controller'


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output"""

    def format(self, record):
        # Color a copy so file handlers sharing the record stay plain
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in COLORS:
            record.levelname = f"{COLORS[levelname]}{levelname}{COLORS['RESET']}"
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    log_to_console: bool = True,
    logs_dir: Optional[Path] = None
) -> None:
    """
    Setup logging configuration for the entire application

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to daily files
        log_to_console: Whether to log to console
        logs_dir: Directory for log files (defaults to ./logs)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(console_handler)

    log_dir = logs_dir or LOGS_DIR
    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y-%m-%d")
        file_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        file_handler = logging.FileHandler(log_dir / f"app_{today}.log", encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        # Separate file for errors
        error_handler = logging.FileHandler(log_dir / f"errors_{today}.log", encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)

        # Separate file for queue runs
        queue_logger = logging.getLogger(QUEUE_LOGGER)
        for handler in list(queue_logger.handlers):
            queue_logger.removeHandler(handler)
            handler.close()
        queue_handler = logging.FileHandler(log_dir / f"queue_{today}.log", encoding='utf-8')
        queue_handler.setLevel(logging.DEBUG)
        queue_handler.setFormatter(file_formatter)
        queue_logger.addHandler(queue_handler)

    # Reduce noise from third-party libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)

    logging.debug(f"Logging initialized | level={level} console={log_to_console} file={log_to_file}")
    if log_to_file:
        logging.debug(f"Log directory: {log_dir}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class BatchLogger:
    """Helper class for logging queue runs with structured output"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.run_id: Optional[str] = None
        self.start_time: Optional[float] = None

    def start_run(self, run_id: str, **kwargs):
        """Log the start of a queue run"""
        self.run_id = run_id
        self.start_time = time.time()

        self.logger.info("=" * 80)
        self.logger.info(f"📥 RUN START | ID: {run_id}")
        for key, value in kwargs.items():
            self.logger.info(f"   {key}: {value}")
        self.logger.info("-" * 80)

    def log_item(self, index: int, total: int, filename: str, outcome: str, detail: str = ""):
        """Log the outcome of one item"""
        icons = {"completed": "✅", "failed": "❌", "cancelled": "⏹️"}
        icon = icons.get(outcome, "•")
        suffix = f" | {detail}" if detail else ""
        self.logger.info(f"{icon} [{index + 1}/{total}] {filename}: {outcome}{suffix}")

    def end_run(self, signal: str, **kwargs):
        """Log the end of a queue run"""
        duration_ms = int((time.time() - self.start_time) * 1000) if self.start_time else 0

        self.logger.info("-" * 80)
        self.logger.info(f"📤 RUN END | ID: {self.run_id}")
        self.logger.info(f"   Signal: {signal}")
        self.logger.info(f"   Duration: {duration_ms}ms")
        for key, value in kwargs.items():
            self.logger.info(f"   {key}: {value}")
        self.logger.info("=" * 80)


def create_batch_logger(name: str) -> BatchLogger:
    """Create a BatchLogger instance"""
    return BatchLogger(get_logger(name))
