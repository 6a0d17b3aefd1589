import logging
import os
import re
from datetime import datetime
from logging.handlers import RotatingFileHandler

from tqdm import tqdm

from sprfit.config import LOG_DIR
from sprfit.utils import format_duration

# Color mapping for console output
LOG_COLORS = {
    "DEBUG": "\033[92m",  # Green
    "INFO": "\033[94m",  # Blue
    "WARNING": "\033[93m",  # Yellow
    "ERROR": "\033[91m",  # Red
    "CRITICAL": "\033[95m",  # Magenta
    "ELAPSED": "\033[96m",  # Cyan
    "ENDC": "\033[0m",  # Reset
}


class ColoredFormatter(logging.Formatter):
    """
    Console formatter that colors each record by level and pads it to a fixed
    width followed by the elapsed time since the formatter was created.
    """

    def __init__(self, fmt=None, datefmt=None, width=150):
        super().__init__(fmt, datefmt)
        self.start_time = datetime.now()
        self.width = width

    def format(self, record):
        elapsed = (datetime.now() - self.start_time).total_seconds()
        elapsed_str = f"{LOG_COLORS['ELAPSED']}⏱ {format_duration(elapsed)}{LOG_COLORS['ENDC']}"

        color = LOG_COLORS.get(record.levelname, LOG_COLORS["INFO"])
        base_msg = super().format(record)

        padding = max(0, self.width - len(self.remove_ansi(base_msg)))
        return f"{color}{base_msg}{LOG_COLORS['ENDC']}{' ' * padding}{elapsed_str}"

    @staticmethod
    def remove_ansi(s):
        ansi_escape = re.compile(r'\x1B\[[0-?]*[ -/]*[@-~]')
        return ansi_escape.sub('', s)


class TqdmLoggingHandler(logging.StreamHandler):
    """Write records through tqdm so progress bars stay on their own line."""

    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logger(
        name="sprfit",
        log_file=None,
        level=logging.DEBUG,
        log_dir=LOG_DIR,
        rotate=True,
        max_bytes=2 * 1024 * 1024,
        backup_count=5,
        file_logging=True,
):
    """
    Setup a logger with colored console output and file logging.

    :param name: logger name; module loggers under ``sprfit.`` propagate here
    :param log_file: explicit log file path, defaults to ``<log_dir>/<name>_<date>.log``
    :param level: level for the logger and the file handler
    :param log_dir: directory for the log file
    :param rotate: use a RotatingFileHandler
    :param max_bytes: rotation size
    :param backup_count: number of rotated files kept
    :param file_logging: disable to log to the console only (worker processes)
    :return: logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.hasHandlers():
        logger.handlers.clear()

    if file_logging:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        if log_file is None:
            timestamp = datetime.now().strftime("%Y%m%d")
            log_file = os.path.join(log_dir, f"{name}_{timestamp}.log")

        if rotate:
            file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        else:
            file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    stream_handler = TqdmLoggingHandler()
    stream_handler.setFormatter(ColoredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    stream_handler.setLevel(logging.INFO)
    logger.addHandler(stream_handler)

    # Prevent double logging via root handlers
    logger.propagate = False

    return logger
