import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    """
    Log formatter that tints each line with an ANSI colour picked
    from the record's level.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",      # cyan
        logging.INFO: "\033[32m",       # green
        logging.WARNING: "\033[33m",    # yellow
        logging.ERROR: "\033[31m",      # red
        logging.CRITICAL: "\033[1;31m", # bold red
    }

    def format(self, record: logging.LogRecord) -> str:
        s = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        if not color:
            return s
        return f"{color}{s}{RESET}"


def setup_logging(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    enable_color: bool = True,
) -> logging.Logger:
    """
    Configures the package logger. Call once at the application's entry point.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level.
        log_file: Optional path; records are also written there without colour.
        enable_color: Colourise console output by level.

    Returns:
        The configured ``rollengine`` logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("rollengine")
    logger.setLevel(level)

    # Remove any existing handlers to avoid duplicate logs
    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    if enable_color:
        console_handler.setFormatter(ColorFormatter(LOG_FORMAT))
    else:
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger
