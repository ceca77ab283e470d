"""Centralized logging configuration for the stockmeta dispatch layer.

Sets up standard Python logging with appropriate levels, formatters,
and handlers (rich console, optional file). Library modules only ever call
``logging.getLogger(__name__)``; the embedding application decides whether
to call ``setup_logging``.
"""

import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
RICH_LOG_FORMAT = '%(message)s'
DEFAULT_LOG_FILE = None


def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = DEFAULT_LOG_FILE,
    use_rich: bool = True,
) -> None:
    """Configures the root logger.

    Args:
        log_level: The minimum logging level (e.g., logging.DEBUG, logging.INFO).
        log_format: The format string for plain and file log messages.
        log_file: Optional path to a file for logging output.
        use_rich: Render console output through rich instead of a plain stream.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if use_rich:
        console_handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        console_handler.setFormatter(logging.Formatter(RICH_LOG_FORMAT))
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(log_format))
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(file_handler)
        logging.info(f"Logging to file: {log_file}")

    # The SDKs' transport loggers are noisy at INFO
    for name in ("httpx", "httpcore", "openai", "groq"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.info(f"Logging configured. Level={logging.getLevelName(log_level)}")
