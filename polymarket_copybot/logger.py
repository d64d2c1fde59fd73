"""
Logging and console output for the copy bot.

Console output goes through rich, the log file keeps everything at DEBUG.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5

DETAILED_FORMAT = (
    '%(asctime)s | %(levelname)-8s | %(name)s | '
    '%(funcName)s:%(lineno)d | %(message)s'
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = "logs/copybot.log",
    use_rich: bool = True,
) -> logging.Logger:
    """
    Set up logging with rich console formatting and a rotating file.

    Args:
        level: Console log level name
        log_file: Log file path, or None to skip the file handler
        use_rich: Use rich console formatting

    Returns:
        Configured logger instance
    """
    console_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
        root_logger.addHandler(file_handler)

    if use_rich:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)-8s | %(message)s'))
    console_handler.setLevel(console_level)
    root_logger.addHandler(console_handler)

    # Suppress noisy library logs
    for noisy in ("httpx", "httpcore", "websockets", "web3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger("polymarket_copybot")


def create_stats_table(stats_data: dict, title: Optional[str] = None) -> Table:
    """Create a rich table for displaying statistics."""
    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green", justify="right")

    for key, value in stats_data.items():
        formatted_key = key.replace("_", " ").title()
        if isinstance(value, float):
            value = f"{value:.2f}"
        table.add_row(formatted_key, str(value))

    return table


def print_stats_table(stats_data: dict, title: Optional[str] = None, console: Optional[Console] = None):
    """Print statistics in a formatted table."""
    console = console or Console()
    console.print(create_stats_table(stats_data, title=title))
