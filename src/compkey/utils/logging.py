"""Rich-backed logging helpers for compkey.

Key derivation logs its intermediate prefixes at DEBUG level; these helpers
route those records through a Rich handler so prefixes and fingerprints stay
readable in a terminal.
"""

import logging
import sys
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

_HIGHLIGHT_KEYWORDS = ["prefix", "fingerprint", "session", "cache", "subkey"]


def configure_module_logger(
    module_name: str,
    level: int = logging.INFO,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Give a compkey module its own logger and handler.

    Args:
        module_name: Module name (typically __name__).
        level: Logging level.
        use_colors: Use a Rich handler; otherwise a plain stderr stream handler.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(level)
    logger.handlers.clear()

    handler: Union[RichHandler, logging.Handler]
    if use_colors:
        console = Console(stderr=True, force_terminal=True, legacy_windows=False)
        handler = RichHandler(
            console=console,
            show_path=False,
            show_time=True,
            rich_tracebacks=True,
            markup=False,
            show_level=True,
            level=logging.NOTSET,  # the logger does the filtering
            omit_repeated_times=False,
            keywords=_HIGHLIGHT_KEYWORDS,
        )
        handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def enable_debug_logging(package: str = "compkey") -> dict[str, int]:
    """Lower every already-created logger under *package* to DEBUG.

    Returns:
        The levels the loggers had before, for ``restore_log_levels``.
    """
    names = [package] + [
        name
        for name in list(logging.root.manager.loggerDict)
        if name.startswith(f"{package}.")
    ]
    previous: dict[str, int] = {}
    for name in names:
        logger = logging.getLogger(name)
        previous[name] = logger.level
        logger.setLevel(logging.DEBUG)
    return previous


def restore_log_levels(levels: dict[str, int]) -> None:
    """Put back levels saved by ``enable_debug_logging``."""
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
