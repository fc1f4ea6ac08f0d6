"""Logging setup shared by every module of the chat server."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger with a console handler and an optional rotating file handler.

    Calling it again replaces the handlers installed by the previous call, so
    ``entrypoint`` and ``app`` can both call it safely.
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, "_chat_handler", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console._chat_handler = True
    root.addHandler(console)

    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        file_handler._chat_handler = True
        root.addHandler(file_handler)

    # uvicorn's access log is noisy at DEBUG with one line per websocket frame
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.INFO))

    logging.getLogger(__name__).debug(f"Logging configured at level {logging.getLevelName(level)}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
