"""
Process-wide logging configuration for the engine and CLI.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Libraries that are chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "aiosqlite")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging once; later calls replace the handlers"""
    handlers = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
