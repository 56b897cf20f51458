"""Logging setup for the script orderer."""
from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Union

ROOT_LOGGER = "sql_script_orderer"


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown logging level: {level}")
    return value


def setup_logger(
    name: str = ROOT_LOGGER,
    log_dir: str = "logs",
    level: Union[int, str] = logging.INFO,
    console_level: Union[int, str] = logging.WARNING,
) -> logging.Logger:
    """Configure the package logger.

    Module loggers obtained with ``get_logger(__name__)`` are children of the
    package logger and share its handlers.

    Args:
        name: Logger name to configure
        log_dir: Directory for the dated log file
        level: Logger level (int or name such as "DEBUG")
        console_level: Minimum level echoed to the console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_coerce_level(level))

    # Handlers are attached once per process
    if logger.handlers:
        return logger

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    log_file = log_path / f"script_orderer_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_coerce_level(console_level))
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
