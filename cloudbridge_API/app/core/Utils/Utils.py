# Utils.py
#########################################
# General Utilities Library
# Small helpers shared by the sync, metadata and media libraries.
#
####################
# Function List
#
# 1. setup_logging(level, log_file=None)
# 2. sanitize_record_id(record_id)
# 3. ensure_directory_exists(path)
# 4. timeit(func)
#
####################
#
# Imports
import functools
import inspect
import os
import re
import sys
import time
from pathlib import Path
from typing import Optional, Union
#
# 3rd-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Function Definitions

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(level: Union[int, str] = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """Reset loguru sinks to stderr at `level`, optionally adding a rotating file sink."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, colorize=True)
    if log_file:
        logger.add(str(log_file), level=level, format=LOG_FORMAT, rotation="10 MB", retention=5)


def sanitize_record_id(record_id) -> str:
    """
    Turns a record id into something safe to use as a file name.

    Path separators, parent-directory references and characters that are
    forbidden on common filesystems are removed, so the result can never
    escape the directory it is joined onto.

    Raises:
        ValueError: If nothing usable is left after sanitising.
    """
    if record_id is None:
        raise ValueError("Record id cannot be None")
    sanitized = str(record_id)
    # 1) Remove forbidden characters and control bytes
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', sanitized)
    # 2) Collapse dot runs so '..' can never survive
    sanitized = re.sub(r'\.{2,}', '.', sanitized)
    # 3) Trim leading/trailing dots and whitespace
    sanitized = sanitized.strip().strip('.')
    if not sanitized:
        raise ValueError(f"Record id {record_id!r} is empty after sanitisation")
    return sanitized


def ensure_directory_exists(path):
    """Ensure that a directory exists, creating it if necessary."""
    os.makedirs(path, exist_ok=True)


def timeit(func):
    """Logs the wall-clock duration of a sync or async callable at DEBUG level."""
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                logger.debug(f"{func.__qualname__} took {time.perf_counter() - start:.3f}s")
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            logger.debug(f"{func.__qualname__} took {time.perf_counter() - start:.3f}s")
    return wrapper

#
# End of Utils.py
#######################################################################################################################
