"""
Logging - loguru setup and the operation interceptor.

Features:
    - One loguru sink (text or JSON) at LOG_LEVEL
    - Stdlib logging (uvicorn, redis) routed into loguru
    - instrument_operations: class decorator that logs every public call
"""

import functools
import inspect
import logging
import sys
import time
from typing import Optional

from loguru import logger

from .config import LOG_JSON, LOG_LEVEL
from .errors import EngineError


class InterceptHandler(logging.Handler):
    """
    Intercept standard logging and redirect to loguru
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None):
    """Configure the loguru sink and intercept stdlib logging."""
    level = level or LOG_LEVEL
    json_output = LOG_JSON if json_output is None else json_output

    logger.remove()

    if json_output:
        logger.add(sys.stdout, serialize=True, level=level)
    else:
        logger.add(
            sys.stdout,
            colorize=True,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=level,
        )

    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(level)

    for name in list(logging.root.manager.loggerDict.keys()):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).handlers = [InterceptHandler()]

    logger.info(f"Logging configured - Level: {level}, JSON: {json_output}")


# ==================== Operation Interceptor ====================

def _wrap_operation(owner: str, func):
    name = f"{owner}.{func.__name__}"

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f"Calling {name} with args={args[1:]}, kwargs={kwargs}")
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except EngineError as e:
            logger.warning(f"{name} failed [{e.code}]: {e.message}")
            raise
        except Exception:
            logger.exception(f"{name} raised unexpectedly")
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{name} completed in {elapsed_ms:.1f}ms")
        return result

    wrapper.__instrumented__ = True
    return wrapper


def instrument_operations(cls):
    """
    Class decorator: wrap every public method with call logging.

    Engine failures are logged at WARNING with their code, anything else
    at ERROR with traceback. Exceptions are always re-raised unchanged.
    """
    for attr, value in list(vars(cls).items()):
        if attr.startswith("_") or not inspect.isfunction(value):
            continue
        setattr(cls, attr, _wrap_operation(cls.__name__, value))
    return cls
