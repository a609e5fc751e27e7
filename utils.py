# utils.py
import logging
import os
import re
from decimal import Decimal, ROUND_HALF_UP

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def get_logger(name: str) -> logging.Logger:
    """Return a stdout logger with the project's formatting.

    Honors LOG_LEVEL (default INFO). Safe to call repeatedly for the same name.
    """
    logger = logging.getLogger(name)
    if getattr(logger, "_splitter_configured", False):
        return logger

    level = _LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper().strip(), logging.INFO)
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)
    logger.propagate = False
    setattr(logger, "_splitter_configured", True)
    return logger


def to_float(x):
    try:
        if x is None or isinstance(x, bool):
            return 0.0
        if isinstance(x, (int, float)):
            return float(x)
        s = str(x).strip()
        s = s.replace('−', '-').replace('—', '-').replace('–', '-')
        # "12,50" is a decimal comma, "1,178.00" a thousands separator
        if ',' in s and '.' not in s:
            s = s.replace(',', '.')
        else:
            s = s.replace(',', '')
        s = s.replace('$', '').strip()
        m = re.search(r'-?[0-9]+(?:\.[0-9]+)?', s)
        return float(m.group(0)) if m else 0.0
    except (TypeError, ValueError):
        return 0.0


def to_int(x):
    """Integer part of a model-supplied number; 0 when it isn't one."""
    if isinstance(x, bool):
        return 0
    if isinstance(x, int):
        return x
    return int(to_float(x))


def clamp(value, low, high):
    return max(low, min(high, value))


def money(amount) -> Decimal:
    # half-up, the way amounts are printed on receipts
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
