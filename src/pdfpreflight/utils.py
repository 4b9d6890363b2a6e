# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Utility functions shared by the preflight stages."""

import logging
import math
import sys
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Largest integer that survives a round trip through a float exactly.
# Pixel and byte counts above it are treated as overflow.
MAX_SAFE_INTEGER = 2**53 - 1

# Decoded RGBA pixels cost four bytes each.
BYTES_PER_PIXEL = 4


def setup_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Configures logging for pdfpreflight.

    Args:
        verbose: If True, DEBUG level is used.
        quiet: If True, only ERROR and higher are output.
            Takes precedence over verbose.

    Returns:
        Configured logger for pdfpreflight.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    preflight_logger = logging.getLogger("pdfpreflight")
    preflight_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    preflight_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    preflight_logger.addHandler(handler)

    logger.debug("Logging configured with level: %s", logging.getLevelName(level))
    return preflight_logger


def is_number(value: Any) -> bool:
    """Returns True for int/float values, excluding bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_finite_number(value: Any) -> bool:
    """Returns True for finite int/float values, excluding bool."""
    if not is_number(value):
        return False
    if isinstance(value, int):
        return True
    return math.isfinite(value)


def is_safe_integer(value: Any) -> bool:
    """Returns True for integers within +/- MAX_SAFE_INTEGER."""
    if is_number(value) and isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return False
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        return False
    return -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER


def checked_add(a: int, b: int) -> int | None:
    """Adds two counts, returning None when the result leaves the safe range."""
    result = a + b
    if not is_safe_integer(result):
        return None
    return result


def checked_mul(a: int, b: int) -> int | None:
    """Multiplies two counts, returning None when the result leaves the safe range."""
    result = a * b
    if not is_safe_integer(result):
        return None
    return result


def read_field(value: Any, *names: str) -> Any:
    """Reads the first present field from a mapping or attribute-bearing object.

    Names are tried in order; a mapping is read by key, anything else by
    attribute. Missing fields yield None.

    Args:
        value: Mapping or object exposed by an external collaborator.
        *names: Candidate field names, most preferred first.

    Returns:
        The first non-None field value, or None.
    """
    for name in names:
        if isinstance(value, Mapping):
            found = value.get(name)
        else:
            try:
                found = getattr(value, name, None)
            except Exception:
                found = None
        if found is not None:
            return found
    return None
