# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Byte-level PDF token primitives.

Small pure helpers over an undecoded PDF byte buffer: name-token matching,
whitespace/delimiter classification, direct integer parsing and bounded
marker searches. Nothing here understands PDF objects; callers pass explicit
index bounds so that every search has a fixed worst-case cost.
"""

from .utils import MAX_SAFE_INTEGER

# Bounds used when searching for the dictionary around `/Subtype /Image`.
MAX_DICT_LOOKBACK_BYTES = 4_096
MAX_DICT_LOOKAHEAD_BYTES = 16_384

DICT_OPEN = b"<<"
DICT_CLOSE = b">>"

# ISO 32000-1, Table 1 (NUL is omitted on purpose)
_WHITESPACE = frozenset(b" \t\n\r\f")
# ISO 32000-1, Table 2, plus whitespace
_DELIMITERS = _WHITESPACE | frozenset(b"/<>[](){}")

_DIGIT_0 = 0x30
_DIGIT_9 = 0x39
_REF_MARKER = 0x52  # R


def matches_ascii(data: bytes, index: int, token: bytes) -> bool:
    """Returns True when ``token`` matches exactly at ``index``.

    Args:
        data: PDF bytes.
        index: Start offset; negative offsets never match.
        token: ASCII token bytes (e.g. ``b"/Width"``).

    Returns:
        True if the bytes at ``index`` equal ``token``.
    """
    if index < 0 or index + len(token) > len(data):
        return False
    return data.startswith(token, index)


def is_whitespace(byte: int) -> bool:
    """PDF whitespace: space, tab, LF, CR, FF."""
    return byte in _WHITESPACE


def is_delimiter(byte: int) -> bool:
    """Bytes that terminate a PDF name or number token."""
    return byte in _DELIMITERS


def is_digit(byte: int) -> bool:
    return _DIGIT_0 <= byte <= _DIGIT_9


def skip_whitespace(data: bytes, index: int, end: int) -> int:
    """Advances ``index`` past whitespace, never beyond ``end``."""
    end = min(end, len(data))
    i = index
    while i < end and data[i] in _WHITESPACE:
        i += 1
    return i


def parse_direct_positive_integer(data: bytes, index: int, end: int) -> int | None:
    """Parses a direct positive integer value starting at ``index``.

    Leading whitespace is skipped. Only plain decimal digits are accepted.
    A second number right after the first is refused: that is the
    ``<obj> <gen> R`` indirect reference shape, and references are never
    resolved here.

    Args:
        data: PDF bytes.
        index: Offset just after the key token (e.g. after ``/Width``).
        end: Exclusive upper bound for the digits.

    Returns:
        The parsed value, or None when there are no digits, the value leaves
        the safe integer range, the value looks like an indirect reference,
        the terminating byte is not a delimiter, or the value is not > 0.
    """
    end = min(end, len(data))
    i = skip_whitespace(data, index, end)

    value = 0
    has_digits = False
    while i < end and is_digit(data[i]):
        has_digits = True
        value = value * 10 + (data[i] - _DIGIT_0)
        if value > MAX_SAFE_INTEGER:
            return None
        i += 1

    if not has_digits:
        return None

    # The terminator is read from the whole buffer so a number cut off by
    # the window bound is rejected instead of being truncated.
    after_first = skip_whitespace(data, i, len(data))
    next_byte = data[after_first] if after_first < len(data) else None

    if next_byte is not None and is_digit(next_byte):
        # "<obj> <gen> R" or some other run of numbers; neither is direct.
        return None

    if next_byte is not None and not is_delimiter(next_byte):
        return None

    if value <= 0:
        return None

    return value


def is_indirect_reference(data: bytes, index: int, end: int) -> bool:
    """Returns True when ``<int> <int> R`` starts at ``index`` (after whitespace)."""
    end = min(end, len(data))
    i = skip_whitespace(data, index, end)
    for _ in range(2):
        start = i
        while i < end and is_digit(data[i]):
            i += 1
        if i == start:
            return False
        i = skip_whitespace(data, i, end)
    if i >= end or data[i] != _REF_MARKER:
        return False
    return i + 1 >= len(data) or is_delimiter(data[i + 1])


def find_last_sequence(
    data: bytes, from_index: int, min_index: int, sequence: bytes
) -> int | None:
    """Finds the last ``sequence`` starting in ``[min_index, from_index]``.

    Args:
        data: PDF bytes.
        from_index: Highest start offset to consider.
        min_index: Lowest start offset to consider.
        sequence: Marker bytes, e.g. ``b"<<"``.

    Returns:
        Start offset of the match, or None.
    """
    start = min(from_index, len(data) - len(sequence))
    min_index = max(0, min_index)
    if start < min_index:
        return None
    found = data.rfind(sequence, min_index, start + len(sequence))
    return found if found >= 0 else None


def find_next_sequence(
    data: bytes, from_index: int, max_index: int, sequence: bytes
) -> int | None:
    """Finds the first ``sequence`` starting in ``[from_index, max_index]``."""
    end = min(max_index, len(data) - len(sequence))
    from_index = max(0, from_index)
    if end < from_index:
        return None
    found = data.find(sequence, from_index, end + len(sequence))
    return found if found >= 0 else None


def find_token(data: bytes, start: int, end: int, token: bytes) -> int | None:
    """Finds ``token`` lying entirely inside ``[start, end)``."""
    start = max(0, start)
    end = min(end, len(data))
    if end - start < len(token):
        return None
    found = data.find(token, start, end)
    return found if found >= 0 else None
