# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Stage A: raw byte scan of an undecoded PDF.

Walks the file bytes once, looking for ``/Subtype /Image`` dictionaries and
reading their directly encoded ``/Width`` and ``/Height``. Soft masks and
transparency groups are recorded as document-wide flags. Indirect or
otherwise unparsable dimensions are not guessed at; the operator-list stage
covers those images.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from .config import normalize_budget_bytes
from .tokens import (
    DICT_CLOSE,
    DICT_OPEN,
    MAX_DICT_LOOKAHEAD_BYTES,
    MAX_DICT_LOOKBACK_BYTES,
    find_last_sequence,
    find_next_sequence,
    find_token,
    is_delimiter,
    is_indirect_reference,
    matches_ascii,
    parse_direct_positive_integer,
    skip_whitespace,
)
from .utils import BYTES_PER_PIXEL, checked_add, checked_mul

logger = logging.getLogger(__name__)

# PDF name tokens used by the scanner
TOKEN_SUBTYPE = b"/Subtype"
TOKEN_IMAGE = b"/Image"
TOKEN_WIDTH = b"/Width"
TOKEN_HEIGHT = b"/Height"
TOKEN_SOFT_MASK = b"/SMask"
TOKEN_S = b"/S"
TOKEN_TRANSPARENCY = b"/Transparency"

_NAME_START = b"/"


@dataclass(frozen=True)
class ByteScanMetrics:
    """Image metrics gathered from raw PDF bytes.

    Attributes:
        sum_image_pixels: Total pixels over all parsed image dictionaries.
        max_image_pixels: Pixels of the largest parsed image.
        image_dict_hits: ``/Subtype /Image`` dictionaries found.
        parsed_dims_hits: Dictionaries with direct ``/Width`` and ``/Height``.
        has_soft_mask: ``/SMask`` occurs anywhere in the scanned bytes.
        has_transparency_group: ``/S /Transparency`` occurs anywhere.
        uncertain: A pixel count overflowed and the scan was aborted.
    """

    sum_image_pixels: int = 0
    max_image_pixels: int = 0
    image_dict_hits: int = 0
    parsed_dims_hits: int = 0
    has_soft_mask: bool = False
    has_transparency_group: bool = False
    uncertain: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Returns the metrics with camelCase keys."""
        data = asdict(self)
        return {
            "sumImagePixels": data["sum_image_pixels"],
            "maxImagePixels": data["max_image_pixels"],
            "imageDictHits": data["image_dict_hits"],
            "parsedDimsHits": data["parsed_dims_hits"],
            "hasSoftMask": data["has_soft_mask"],
            "hasTransparencyGroup": data["has_transparency_group"],
            "uncertain": data["uncertain"],
        }


def _is_transparency_group_at(data: bytes, index: int) -> bool:
    """Checks for ``/S /Transparency`` (any whitespace in between) at ``index``."""
    if not matches_ascii(data, index, TOKEN_S):
        return False
    after = index + len(TOKEN_S)
    if after < len(data) and not is_delimiter(data[after]):
        # /Subtype, /SMask, /Sh ... are different names
        return False
    j = skip_whitespace(data, after, len(data))
    return matches_ascii(data, j, TOKEN_TRANSPARENCY)


def _image_subtype_at(data: bytes, index: int) -> bool:
    """Checks for ``/Subtype /Image`` (any whitespace in between) at ``index``."""
    if not matches_ascii(data, index, TOKEN_SUBTYPE):
        return False
    j = skip_whitespace(data, index + len(TOKEN_SUBTYPE), len(data))
    if not matches_ascii(data, j, TOKEN_IMAGE):
        return False
    after = j + len(TOKEN_IMAGE)
    return after >= len(data) or is_delimiter(data[after])


def _read_dimension(data: bytes, start: int, end: int, token: bytes) -> int | None:
    """Reads a direct dimension value for ``token`` inside ``[start, end)``."""
    token_index = find_token(data, start, end, token)
    if token_index is None:
        return None
    value_index = token_index + len(token)
    value = parse_direct_positive_integer(data, value_index, end)
    if value is None and is_indirect_reference(data, value_index, end):
        logger.debug(
            "Indirect %s at offset %d left to operator analysis",
            token.decode("ascii"),
            token_index,
        )
    return value


def scan_pdf_bytes(data: bytes, budget_bytes: int | None = None) -> ByteScanMetrics:
    """Scans raw PDF bytes for image dictionaries and transparency signals.

    Single left-to-right pass. Every token of interest is a PDF name, so the
    scan hops between ``/`` bytes. Around each ``/Subtype /Image`` hit the
    enclosing dictionary is located within bounded look-back/look-ahead
    windows and its direct dimensions are parsed.

    Args:
        data: Undecoded PDF bytes (whole file or a prefix).
        budget_bytes: Optional byte budget. When the largest image alone
            exceeds it the scan stops early, since no later image can make
            the verdict any better.

    Returns:
        ByteScanMetrics for the scanned bytes.
    """
    if not isinstance(data, bytes):
        data = bytes(data)

    if budget_bytes is not None:
        budget_bytes = normalize_budget_bytes(budget_bytes)

    sum_image_pixels = 0
    max_image_pixels = 0
    image_dict_hits = 0
    parsed_dims_hits = 0
    has_soft_mask = False
    has_transparency_group = False
    uncertain = False

    length = len(data)
    i = data.find(_NAME_START)
    while 0 <= i < length:
        if not has_soft_mask and matches_ascii(data, i, TOKEN_SOFT_MASK):
            has_soft_mask = True

        if not has_transparency_group and _is_transparency_group_at(data, i):
            has_transparency_group = True

        if not _image_subtype_at(data, i):
            i = data.find(_NAME_START, i + 1)
            continue

        dict_start = find_last_sequence(
            data, i, i - MAX_DICT_LOOKBACK_BYTES, DICT_OPEN
        )
        if dict_start is None:
            # No dictionary start within reach; nothing to analyze
            i = data.find(_NAME_START, i + 1)
            continue

        image_dict_hits += 1

        dict_end_max = min(length - len(DICT_CLOSE), i + MAX_DICT_LOOKAHEAD_BYTES)
        dict_end = find_next_sequence(data, i, dict_end_max, DICT_CLOSE)
        if dict_end is not None:
            dict_end_exclusive = dict_end + len(DICT_CLOSE)
        else:
            dict_end_exclusive = min(length, i + MAX_DICT_LOOKAHEAD_BYTES)

        width = _read_dimension(data, dict_start, dict_end_exclusive, TOKEN_WIDTH)
        height = _read_dimension(data, dict_start, dict_end_exclusive, TOKEN_HEIGHT)
        if width is None or height is None:
            i = data.find(_NAME_START, i + 1)
            continue

        parsed_dims_hits += 1

        pixels = checked_mul(width, height)
        if pixels is None:
            logger.warning(
                "Image dimensions %dx%d at offset %d overflow; scan aborted",
                width,
                height,
                i,
            )
            uncertain = True
            break

        new_sum = checked_add(sum_image_pixels, pixels)
        if new_sum is None:
            logger.warning("Summed image pixels overflow at offset %d; scan aborted", i)
            uncertain = True
            break
        sum_image_pixels = new_sum

        if pixels > max_image_pixels:
            max_image_pixels = pixels

        if budget_bytes is not None and max_image_pixels * BYTES_PER_PIXEL > budget_bytes:
            logger.debug(
                "Image of %d pixels at offset %d exceeds budget; scan stopped",
                max_image_pixels,
                i,
            )
            break

        i = data.find(_NAME_START, i + 1)

    metrics = ByteScanMetrics(
        sum_image_pixels=sum_image_pixels,
        max_image_pixels=max_image_pixels,
        image_dict_hits=image_dict_hits,
        parsed_dims_hits=parsed_dims_hits,
        has_soft_mask=has_soft_mask,
        has_transparency_group=has_transparency_group,
        uncertain=uncertain,
    )
    logger.debug("Byte scan of %d bytes: %s", length, metrics)
    return metrics
