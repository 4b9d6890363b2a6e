# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Viewport pixel count and worst-case paint cost estimate."""

import logging
import math
from typing import Any, NamedTuple

from .config import Multipliers
from .utils import BYTES_PER_PIXEL, checked_mul, is_finite_number, read_field

logger = logging.getLogger(__name__)


class ViewportPixels(NamedTuple):
    page_pixels: int
    uncertain: bool


_UNCERTAIN_VIEWPORT = ViewportPixels(page_pixels=0, uncertain=True)


def get_viewport_pixels(page: Any) -> ViewportPixels:
    """Returns the page pixel count at scale 1.

    Args:
        page: Page handle exposing ``get_viewport(scale=...)``.

    Returns:
        ViewportPixels; ``uncertain`` with zero pixels when the viewport is
        unavailable or its size is not a positive finite number.
    """
    get_viewport = getattr(page, "get_viewport", None)
    if not callable(get_viewport):
        logger.debug("Page has no get_viewport()")
        return _UNCERTAIN_VIEWPORT

    try:
        viewport = get_viewport(scale=1)
    except Exception as e:
        logger.debug("get_viewport() failed: %s", e)
        return _UNCERTAIN_VIEWPORT

    if viewport is None:
        return _UNCERTAIN_VIEWPORT

    width = read_field(viewport, "width")
    height = read_field(viewport, "height")
    if (
        not is_finite_number(width)
        or not is_finite_number(height)
        or width <= 0
        or height <= 0
    ):
        logger.debug("Unusable viewport size: %r x %r", width, height)
        return _UNCERTAIN_VIEWPORT

    page_pixels = checked_mul(math.ceil(width), math.ceil(height))
    if page_pixels is None or page_pixels <= 0:
        return _UNCERTAIN_VIEWPORT

    return ViewportPixels(page_pixels=page_pixels, uncertain=False)


def _non_negative_int(value: Any) -> int:
    if not is_finite_number(value) or value <= 0:
        return 0
    return math.floor(value)


def _to_float(value: int) -> float:
    try:
        return float(value)
    except OverflowError:
        return math.inf


def estimate_worst_case_bytes(
    *,
    page_pixels: int,
    paint_ops: int,
    max_image_pixels: int,
    max_inline_image_pixels: int,
    has_soft_mask: bool,
    has_transparency_group: bool,
    max_decoded_image_pixels: int | None,
    multipliers: Multipliers,
) -> float:
    """Estimates worst-case decode/paint bytes for a page.

    Each paint operation is assumed to touch the largest of the page area,
    the largest declared image and the largest inline image, capped at
    ``max_decoded_image_pixels`` when configured. Transparency groups and
    soft masks scale the result by their multipliers.

    Never raises. The result may be ``inf``; callers check finiteness.

    Returns:
        Estimated bytes as a float.
    """
    per_op_pixels = max(
        _non_negative_int(page_pixels),
        _non_negative_int(max_image_pixels),
        _non_negative_int(max_inline_image_pixels),
    )
    if max_decoded_image_pixels is not None and max_decoded_image_pixels > 0:
        per_op_pixels = min(per_op_pixels, max_decoded_image_pixels)

    # Float arithmetic saturates to inf instead of raising
    estimated = (
        _to_float(_non_negative_int(paint_ops)) * _to_float(per_op_pixels) * BYTES_PER_PIXEL
    )

    if has_transparency_group:
        estimated *= multipliers.transparency_group
    if has_soft_mask:
        estimated *= multipliers.soft_mask

    return max(0.0, estimated)
