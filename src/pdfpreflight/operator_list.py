# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Stage B: operator list analysis.

Fetches a page's operator list from the rendering engine (bounded by a
timeout) and counts image paint operations. A missing method, a raising
call, a rejected awaitable or a malformed result turns into an
``uncertain`` metrics object.
"""

import asyncio
import inspect
import logging
import math
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from .config import normalize_timeout_ms
from .exceptions import EngineAdapterError
from .operators import ImageOpKind, OperatorClassifier
from .utils import checked_mul, is_finite_number, is_safe_integer, read_field

logger = logging.getLogger(__name__)

# Strong references to tasks nobody awaits; the event loop keeps only weak ones
_background_tasks: set[asyncio.Future] = set()


@dataclass
class OperatorListMetrics:
    """Paint-operation metrics for one page.

    Attributes:
        paint_ops: Image paint operations of any kind.
        x_object_paint_ops: Paints of external image XObjects.
        inline_paint_ops: Paints of inline images.
        mask_paint_ops: Paints of image masks.
        transparency_group_ops: Transparency group operators.
        unique_x_object_ids: Distinct referenced images, None if none seen.
        max_inline_image_pixels: Pixels of the largest inline image.
        operator_list_length: Operators examined.
        timed_out: The operator list did not arrive in time.
        op_breakdown: Operator name -> occurrences for image paint operators.
        uncertain: The engine table, page or list could not be trusted.
    """

    paint_ops: int = 0
    x_object_paint_ops: int = 0
    inline_paint_ops: int = 0
    mask_paint_ops: int = 0
    transparency_group_ops: int = 0
    unique_x_object_ids: int | None = None
    max_inline_image_pixels: int = 0
    operator_list_length: int = 0
    timed_out: bool = False
    op_breakdown: dict[str, int] = field(default_factory=dict)
    uncertain: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Returns the metrics with camelCase keys."""
        return {
            "paintOps": self.paint_ops,
            "xObjectPaintOps": self.x_object_paint_ops,
            "inlinePaintOps": self.inline_paint_ops,
            "maskPaintOps": self.mask_paint_ops,
            "transparencyGroupOps": self.transparency_group_ops,
            "uniqueXObjectIds": self.unique_x_object_ids,
            "maxInlineImagePixels": self.max_inline_image_pixels,
            "operatorListLength": self.operator_list_length,
            "timedOut": self.timed_out,
            "opBreakdown": dict(self.op_breakdown),
            "uncertain": self.uncertain,
        }


def _uncertain(**overrides: Any) -> OperatorListMetrics:
    return replace(OperatorListMetrics(uncertain=True), **overrides)


class OperatorList(NamedTuple):
    """Validated operator list.

    ``args_array`` is None when the engine supplied no arguments.
    """

    fn_array: Sequence[Any]
    args_array: Sequence[Any] | None


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def adapt_operator_list(value: Any) -> OperatorList:
    """Validates an engine operator list result.

    Accepts a mapping or object exposing ``fnArray``/``fn_array`` and,
    optionally, ``argsArray``/``args_array``.

    Raises:
        EngineAdapterError: If the value does not have that shape.
    """
    if isinstance(value, OperatorList):
        return value
    if value is None:
        raise EngineAdapterError("Operator list is empty")

    fn_array = read_field(value, "fnArray", "fn_array")
    args_array = read_field(value, "argsArray", "args_array")
    if not _is_sequence(fn_array):
        raise EngineAdapterError("Operator list has no fnArray sequence")
    if args_array is not None and not _is_sequence(args_array):
        raise EngineAdapterError("Operator list argsArray is not a sequence")
    return OperatorList(fn_array=fn_array, args_array=args_array)


def _to_positive_integer(value: Any) -> int | None:
    """Rounds a dimension up, accepting only positive safe integers."""
    if not is_finite_number(value) or value <= 0:
        return None
    rounded = math.ceil(value)
    if not is_safe_integer(rounded) or rounded <= 0:
        return None
    return rounded


def get_inline_image_pixels(args: Any) -> int | None:
    """Extracts inline image pixels from paint operator arguments.

    The image object is taken from ``args[0]`` when the arguments are a
    sequence, otherwise ``args`` itself. Dimensions are read from
    ``width``/``w`` and ``height``/``h``, in that order.

    Returns:
        Pixel count, or None when the dimensions are missing or invalid.
    """
    if _is_sequence(args):
        candidate = args[0] if len(args) > 0 else None
    else:
        candidate = args
    if candidate is None or isinstance(candidate, (str, bytes, int, float)):
        return None

    width = _to_positive_integer(read_field(candidate, "width", "w"))
    height = _to_positive_integer(read_field(candidate, "height", "h"))
    if width is None or height is None:
        return None

    pixels = checked_mul(width, height)
    if pixels is None or pixels <= 0:
        return None
    return pixels


def extract_x_object_id(args: Any) -> str | None:
    """Returns the referenced object id from ``args[0]`` or a bare string."""
    if _is_sequence(args):
        if len(args) > 0 and isinstance(args[0], str) and args[0]:
            return args[0]
        return None
    if isinstance(args, str) and args:
        return args
    return None


def _discard_result(future: asyncio.Future) -> None:
    """Retrieves an abandoned future's outcome so errors are not reported."""
    _background_tasks.discard(future)
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Abandoned operator list task failed: %s", exc)


def request_page_cleanup(page: Any) -> None:
    """Calls ``page.cleanup()`` best-effort; all failures are ignored."""
    cleanup = getattr(page, "cleanup", None)
    if not callable(cleanup):
        return
    try:
        result = cleanup()
    except Exception as e:
        logger.debug("Page cleanup failed: %s", e)
        return
    if inspect.isawaitable(result):
        try:
            task = asyncio.ensure_future(result)
        except Exception as e:
            logger.debug("Page cleanup could not be scheduled: %s", e)
            return
        _background_tasks.add(task)
        task.add_done_callback(_discard_result)


def _start_operator_list(page: Any) -> Awaitable[Any]:
    """Invokes ``page.get_operator_list()`` and checks it returned an awaitable.

    Raises:
        EngineAdapterError: If the method is missing, raises, or returns a
            non-awaitable value.
    """
    get_operator_list = getattr(page, "get_operator_list", None)
    if not callable(get_operator_list):
        raise EngineAdapterError("Page has no get_operator_list()")
    try:
        pending = get_operator_list()
    except Exception as e:
        raise EngineAdapterError(f"get_operator_list() failed: {e}") from e
    if not inspect.isawaitable(pending):
        raise EngineAdapterError("get_operator_list() did not return an awaitable")
    return pending


async def get_operator_list_metrics(
    ops: Any, page: Any, timeout_ms: float
) -> OperatorListMetrics:
    """Counts image paint operations in a page's operator list.

    The operator list is awaited for at most ``timeout_ms``. On timeout the
    pending work is abandoned, not cancelled, and ``page.cleanup()`` is
    requested once.

    Args:
        ops: Engine operator table (name -> numeric id).
        page: Page handle exposing ``get_operator_list()``.
        timeout_ms: Wait limit in milliseconds (minimum 1).

    Returns:
        OperatorListMetrics; ``uncertain`` is set when any engine input
        could not be trusted.
    """
    try:
        classifier = OperatorClassifier.from_ops(ops)
        pending = _start_operator_list(page)
    except EngineAdapterError as e:
        logger.debug("Operator list unavailable: %s", e)
        return _uncertain()

    task = asyncio.ensure_future(pending)
    # The engine is not guaranteed to stop, so a late failure must not surface
    task.add_done_callback(_discard_result)

    timeout_s = normalize_timeout_ms(timeout_ms) / 1000
    done, _ = await asyncio.wait({task}, timeout=timeout_s)
    if task not in done:
        logger.debug("Operator list timed out after %.3fs", timeout_s)
        _background_tasks.add(task)
        request_page_cleanup(page)
        return _uncertain(timed_out=True)

    if task.cancelled() or task.exception() is not None:
        logger.debug("Operator list request failed")
        return _uncertain()

    try:
        op_list = adapt_operator_list(task.result())
    except EngineAdapterError as e:
        logger.debug("Operator list rejected: %s", e)
        return _uncertain()

    return _count_paint_ops(classifier, op_list)


def _count_paint_ops(
    classifier: OperatorClassifier, op_list: OperatorList
) -> OperatorListMetrics:
    fn_array = op_list.fn_array
    args_array = op_list.args_array
    if args_array is not None:
        length = min(len(fn_array), len(args_array))
    else:
        length = len(fn_array)

    metrics = OperatorListMetrics(operator_list_length=length)
    x_object_ids: set[str] = set()

    for index in range(length):
        fn = fn_array[index]
        if not is_finite_number(fn):
            # Keep the partial counts but stop trusting the list
            logger.debug("Non-numeric operator id at index %d", index)
            metrics.uncertain = True
            metrics.operator_list_length = index
            break

        if classifier.is_transparency_group_op(fn):
            metrics.transparency_group_ops += 1

        image_op = classifier.image_op(fn)
        if image_op is None:
            continue

        metrics.paint_ops += 1
        metrics.op_breakdown[image_op.name] = metrics.op_breakdown.get(image_op.name, 0) + 1

        args = args_array[index] if args_array is not None else None

        if image_op.kind is ImageOpKind.INLINE:
            metrics.inline_paint_ops += 1
            pixels = get_inline_image_pixels(args)
            if pixels is not None and pixels > metrics.max_inline_image_pixels:
                metrics.max_inline_image_pixels = pixels
            continue

        if image_op.kind is ImageOpKind.MASK:
            metrics.mask_paint_ops += 1
        else:
            metrics.x_object_paint_ops += 1

        x_object_id = extract_x_object_id(args)
        if x_object_id:
            x_object_ids.add(x_object_id)

    metrics.unique_x_object_ids = len(x_object_ids) if x_object_ids else None
    logger.debug(
        "Operator list: %d op(s), %d paint op(s)%s",
        metrics.operator_list_length,
        metrics.paint_ops,
        " (uncertain)" if metrics.uncertain else "",
    )
    return metrics
