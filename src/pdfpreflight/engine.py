# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""pikepdf-backed rendering engine adapter.

Provides an operator table and a page handle with the interface Stage B
expects, built on pikepdf content stream parsing. Image XObjects, inline
images and Form XObjects (recursively, with cycle detection) are turned into
a flat operator list. Transparency groups are bracketed by ``beginGroup`` /
``endGroup``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import warnings
from io import BytesIO
from typing import Any, NamedTuple

import pikepdf
from pikepdf import Dictionary, Name, Pdf, Stream

from .exceptions import DocumentError, EngineAdapterError
from .utils import is_finite_number

logger = logging.getLogger(__name__)

# Form XObjects nested deeper than this are not expanded
MAX_FORM_DEPTH = 32

_OP_NAMES = (
    "dependency",
    "save",
    "restore",
    "transform",
    "setGState",
    "moveTo",
    "lineTo",
    "curveTo",
    "closePath",
    "rectangle",
    "stroke",
    "fill",
    "eoFill",
    "fillStroke",
    "endPath",
    "clip",
    "eoClip",
    "beginText",
    "endText",
    "setFont",
    "showText",
    "showSpacedText",
    "nextLineShowText",
    "setFillRGBColor",
    "setStrokeRGBColor",
    "setFillGray",
    "setStrokeGray",
    "setFillCMYKColor",
    "setStrokeCMYKColor",
    "shadingFill",
    "beginMarkedContent",
    "beginMarkedContentProps",
    "endMarkedContent",
    "beginGroup",
    "endGroup",
    "paintFormXObjectBegin",
    "paintFormXObjectEnd",
    "paintImageMaskXObject",
    "paintSoftMaskImageXObject",
    "paintImageXObject",
    "paintInlineImageXObject",
)

# Operator table: name -> numeric id
OPS: dict[str, int] = {name: op_id for op_id, name in enumerate(_OP_NAMES, start=1)}

# Content stream operator -> operator table name
_CONTENT_OPERATORS: dict[str, str] = {
    "q": "save",
    "Q": "restore",
    "cm": "transform",
    "gs": "setGState",
    "m": "moveTo",
    "l": "lineTo",
    "c": "curveTo",
    "v": "curveTo",
    "y": "curveTo",
    "h": "closePath",
    "re": "rectangle",
    "S": "stroke",
    "s": "stroke",
    "f": "fill",
    "F": "fill",
    "f*": "eoFill",
    "B": "fillStroke",
    "B*": "fillStroke",
    "b": "fillStroke",
    "b*": "fillStroke",
    "n": "endPath",
    "W": "clip",
    "W*": "eoClip",
    "BT": "beginText",
    "ET": "endText",
    "Tf": "setFont",
    "Tj": "showText",
    "TJ": "showSpacedText",
    "'": "nextLineShowText",
    '"': "nextLineShowText",
    "rg": "setFillRGBColor",
    "RG": "setStrokeRGBColor",
    "g": "setFillGray",
    "G": "setStrokeGray",
    "k": "setFillCMYKColor",
    "K": "setStrokeCMYKColor",
    "sh": "shadingFill",
    "BMC": "beginMarkedContent",
    "BDC": "beginMarkedContentProps",
    "EMC": "endMarkedContent",
}

_DO_OPERATOR = "Do"


class Viewport(NamedTuple):
    width: float
    height: float


def _resolve(obj: Any) -> Any:
    """Resolves an indirect pikepdf object, returning it unchanged on failure."""
    try:
        return obj.get_object()
    except Exception:
        return obj


def _is_transparency_group(xobj: Stream) -> bool:
    group = xobj.get("/Group")
    if group is None:
        return False
    group = _resolve(group)
    if not isinstance(group, Dictionary):
        return False
    s = group.get("/S")
    return s is not None and str(s) == "/Transparency"


def _image_op_name(image: Stream) -> str:
    image_mask = image.get("/ImageMask")
    if image_mask is not None and bool(image_mask):
        return "paintImageMaskXObject"
    smask = image.get("/SMask")
    if smask is not None and not (isinstance(smask, Name) and str(smask) == "/None"):
        # Not a pdf.js operator name. The classifier treats it as a mask
        # paint because the name contains "Mask".
        return "paintSoftMaskImageXObject"
    return "paintImageXObject"


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class _OperatorListBuilder:
    """Flattens a page's content into ``fnArray``/``argsArray``."""

    def __init__(self, page_handle: "PikepdfPage") -> None:
        self._handle = page_handle
        self.fn_array: list[int] = []
        self.args_array: list[list[Any]] = []
        self._visited: set[tuple[int, int]] = set()

    def _emit(self, name: str, args: list[Any] | None = None) -> None:
        self.fn_array.append(OPS[name])
        self.args_array.append(args if args is not None else [])

    def _check_cleanup(self) -> None:
        if self._handle.cleanup_requested:
            raise EngineAdapterError("Operator list walk stopped by cleanup()")

    def walk(self, content: Any, resources: Any, depth: int) -> None:
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings(
                    "ignore", message="Unexpected end of stream", category=UserWarning
                )
                instructions = list(pikepdf.parse_content_stream(content))
        except Exception as e:
            raise EngineAdapterError(f"Content stream could not be parsed: {e}") from e

        xobjects = None
        if isinstance(resources, Dictionary):
            xobjects = _resolve(resources.get("/XObject"))

        for instruction in instructions:
            self._check_cleanup()

            if isinstance(instruction, pikepdf.ContentStreamInlineImage):
                iimage = instruction.iimage
                self._emit(
                    "paintInlineImageXObject",
                    [{"width": _int_or_none(iimage.width), "height": _int_or_none(iimage.height)}],
                )
                continue

            operator = str(instruction.operator)
            if operator == _DO_OPERATOR:
                self._paint_xobject(instruction.operands, xobjects, resources, depth)
                continue

            name = _CONTENT_OPERATORS.get(operator)
            if name is not None:
                self._emit(name)

    def _paint_xobject(
        self, operands: Any, xobjects: Any, resources: Any, depth: int
    ) -> None:
        if not operands or not isinstance(xobjects, Dictionary):
            return
        key = str(operands[0])
        xobj = xobjects.get(key)
        if xobj is None:
            logger.debug("XObject %s not found in resources", key)
            return
        xobj = _resolve(xobj)
        if not isinstance(xobj, Stream):
            return

        subtype = xobj.get("/Subtype")
        subtype_str = str(subtype) if subtype is not None else ""

        if subtype_str == "/Image":
            # Object ids make repeated paints of one image recognizable
            objgen = xobj.objgen
            image_id = f"{objgen[0]} {objgen[1]} R" if objgen != (0, 0) else key.lstrip("/")
            self._emit(
                _image_op_name(xobj),
                [image_id, _int_or_none(xobj.get("/Width")), _int_or_none(xobj.get("/Height"))],
            )
            return

        if subtype_str != "/Form":
            return

        objgen = xobj.objgen
        if objgen != (0, 0):
            if objgen in self._visited:
                logger.debug("Form XObject %s already on the stack, skipped", key)
                return
            self._visited.add(objgen)

        is_group = _is_transparency_group(xobj)
        self._emit("beginGroup" if is_group else "paintFormXObjectBegin")
        try:
            if depth < MAX_FORM_DEPTH:
                form_resources = _resolve(xobj.get("/Resources")) or resources
                self.walk(xobj, form_resources, depth + 1)
            else:
                logger.warning("Form XObject nesting deeper than %d", MAX_FORM_DEPTH)
        finally:
            if objgen != (0, 0):
                self._visited.discard(objgen)
        self._emit("endGroup" if is_group else "paintFormXObjectEnd")


def _settle(future: asyncio.Future, result: Any, error: BaseException | None) -> None:
    # The awaiting task may have been cancelled at loop shutdown
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


class PikepdfPage:
    """Page handle over a ``pikepdf.Page``.

    Implements ``get_operator_list()``, ``get_viewport(scale=...)`` and
    ``cleanup()``. The operator list is built on a daemon thread that neither
    event loop nor interpreter shutdown waits for. A ``cleanup()`` request
    makes that walk stop at the next instruction; the content stream parse
    itself cannot be interrupted.

    Pages of one document must share ``lock``: qpdf objects are not safe
    for concurrent use, and a timed-out walk may still be running when the
    next page starts.
    """

    def __init__(self, page: pikepdf.Page, lock: threading.Lock | None = None) -> None:
        self._page = page
        self._lock = lock if lock is not None else threading.Lock()
        self.cleanup_requested = False
        self.walking = False

    def _build_operator_list(self) -> dict[str, list[Any]]:
        builder = _OperatorListBuilder(self)
        try:
            resources = _resolve(self._page.obj.get("/Resources"))
            builder.walk(self._page, resources, 0)
        finally:
            self.walking = False
        return {"fnArray": builder.fn_array, "argsArray": builder.args_array}

    def _walk_locked(self) -> dict[str, list[Any]]:
        try:
            with self._lock:
                if self.cleanup_requested:
                    raise EngineAdapterError(
                        "Operator list walk cleaned up before it started"
                    )
                return self._build_operator_list()
        finally:
            self.walking = False

    def _walk_thread(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future) -> None:
        try:
            result = self._walk_locked()
        except Exception as e:
            outcome: tuple[Any, BaseException | None] = (None, e)
        else:
            outcome = (result, None)
        try:
            loop.call_soon_threadsafe(_settle, future, *outcome)
        except RuntimeError:
            logger.debug("Event loop closed before the operator list walk finished")

    async def get_operator_list(self) -> dict[str, list[Any]]:
        """Returns the page operator list (``fnArray`` / ``argsArray``)."""
        self.cleanup_requested = False
        self.walking = True
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        thread = threading.Thread(
            target=self._walk_thread,
            args=(loop, future),
            name="pdfpreflight-walk",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self.walking = False
            raise
        return await future

    def get_viewport(self, scale: float = 1) -> Viewport:
        """Returns the crop box size at ``scale``, honouring /Rotate.

        Raises:
            EngineAdapterError: If the page box is malformed.
        """
        box = self._page.cropbox
        try:
            x1, y1, x2, y2 = (float(v) for v in box)
        except (TypeError, ValueError) as e:
            raise EngineAdapterError(f"Malformed page box: {box!r}") from e

        width = abs(x2 - x1) * scale
        height = abs(y2 - y1) * scale
        rotate = _int_or_none(self._page.obj.get("/Rotate", 0)) or 0
        if rotate % 180 == 90:
            width, height = height, width
        return Viewport(width=width, height=height)

    def cleanup(self) -> None:
        logger.debug("Cleanup requested for page")
        self.cleanup_requested = True


def open_document(data: bytes) -> Pdf:
    """Opens PDF bytes with pikepdf.

    Raises:
        DocumentError: If the bytes are not a readable PDF.
    """
    try:
        return Pdf.open(BytesIO(data))
    except pikepdf.PasswordError as e:
        raise DocumentError("PDF is encrypted") from e
    except pikepdf.PdfError as e:
        raise DocumentError(f"PDF could not be opened: {e}") from e


def get_page(
    pdf: Pdf, page_number: int, lock: threading.Lock | None = None
) -> PikepdfPage:
    """Returns a page handle for a 1-based page number.

    Handles for pages of the same open document should be given the same
    ``lock``.

    Raises:
        DocumentError: If the page does not exist.
    """
    if not is_finite_number(page_number) or page_number < 1 or page_number > len(pdf.pages):
        raise DocumentError(
            f"Page {page_number} out of range (document has {len(pdf.pages)} page(s))"
        )
    return PikepdfPage(pdf.pages[int(page_number) - 1], lock)
