# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Pytest fixtures for the pdfpreflight test suite."""

import asyncio
from io import BytesIO
from pathlib import Path

import pikepdf
import pytest
from pikepdf import Array, Dictionary, Name, Pdf, Stream

from pdfpreflight.byte_scan import ByteScanMetrics

# -- Global PDF tracker --

_tracked_pdfs: list[Pdf] = []


@pytest.fixture(autouse=True)
def _auto_close_pdfs():
    """Close all tracked PDF objects after each test."""
    yield
    for pdf in reversed(_tracked_pdfs):
        try:
            pdf.close()
        except Exception:
            pass
    _tracked_pdfs.clear()


def new_pdf(**kwargs) -> Pdf:
    """Create a tracked Pdf (auto-closed after test)."""
    pdf = Pdf.new(**kwargs)
    _tracked_pdfs.append(pdf)
    return pdf


def make_image(
    pdf: Pdf, width: int, height: int, **extra
) -> Stream:
    """Create a grayscale image XObject with declared dimensions.

    The sample data is a single byte; only the dictionary matters here.

    Args:
        pdf: An open pikepdf Pdf.
        width: Declared /Width.
        height: Declared /Height.
        **extra: Additional dictionary entries.

    Returns:
        The image stream.
    """
    image = pdf.make_stream(b"\x80")
    image[Name.Type] = Name.XObject
    image[Name.Subtype] = Name.Image
    image[Name.Width] = width
    image[Name.Height] = height
    image[Name.ColorSpace] = Name.DeviceGray
    image[Name.BitsPerComponent] = 8
    for key, value in extra.items():
        image[Name("/" + key)] = value
    return image


def add_page(
    pdf: Pdf,
    content: bytes,
    xobjects: dict[str, Stream] | None = None,
    mediabox: list[float] | None = None,
    **extra,
) -> pikepdf.Page:
    """Append a page with the given content stream and XObject resources.

    Args:
        pdf: An open pikepdf Pdf.
        content: Raw content stream bytes.
        xobjects: Resource name (without slash) -> XObject stream.
        mediabox: Page MediaBox, defaults to US Letter.
        **extra: Additional page dictionary entries.

    Returns:
        The appended page.
    """
    xobj_dict = Dictionary()
    for name, xobj in (xobjects or {}).items():
        xobj_dict[Name("/" + name)] = xobj
    page_dict = Dictionary(
        Type=Name.Page,
        MediaBox=Array(mediabox or [0, 0, 612, 792]),
        Resources=Dictionary(XObject=xobj_dict),
    )
    for key, value in extra.items():
        page_dict[Name("/" + key)] = value
    page_dict[Name.Contents] = pdf.make_stream(content)
    pdf.pages.append(pikepdf.Page(page_dict))
    return pdf.pages[-1]


def pdf_bytes(pdf: Pdf) -> bytes:
    """Serialize a Pdf to bytes."""
    buffer = BytesIO()
    pdf.save(buffer)
    return buffer.getvalue()


def make_scan(**overrides) -> ByteScanMetrics:
    """Stage A metrics for Stage B tests (clean by default)."""
    return ByteScanMetrics(**overrides)


class FakePage:
    """Scriptable page handle.

    Args:
        operator_list: Value the operator list awaitable resolves to.
        viewport: Value returned by get_viewport().
    """

    def __init__(self, operator_list=None, viewport=None) -> None:
        self.operator_list = operator_list
        self.viewport = viewport if viewport is not None else {"width": 100, "height": 100}
        self.cleanup_calls = 0
        self.viewport_scales: list[float] = []

    async def get_operator_list(self):
        return self.operator_list

    def get_viewport(self, scale=1):
        self.viewport_scales.append(scale)
        return self.viewport

    def cleanup(self) -> None:
        self.cleanup_calls += 1


class HangingPage(FakePage):
    """Page whose operator list never arrives."""

    async def get_operator_list(self):
        await asyncio.Event().wait()


# -- Fixtures --


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Temporary directory for tests."""
    return tmp_path


@pytest.fixture
def small_image_pdf_bytes() -> bytes:
    """PDF with one 100x100 image painted once."""
    pdf = new_pdf()
    image = make_image(pdf, 100, 100)
    add_page(pdf, b"q 100 0 0 100 0 0 cm /Im0 Do Q", {"Im0": image})
    return pdf_bytes(pdf)


@pytest.fixture
def huge_image_pdf_bytes() -> bytes:
    """PDF declaring a 10000x10000 image."""
    pdf = new_pdf()
    image = make_image(pdf, 10_000, 10_000)
    add_page(pdf, b"q 100 0 0 100 0 0 cm /Im0 Do Q", {"Im0": image})
    return pdf_bytes(pdf)


@pytest.fixture
def small_image_pdf(tmp_dir: Path, small_image_pdf_bytes: bytes) -> Path:
    """Small-image PDF on disk."""
    path = tmp_dir / "small.pdf"
    path.write_bytes(small_image_pdf_bytes)
    return path


@pytest.fixture
def huge_image_pdf(tmp_dir: Path, huge_image_pdf_bytes: bytes) -> Path:
    """Huge-image PDF on disk."""
    path = tmp_dir / "huge.pdf"
    path.write_bytes(huge_image_pdf_bytes)
    return path
