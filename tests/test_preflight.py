# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Unit tests for preflight.py."""

import asyncio
import threading
import time

import pytest
from conftest import FakePage, add_page, make_image, new_pdf, pdf_bytes

from pdfpreflight.config import PreflightConfig
from pdfpreflight.decision import (
    REASON_STAGE_A_MAX_IMAGE_OVER_BUDGET,
    REASON_STAGE_B_ALLOW,
    REASON_STAGE_B_COMPOSITE_OVER_BUDGET,
    REASON_STAGE_B_OPERATOR_LIST_TIMEOUT,
    Decision,
)
from pdfpreflight.engine import PikepdfPage
from pdfpreflight.exceptions import DocumentError
from pdfpreflight.preflight import PageResult, preflight_document, preflight_page

IMAGE_OPS = {"paintImageXObject": 10}


def make_config(budget_bytes: int, **kwargs) -> PreflightConfig:
    return PreflightConfig(budget_bytes=budget_bytes, timeout_ms=5_000, **kwargs)


def two_page_pdf_bytes() -> bytes:
    """First page paints a small image, second page paints it 50 times."""
    pdf = new_pdf()
    image = make_image(pdf, 100, 100)
    add_page(pdf, b"/Im0 Do", {"Im0": image}, mediabox=[0, 0, 100, 100])
    add_page(pdf, b"/Im0 Do " * 50, {"Im0": image}, mediabox=[0, 0, 100, 100])
    return pdf_bytes(pdf)


class CountingPage(FakePage):
    """Page that records operator list requests."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.requests = 0

    async def get_operator_list(self):
        self.requests += 1
        return self.operator_list


class TestPreflightPage:
    """Tests for preflight_page()."""

    def test_stage_b_runs_after_stage_a(self) -> None:
        """A clean scan hands over to operator analysis."""
        page = CountingPage({"fnArray": [10], "argsArray": [["Im1"]]})
        data = b"<< /Subtype /Image /Width 10 /Height 10 >>"

        result = asyncio.run(preflight_page(data, page, IMAGE_OPS, make_config(1_000_000)))

        assert result.reason == REASON_STAGE_B_ALLOW
        assert page.requests == 1

    def test_stage_a_skip_short_circuits(self) -> None:
        """A Stage A skip never asks the page for its operator list."""
        page = CountingPage({"fnArray": [10], "argsArray": [["Im1"]]})
        data = b"<< /Subtype /Image /Width 10000 /Height 10000 >>"

        result = asyncio.run(preflight_page(data, page, IMAGE_OPS, make_config(1_000_000)))

        assert result.decision is Decision.SKIP
        assert result.reason == REASON_STAGE_A_MAX_IMAGE_OVER_BUDGET
        assert page.requests == 0


class TestPreflightDocument:
    """Tests for preflight_document()."""

    def test_small_image_renders(self, small_image_pdf_bytes: bytes) -> None:
        """A letter page with one small image fits a 10 MB budget."""
        results = asyncio.run(
            preflight_document(small_image_pdf_bytes, config=make_config(10_000_000))
        )

        assert len(results) == 1
        assert isinstance(results[0], PageResult)
        assert results[0].page_number == 1
        assert results[0].decision.reason == REASON_STAGE_B_ALLOW
        assert results[0].decision.metrics.page_pixels == 612 * 792
        assert results[0].processing_time >= 0

    def test_huge_image_skips_in_stage_a(self, huge_image_pdf_bytes: bytes) -> None:
        """A declared 10000x10000 image is refused by the byte scan."""
        results = asyncio.run(
            preflight_document(huge_image_pdf_bytes, config=make_config(10_000_000))
        )

        assert results[0].decision.reason == REASON_STAGE_A_MAX_IMAGE_OVER_BUDGET

    def test_per_page_decisions(self) -> None:
        """Each requested page gets its own Stage B verdict."""
        data = two_page_pdf_bytes()
        results = asyncio.run(
            preflight_document(data, page_numbers=[1, 2], config=make_config(1_000_000))
        )

        assert [r.page_number for r in results] == [1, 2]
        assert results[0].decision.reason == REASON_STAGE_B_ALLOW
        assert results[0].decision.metrics.estimated_bytes == 40_000
        assert results[1].decision.reason == REASON_STAGE_B_COMPOSITE_OVER_BUDGET
        assert results[1].decision.metrics.estimated_bytes == 2_000_000

    def test_progress_callback(self) -> None:
        """on_progress is called once per page."""
        calls = []
        asyncio.run(
            preflight_document(
                two_page_pdf_bytes(),
                page_numbers=[2, 1],
                config=make_config(1_000_000),
                on_progress=lambda idx, total, number: calls.append((idx, total, number)),
            )
        )

        assert calls == [(0, 2, 2), (1, 2, 1)]

    def test_page_out_of_range(self, small_image_pdf_bytes: bytes) -> None:
        """A missing page fails before any page is analyzed."""
        calls = []
        with pytest.raises(DocumentError):
            asyncio.run(
                preflight_document(
                    small_image_pdf_bytes,
                    page_numbers=[1, 5],
                    config=make_config(1_000_000),
                    on_progress=lambda *args: calls.append(args),
                )
            )

        assert calls == []

    def test_invalid_document(self) -> None:
        """Unreadable bytes raise DocumentError."""
        with pytest.raises(DocumentError):
            asyncio.run(preflight_document(b"garbage", config=make_config(1_000_000)))

    def test_default_config(
        self, small_image_pdf_bytes: bytes, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Desktop defaults apply when no config is given."""
        monkeypatch.delenv("PDFPREFLIGHT_BUDGET_BYTES", raising=False)
        monkeypatch.delenv("PDFPREFLIGHT_MAX_DECODED_IMAGE_PIXELS", raising=False)
        monkeypatch.delenv("PDFPREFLIGHT_TIMEOUT_MS", raising=False)

        results = asyncio.run(preflight_document(small_image_pdf_bytes))

        assert results[0].decision.should_render
        assert results[0].decision.metrics.budget_bytes == 400_000_000

    def test_timed_out_walk_does_not_overlap_next_page(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The next page's walk waits for a timed-out walk to finish."""
        original = PikepdfPage._build_operator_list
        counter_lock = threading.Lock()
        active = 0
        concurrent_at_start = []

        def tracked_build(self) -> dict:
            nonlocal active
            with counter_lock:
                concurrent_at_start.append(active)
                active += 1
                first = len(concurrent_at_start) == 1
            try:
                if first:
                    time.sleep(0.5)
                return original(self)
            finally:
                with counter_lock:
                    active -= 1

        monkeypatch.setattr(PikepdfPage, "_build_operator_list", tracked_build)
        data = two_page_pdf_bytes()
        config = PreflightConfig(budget_bytes=1_000_000_000, timeout_ms=400)

        results = asyncio.run(preflight_document(data, page_numbers=[1, 2], config=config))

        assert concurrent_at_start == [0, 0]
        assert results[0].decision.reason == REASON_STAGE_B_OPERATOR_LIST_TIMEOUT
        assert results[1].decision.reason == REASON_STAGE_B_ALLOW
