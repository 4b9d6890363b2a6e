# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Two-stage preflight pipeline.

Stage A runs first on the raw bytes. Only when it allows rendering is the
page handed to Stage B, whose verdict is then authoritative.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .config import PreflightConfig, load_config
from .decision import PreflightDecision, preflight_stage_a, preflight_stage_b
from .engine import OPS, PikepdfPage, get_page, open_document

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """Preflight result for one page.

    Attributes:
        page_number: 1-based page number.
        decision: Final decision for the page.
        processing_time: Seconds spent in Stage B for this page.
    """

    page_number: int
    decision: PreflightDecision
    processing_time: float = 0.0


async def preflight_page(
    data: bytes,
    page: Any,
    ops: Any,
    config: PreflightConfig,
) -> PreflightDecision:
    """Runs Stage A and, if it allows, Stage B for one page.

    Args:
        data: Undecoded PDF bytes.
        page: Engine page handle.
        ops: Engine operator table.
        config: Preflight limits.

    Returns:
        The Stage A skip decision, or the Stage B decision.
    """
    stage_a = preflight_stage_a(
        data,
        budget_bytes=config.budget_bytes,
        max_decoded_image_pixels=config.max_decoded_image_pixels,
    )
    if not stage_a.should_render:
        logger.info("Skipped by raw byte scan: %s", stage_a.reason)
        return stage_a

    stage_b = await preflight_stage_b(
        ops,
        page,
        stage_a.metrics.scan,
        budget_bytes=config.budget_bytes,
        timeout_ms=config.timeout_ms,
        multipliers=config.multipliers,
        max_decoded_image_pixels=config.max_decoded_image_pixels,
    )
    if not stage_b.should_render:
        logger.info("Skipped by operator analysis: %s", stage_b.reason)
    return stage_b


async def preflight_document(
    data: bytes,
    page_numbers: Iterable[int] | None = None,
    config: PreflightConfig | None = None,
    on_progress: Callable[[int, int, int], None] | None = None,
) -> list[PageResult]:
    """Preflights pages of a PDF using the bundled pikepdf engine.

    Stage A is document-wide and runs once; Stage B runs per page with the
    shared scan metrics.

    Args:
        data: PDF bytes.
        page_numbers: 1-based pages to check. None checks the first page.
        config: Preflight limits; desktop defaults when None.
        on_progress: Called as ``(current_idx, total, page_number)`` after
            each page.

    Returns:
        One PageResult per requested page, in order.

    Raises:
        DocumentError: If the document or a requested page cannot be opened.
    """
    if config is None:
        config = load_config()

    stage_a = preflight_stage_a(
        data,
        budget_bytes=config.budget_bytes,
        max_decoded_image_pixels=config.max_decoded_image_pixels,
    )

    numbers = list(page_numbers) if page_numbers is not None else [1]
    pdf = open_document(data)
    pages: list[PikepdfPage] = []
    try:
        # Walks of one document run one at a time, even after a timeout
        lock = threading.Lock()
        # Fail on bad page numbers before any page is analyzed
        pages = [get_page(pdf, number, lock) for number in numbers]

        results: list[PageResult] = []
        for idx, (number, page) in enumerate(zip(numbers, pages)):
            start = time.perf_counter()
            if stage_a.should_render:
                decision = await preflight_stage_b(
                    OPS,
                    page,
                    stage_a.metrics.scan,
                    budget_bytes=config.budget_bytes,
                    timeout_ms=config.timeout_ms,
                    multipliers=config.multipliers,
                    max_decoded_image_pixels=config.max_decoded_image_pixels,
                )
            else:
                decision = stage_a
            elapsed = time.perf_counter() - start

            logger.debug(
                "Page %d: %s (%s) in %.3fs",
                number,
                decision.decision.value,
                decision.reason,
                elapsed,
            )
            results.append(
                PageResult(page_number=number, decision=decision, processing_time=elapsed)
            )
            if on_progress is not None:
                on_progress(idx, len(numbers), number)
    finally:
        if any(page.walking for page in pages):
            # An abandoned walk still reads the document; it is released
            # once that worker finishes
            logger.debug("Operator list walk still running; document left open")
        else:
            pdf.close()

    skipped = sum(1 for r in results if not r.decision.should_render)
    logger.info("Preflight completed: %d page(s), %d skipped", len(results), skipped)
    return results
