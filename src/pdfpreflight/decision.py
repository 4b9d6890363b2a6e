# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Render/skip decisions for Stage A and Stage B.

Stage A is a coarse guardrail: it skips only when the raw scan is invalid or
a single decoded image alone would exceed the budget. Stage B is
authoritative: it combines operator metrics, the page viewport and the
Stage A scan into a worst-case composite estimate. Any uncertainty is a
skip.
"""

import enum
import logging
import math
from dataclasses import dataclass
from typing import Any

from .byte_scan import ByteScanMetrics, scan_pdf_bytes
from .config import (
    Multipliers,
    normalize_budget_bytes,
    normalize_max_decoded_image_pixels,
)
from .estimate import estimate_worst_case_bytes, get_viewport_pixels
from .operator_list import OperatorListMetrics, get_operator_list_metrics
from .utils import BYTES_PER_PIXEL

logger = logging.getLogger(__name__)


class Decision(enum.Enum):
    SKIP = "skip"
    RENDER = "render"


# Stable reason codes
REASON_STAGE_A_UNCERTAIN = "stageA.uncertain"
REASON_STAGE_A_MAX_IMAGE_OVER_BUDGET = "stageA.maxImageOverBudget"
REASON_STAGE_A_ALLOW = "stageA.allow"
REASON_STAGE_B_SCAN_UNCERTAIN = "stageB.scanUncertain"
REASON_STAGE_B_OPERATOR_LIST_TIMEOUT = "stageB.operatorListTimeout"
REASON_STAGE_B_OPERATOR_LIST_UNCERTAIN = "stageB.operatorListUncertain"
REASON_STAGE_B_VIEWPORT_UNCERTAIN = "stageB.viewportUncertain"
REASON_STAGE_B_ESTIMATE_INVALID = "stageB.estimateInvalid"
REASON_STAGE_B_COMPOSITE_OVER_BUDGET = "stageB.compositeOverBudget"
REASON_STAGE_B_ALLOW = "stageB.allow"


@dataclass
class DecisionMetrics:
    """Metrics behind a decision.

    Attributes:
        budget_bytes: Normalized budget in bytes.
        scan: Stage A scan metrics.
        max_decoded_image_pixels: Normalized pixel ceiling, if configured.
        stage_a_estimated_bytes: Stage A largest-image estimate.
        operators: Stage B operator metrics.
        page_pixels: Viewport pixels at scale 1.
        estimated_bytes: Stage B composite estimate.
    """

    budget_bytes: int
    scan: ByteScanMetrics
    max_decoded_image_pixels: int | None = None
    stage_a_estimated_bytes: int | None = None
    operators: OperatorListMetrics | None = None
    page_pixels: int | None = None
    estimated_bytes: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Returns a JSON-ready dict; unset optional fields are omitted."""
        data: dict[str, Any] = {
            "budgetBytes": self.budget_bytes,
            "scan": self.scan.to_dict(),
        }
        if self.max_decoded_image_pixels is not None:
            data["maxDecodedImagePixels"] = self.max_decoded_image_pixels
        if self.stage_a_estimated_bytes is not None:
            data["stageAEstimatedBytes"] = self.stage_a_estimated_bytes
        if self.operators is not None:
            data["operators"] = self.operators.to_dict()
        if self.page_pixels is not None:
            data["pagePixels"] = self.page_pixels
        if self.estimated_bytes is not None:
            data["estimatedBytes"] = (
                self.estimated_bytes if math.isfinite(self.estimated_bytes) else None
            )
        return data


@dataclass
class PreflightDecision:
    """Outcome of a preflight stage.

    Attributes:
        decision: Render or skip.
        reason: Stable code naming the rule that fired.
        metrics: Metrics the decision was based on.
    """

    decision: Decision
    reason: str
    metrics: DecisionMetrics

    @property
    def should_render(self) -> bool:
        return self.decision is Decision.RENDER

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "metrics": self.metrics.to_dict(),
        }


def _decide(decision: Decision, reason: str, metrics: DecisionMetrics) -> PreflightDecision:
    logger.debug(
        "Preflight %s (%s), estimated bytes: %s of %d",
        decision.value,
        reason,
        metrics.estimated_bytes
        if metrics.estimated_bytes is not None
        else metrics.stage_a_estimated_bytes,
        metrics.budget_bytes,
    )
    return PreflightDecision(decision=decision, reason=reason, metrics=metrics)


def preflight_stage_a(
    data: bytes,
    budget_bytes: float,
    max_decoded_image_pixels: float | None = None,
) -> PreflightDecision:
    """Decides from raw PDF bytes whether rendering may proceed.

    Only the single largest image counts; many small images do not add up to
    a skip here. The largest image is clamped to ``max_decoded_image_pixels``
    when configured, since the renderer will not decode beyond it.

    Args:
        data: Undecoded PDF bytes.
        budget_bytes: Byte budget (normalized to a positive integer).
        max_decoded_image_pixels: Optional decoded-image pixel ceiling;
            invalid values are ignored.

    Returns:
        PreflightDecision with reason ``stageA.*``.
    """
    budget = normalize_budget_bytes(budget_bytes)
    ceiling = normalize_max_decoded_image_pixels(max_decoded_image_pixels)
    scan = scan_pdf_bytes(data, budget_bytes=budget)

    if scan.uncertain:
        return _decide(
            Decision.SKIP,
            REASON_STAGE_A_UNCERTAIN,
            DecisionMetrics(budget_bytes=budget, scan=scan),
        )

    effective_max_image_pixels = scan.max_image_pixels
    if ceiling is not None:
        effective_max_image_pixels = min(effective_max_image_pixels, ceiling)
    estimated = effective_max_image_pixels * BYTES_PER_PIXEL

    metrics = DecisionMetrics(
        budget_bytes=budget,
        scan=scan,
        max_decoded_image_pixels=ceiling,
        stage_a_estimated_bytes=estimated,
    )
    if estimated > budget:
        return _decide(Decision.SKIP, REASON_STAGE_A_MAX_IMAGE_OVER_BUDGET, metrics)
    return _decide(Decision.RENDER, REASON_STAGE_A_ALLOW, metrics)


async def preflight_stage_b(
    ops: Any,
    page: Any,
    scan: ByteScanMetrics,
    budget_bytes: float,
    timeout_ms: float,
    multipliers: Multipliers,
    max_decoded_image_pixels: float | None = None,
) -> PreflightDecision:
    """Decides from the page operator list and viewport whether to render.

    Args:
        ops: Engine operator table (name -> numeric id).
        page: Engine page handle. It is never destroyed here; on timeout
            only ``cleanup()`` is requested.
        scan: Stage A metrics, passed through rather than re-scanned.
        budget_bytes: Byte budget (normalized to a positive integer).
        timeout_ms: Operator list wait limit.
        multipliers: Transparency group / soft mask multipliers.
        max_decoded_image_pixels: Optional decoded-image pixel ceiling.

    Returns:
        PreflightDecision with reason ``stageB.*``.
    """
    budget = normalize_budget_bytes(budget_bytes)
    ceiling = normalize_max_decoded_image_pixels(max_decoded_image_pixels)

    if scan.uncertain:
        return _decide(
            Decision.SKIP,
            REASON_STAGE_B_SCAN_UNCERTAIN,
            DecisionMetrics(budget_bytes=budget, scan=scan),
        )

    operators = await get_operator_list_metrics(ops, page, timeout_ms)
    if operators.uncertain:
        reason = (
            REASON_STAGE_B_OPERATOR_LIST_TIMEOUT
            if operators.timed_out
            else REASON_STAGE_B_OPERATOR_LIST_UNCERTAIN
        )
        return _decide(
            Decision.SKIP,
            reason,
            DecisionMetrics(budget_bytes=budget, scan=scan, operators=operators),
        )

    viewport = get_viewport_pixels(page)
    if viewport.uncertain:
        return _decide(
            Decision.SKIP,
            REASON_STAGE_B_VIEWPORT_UNCERTAIN,
            DecisionMetrics(budget_bytes=budget, scan=scan, operators=operators),
        )

    estimated = estimate_worst_case_bytes(
        page_pixels=viewport.page_pixels,
        paint_ops=operators.paint_ops,
        max_image_pixels=scan.max_image_pixels,
        max_inline_image_pixels=operators.max_inline_image_pixels,
        has_soft_mask=operators.mask_paint_ops > 0,
        has_transparency_group=operators.transparency_group_ops > 0,
        max_decoded_image_pixels=ceiling,
        multipliers=multipliers,
    )

    metrics = DecisionMetrics(
        budget_bytes=budget,
        scan=scan,
        max_decoded_image_pixels=ceiling,
        operators=operators,
        page_pixels=viewport.page_pixels,
        estimated_bytes=estimated,
    )
    if not math.isfinite(estimated):
        return _decide(Decision.SKIP, REASON_STAGE_B_ESTIMATE_INVALID, metrics)
    if estimated > budget:
        return _decide(Decision.SKIP, REASON_STAGE_B_COMPOSITE_OVER_BUDGET, metrics)
    return _decide(Decision.RENDER, REASON_STAGE_B_ALLOW, metrics)
