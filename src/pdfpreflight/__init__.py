# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""pdfpreflight - Decide whether a PDF page is safe to rasterize."""

from importlib.metadata import PackageNotFoundError, version

from .byte_scan import ByteScanMetrics, scan_pdf_bytes
from .config import DeviceProfile, Multipliers, PreflightConfig, load_config
from .decision import (
    Decision,
    DecisionMetrics,
    PreflightDecision,
    preflight_stage_a,
    preflight_stage_b,
)
from .exceptions import (
    ConfigurationError,
    DocumentError,
    EngineAdapterError,
    PreflightError,
)
from .operator_list import OperatorListMetrics, get_operator_list_metrics
from .preflight import PageResult, preflight_document, preflight_page

try:
    __version__ = version("pdfpreflight")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "scan_pdf_bytes",
    "get_operator_list_metrics",
    "preflight_stage_a",
    "preflight_stage_b",
    "preflight_page",
    "preflight_document",
    "load_config",
    "ByteScanMetrics",
    "OperatorListMetrics",
    "Decision",
    "DecisionMetrics",
    "PreflightDecision",
    "PageResult",
    "PreflightConfig",
    "Multipliers",
    "DeviceProfile",
    "PreflightError",
    "ConfigurationError",
    "EngineAdapterError",
    "DocumentError",
]
