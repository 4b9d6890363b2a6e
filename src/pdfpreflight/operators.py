# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Classification of a rendering engine's operator table."""

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .exceptions import EngineAdapterError
from .utils import is_finite_number

logger = logging.getLogger(__name__)


class ImageOpKind(enum.Enum):
    """Kinds of image paint operators."""

    X_OBJECT = "xObject"
    INLINE = "inline"
    MASK = "mask"


@dataclass(frozen=True)
class ImageOpEntry:
    """An image paint operator as named by the engine."""

    name: str
    kind: ImageOpKind


def classify_image_op(name: str) -> ImageOpKind | None:
    """Classifies an operator name as an image paint operator.

    Only names starting with ``paint`` are considered. Inline images are
    checked first, then masks, then anything else that paints an image or
    JPEG.

    Args:
        name: Operator name from the engine table (e.g. ``paintImageXObject``).

    Returns:
        The ImageOpKind, or None for non-image operators.
    """
    if not name.startswith("paint"):
        return None
    if "InlineImage" in name:
        return ImageOpKind.INLINE
    if "Mask" in name:
        return ImageOpKind.MASK
    if "Image" in name or "Jpeg" in name:
        return ImageOpKind.X_OBJECT
    return None


def is_transparency_group_op_name(name: str) -> bool:
    return "group" in name.lower()


def _iter_numeric_ops(ops: Mapping[Any, Any]):
    for name, op_id in ops.items():
        if not isinstance(name, str) or not is_finite_number(op_id):
            continue
        yield name, op_id


def build_image_op_by_id(ops: Mapping[Any, Any]) -> dict[float, ImageOpEntry]:
    """Maps operator id -> image paint operator entry (first name wins)."""
    image_ops: dict[float, ImageOpEntry] = {}
    for name, op_id in _iter_numeric_ops(ops):
        kind = classify_image_op(name)
        if kind is None:
            continue
        if op_id not in image_ops:
            image_ops[op_id] = ImageOpEntry(name=name, kind=kind)
    return image_ops


def build_transparency_group_op_ids(ops: Mapping[Any, Any]) -> frozenset[float]:
    return frozenset(
        op_id for name, op_id in _iter_numeric_ops(ops) if is_transparency_group_op_name(name)
    )


@dataclass(frozen=True)
class OperatorClassifier:
    """Lookup tables derived from an engine operator table.

    Attributes:
        image_op_by_id: Operator id -> image paint operator entry.
        transparency_group_op_ids: Ids of transparency group operators.
    """

    image_op_by_id: dict[float, ImageOpEntry] = field(default_factory=dict)
    transparency_group_op_ids: frozenset[float] = frozenset()

    @classmethod
    def from_ops(cls, ops: Any) -> "OperatorClassifier":
        """Builds a classifier from an engine operator table.

        Args:
            ops: Mapping of operator name to numeric operator id.

        Returns:
            The classifier.

        Raises:
            EngineAdapterError: If ``ops`` is not a mapping or contains no
                image paint operators.
        """
        if not isinstance(ops, Mapping):
            raise EngineAdapterError("Operator table is missing or not a mapping")

        image_op_by_id = build_image_op_by_id(ops)
        if not image_op_by_id:
            raise EngineAdapterError("Operator table has no image paint operators")

        classifier = cls(
            image_op_by_id=image_op_by_id,
            transparency_group_op_ids=build_transparency_group_op_ids(ops),
        )
        logger.debug(
            "Classified %d image op(s) and %d group op(s)",
            len(classifier.image_op_by_id),
            len(classifier.transparency_group_op_ids),
        )
        return classifier

    def image_op(self, op_id: Any) -> ImageOpEntry | None:
        return self.image_op_by_id.get(op_id)

    def is_transparency_group_op(self, op_id: Any) -> bool:
        return op_id in self.transparency_group_op_ids
