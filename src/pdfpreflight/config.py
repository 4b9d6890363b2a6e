# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Preflight configuration: budgets, ceilings, timeouts and multipliers."""

import enum
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ConfigurationError
from .utils import MAX_SAFE_INTEGER, is_finite_number

logger = logging.getLogger(__name__)

ENV_BUDGET_BYTES = "PDFPREFLIGHT_BUDGET_BYTES"
ENV_MAX_DECODED_IMAGE_PIXELS = "PDFPREFLIGHT_MAX_DECODED_IMAGE_PIXELS"
ENV_TIMEOUT_MS = "PDFPREFLIGHT_TIMEOUT_MS"

DEFAULT_MULTIPLIER = 1.5


@dataclass(frozen=True)
class Multipliers:
    """Worst-case scale factors for expensive compositing features.

    Attributes:
        transparency_group: Applied when the page paints transparency groups.
        soft_mask: Applied when the page paints image masks.
    """

    transparency_group: float = DEFAULT_MULTIPLIER
    soft_mask: float = DEFAULT_MULTIPLIER

    def __post_init__(self) -> None:
        for name in ("transparency_group", "soft_mask"):
            value = getattr(self, name)
            if not is_finite_number(value) or value <= 0:
                raise ConfigurationError(
                    f"Multiplier {name} must be a positive number, got {value!r}"
                )

    def to_dict(self) -> dict[str, float]:
        return {"transparencyGroup": self.transparency_group, "softMask": self.soft_mask}


class DeviceProfile(enum.Enum):
    """Default limit presets.

    Attributes:
        DESKTOP: Generous memory, longer operator-list timeout.
        MOBILE: Tight memory, short timeout.
    """

    DESKTOP = "desktop"
    MOBILE = "mobile"


PROFILE_SETTINGS: dict[DeviceProfile, dict[str, Any]] = {
    DeviceProfile.DESKTOP: {
        "budget_bytes": 400_000_000,
        "max_decoded_image_pixels": 50_000_000,
        "timeout_ms": 5_000,
    },
    DeviceProfile.MOBILE: {
        "budget_bytes": 128_000_000,
        "max_decoded_image_pixels": 15_000_000,
        "timeout_ms": 2_500,
    },
}


def normalize_budget_bytes(value: Any) -> int:
    """Normalizes a byte budget to a positive integer (minimum 1)."""
    if not is_finite_number(value) or value <= 0:
        return 1
    return max(1, math.floor(value))


def normalize_max_decoded_image_pixels(value: Any) -> int | None:
    """Normalizes an optional pixel ceiling.

    Returns:
        A positive safe integer, or None when the value is missing or invalid.
    """
    if not is_finite_number(value) or value <= 0:
        return None
    safe = math.floor(value)
    if safe <= 0 or safe > MAX_SAFE_INTEGER:
        return None
    return safe


def normalize_timeout_ms(value: Any) -> int:
    """Normalizes an operator-list timeout in milliseconds (minimum 1)."""
    if not is_finite_number(value) or value <= 0:
        return 1
    return max(1, math.floor(value))


@dataclass
class PreflightConfig:
    """Caller-supplied limits for a preflight run.

    Attributes:
        budget_bytes: Ceiling on estimated worst-case decode/paint bytes.
        timeout_ms: How long Stage B waits for the operator list.
        max_decoded_image_pixels: Optional ceiling on decoded image size.
        multipliers: Transparency group / soft mask scale factors.
    """

    budget_bytes: int
    timeout_ms: int
    max_decoded_image_pixels: int | None = None
    multipliers: Multipliers = field(default_factory=Multipliers)


def _read_env_int(name: str) -> int | None:
    """Reads a positive integer environment override."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw.strip().replace("_", ""))
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_config(
    profile: DeviceProfile | str = DeviceProfile.DESKTOP,
    **overrides: Any,
) -> PreflightConfig:
    """Builds a PreflightConfig from profile defaults and overrides.

    Precedence (lowest first): profile defaults, environment variables,
    keyword overrides. Overrides set to None are ignored.

    Args:
        profile: DeviceProfile or its string value.
        **overrides: Any PreflightConfig field.

    Returns:
        The assembled configuration.

    Raises:
        ConfigurationError: On an unknown profile, unknown override or
            invalid environment value.
    """
    if not isinstance(profile, DeviceProfile):
        try:
            profile = DeviceProfile(str(profile).lower())
        except ValueError as e:
            allowed = ", ".join(p.value for p in DeviceProfile)
            raise ConfigurationError(
                f"Invalid profile: {profile}. Allowed: {allowed}"
            ) from e

    settings: dict[str, Any] = dict(PROFILE_SETTINGS[profile])
    settings["multipliers"] = Multipliers()

    env_values = {
        "budget_bytes": _read_env_int(ENV_BUDGET_BYTES),
        "max_decoded_image_pixels": _read_env_int(ENV_MAX_DECODED_IMAGE_PIXELS),
        "timeout_ms": _read_env_int(ENV_TIMEOUT_MS),
    }
    for key, value in env_values.items():
        if value is not None:
            logger.debug("Environment override for %s: %d", key, value)
            settings[key] = value

    unknown = set(overrides) - set(PreflightConfig.__dataclass_fields__)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration option(s): {', '.join(sorted(unknown))}"
        )
    for key, value in overrides.items():
        if value is not None:
            settings[key] = value

    return PreflightConfig(**settings)
