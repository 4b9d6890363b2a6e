# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Unit tests for config.py."""

import pytest

from pdfpreflight.config import (
    ENV_BUDGET_BYTES,
    ENV_MAX_DECODED_IMAGE_PIXELS,
    ENV_TIMEOUT_MS,
    PROFILE_SETTINGS,
    DeviceProfile,
    Multipliers,
    PreflightConfig,
    load_config,
    normalize_budget_bytes,
    normalize_max_decoded_image_pixels,
    normalize_timeout_ms,
)
from pdfpreflight.exceptions import ConfigurationError, PreflightError
from pdfpreflight.utils import MAX_SAFE_INTEGER


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Removes environment overrides for each test."""
    for name in (ENV_BUDGET_BYTES, ENV_MAX_DECODED_IMAGE_PIXELS, ENV_TIMEOUT_MS):
        monkeypatch.delenv(name, raising=False)


class TestMultipliers:
    """Tests for Multipliers."""

    def test_defaults(self) -> None:
        """Both multipliers default to 1.5."""
        multipliers = Multipliers()

        assert multipliers.transparency_group == 1.5
        assert multipliers.soft_mask == 1.5

    @pytest.mark.parametrize("value", [0, -1, float("nan"), float("inf"), "2", None])
    def test_invalid_values(self, value) -> None:
        """Non-positive or non-numeric multipliers are rejected."""
        with pytest.raises(ConfigurationError):
            Multipliers(transparency_group=value)
        with pytest.raises(ConfigurationError):
            Multipliers(soft_mask=value)

    def test_to_dict(self) -> None:
        """to_dict() uses camelCase keys."""
        assert Multipliers(1, 2).to_dict() == {"transparencyGroup": 1, "softMask": 2}


class TestNormalization:
    """Tests for the normalize_* helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (1_000_000, 1_000_000),
            (1234.9, 1234),
            (0.5, 1),
            (0, 1),
            (-5, 1),
            (float("nan"), 1),
            (float("inf"), 1),
            ("100", 1),
            (True, 1),
            (None, 1),
        ],
    )
    def test_budget_bytes(self, value, expected: int) -> None:
        """Budgets become positive integers."""
        assert normalize_budget_bytes(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            (50_000_000, 50_000_000),
            (10.7, 10),
            (MAX_SAFE_INTEGER, MAX_SAFE_INTEGER),
            (MAX_SAFE_INTEGER + 1, None),
            (0.5, None),
            (0, None),
            (-1, None),
            (float("inf"), None),
            (None, None),
        ],
    )
    def test_max_decoded_image_pixels(self, value, expected) -> None:
        """Ceilings are positive safe integers or dropped."""
        assert normalize_max_decoded_image_pixels(value) == expected

    @pytest.mark.parametrize(
        "value,expected", [(2500, 2500), (10.9, 10), (0.5, 1), (0, 1), (-3, 1), (None, 1)]
    )
    def test_timeout_ms(self, value, expected: int) -> None:
        """Timeouts are at least one millisecond."""
        assert normalize_timeout_ms(value) == expected


class TestLoadConfig:
    """Tests for load_config()."""

    def test_desktop_defaults(self) -> None:
        """The desktop profile is the default."""
        config = load_config()
        settings = PROFILE_SETTINGS[DeviceProfile.DESKTOP]

        assert isinstance(config, PreflightConfig)
        assert config.budget_bytes == settings["budget_bytes"]
        assert config.max_decoded_image_pixels == settings["max_decoded_image_pixels"]
        assert config.timeout_ms == settings["timeout_ms"]
        assert config.multipliers == Multipliers()

    def test_profile_by_name(self) -> None:
        """Profiles can be given by case-insensitive name."""
        config = load_config("MOBILE")

        assert config.budget_bytes == PROFILE_SETTINGS[DeviceProfile.MOBILE]["budget_bytes"]

    def test_mobile_is_tighter(self) -> None:
        """The mobile profile has smaller limits than desktop."""
        desktop = load_config(DeviceProfile.DESKTOP)
        mobile = load_config(DeviceProfile.MOBILE)

        assert mobile.budget_bytes < desktop.budget_bytes
        assert mobile.timeout_ms < desktop.timeout_ms

    def test_invalid_profile(self) -> None:
        """Unknown profiles raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Invalid profile"):
            load_config("tablet")

    def test_overrides(self) -> None:
        """Keyword overrides replace profile values."""
        multipliers = Multipliers(2, 3)
        config = load_config(budget_bytes=1_000, timeout_ms=10, multipliers=multipliers)

        assert config.budget_bytes == 1_000
        assert config.timeout_ms == 10
        assert config.multipliers is multipliers

    def test_none_overrides_ignored(self) -> None:
        """Overrides set to None keep the profile value."""
        config = load_config(budget_bytes=None)

        assert config.budget_bytes == PROFILE_SETTINGS[DeviceProfile.DESKTOP]["budget_bytes"]

    def test_unknown_override(self) -> None:
        """Unknown option names are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown"):
            load_config(budget=5)

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables replace profile values."""
        monkeypatch.setenv(ENV_BUDGET_BYTES, "1_000_000")
        monkeypatch.setenv(ENV_MAX_DECODED_IMAGE_PIXELS, "2000")
        monkeypatch.setenv(ENV_TIMEOUT_MS, " 250 ")
        config = load_config()

        assert config.budget_bytes == 1_000_000
        assert config.max_decoded_image_pixels == 2000
        assert config.timeout_ms == 250

    def test_keyword_beats_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Keyword overrides take precedence over the environment."""
        monkeypatch.setenv(ENV_BUDGET_BYTES, "1000")
        config = load_config(budget_bytes=5000)

        assert config.budget_bytes == 5000

    def test_empty_environment_value_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Blank variables are treated as unset."""
        monkeypatch.setenv(ENV_TIMEOUT_MS, "  ")
        config = load_config()

        assert config.timeout_ms == PROFILE_SETTINGS[DeviceProfile.DESKTOP]["timeout_ms"]

    @pytest.mark.parametrize("raw", ["abc", "1.5", "0", "-10"])
    def test_invalid_environment_value(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        """Malformed environment values raise ConfigurationError."""
        monkeypatch.setenv(ENV_BUDGET_BYTES, raw)

        with pytest.raises(ConfigurationError, match=ENV_BUDGET_BYTES):
            load_config()

    def test_configuration_error_hierarchy(self) -> None:
        """ConfigurationError is a PreflightError."""
        assert issubclass(ConfigurationError, PreflightError)
