"""Tests for the colour model: DeviceColor, HSV conversion, mode tables."""

from __future__ import annotations

import pytest

from pyIPortSM.color import (
    BLACK,
    COLOR_CYCLE,
    DEFAULT_MODE_COLORS,
    HSV,
    MODE_OFF,
    MODE_UNKNOWN,
    WHITE,
    DeviceColor,
    ModeTable,
    classify_mode,
    hsv_to_rgb,
    parse_color_value,
    rgb_to_hsv,
)
from pyIPortSM.enums import ModeMatch


# ---------------------------------------------------------------------------
# DeviceColor
# ---------------------------------------------------------------------------


class TestDeviceColor:

    def test_construction(self):
        c = DeviceColor(1, 2, 3)
        assert (c.r, c.g, c.b) == (1, 2, 3)
        assert c.as_tuple() == (1, 2, 3)

    @pytest.mark.parametrize("channels", [(-1, 0, 0), (0, 256, 0), (0, 0, 1000)])
    def test_out_of_range_rejected(self, channels):
        with pytest.raises(ValueError):
            DeviceColor(*channels)

    def test_non_int_rejected(self):
        with pytest.raises(ValueError):
            DeviceColor(1.5, 0, 0)
        with pytest.raises(ValueError):
            DeviceColor(True, 0, 0)

    def test_immutable(self):
        c = DeviceColor(1, 2, 3)
        with pytest.raises(AttributeError):
            c.r = 5

    def test_hex(self):
        assert DeviceColor.from_hex("#FF8000") == DeviceColor(255, 128, 0)
        assert DeviceColor.from_hex("00ff00") == DeviceColor(0, 255, 0)
        assert DeviceColor(255, 128, 0).to_hex() == "#FF8000"

    @pytest.mark.parametrize("text", ["#FFF", "#GGGGGG", "", "#1234567"])
    def test_bad_hex(self, text):
        with pytest.raises(ValueError):
            DeviceColor.from_hex(text)

    def test_is_black(self):
        assert BLACK.is_black
        assert not WHITE.is_black
        assert not DeviceColor(0, 0, 1).is_black

    def test_str(self):
        assert str(DeviceColor(255, 0, 12)) == "(255,0,12)"


# ---------------------------------------------------------------------------
# HSV conversion
# ---------------------------------------------------------------------------


class TestRgbToHsv:

    def test_primaries(self):
        assert rgb_to_hsv(255, 0, 0) == HSV(0.0, 100.0, 100.0)
        assert rgb_to_hsv(0, 255, 0) == HSV(120.0, 100.0, 100.0)
        assert rgb_to_hsv(0, 0, 255) == HSV(240.0, 100.0, 100.0)

    def test_achromatic_hue_zero(self):
        assert rgb_to_hsv(255, 255, 255) == HSV(0.0, 0.0, 100.0)
        assert rgb_to_hsv(0, 0, 0) == HSV(0.0, 0.0, 0.0)
        h, s, _ = rgb_to_hsv(100, 100, 100)
        assert h == 0.0 and s == 0.0

    def test_purple(self):
        h, s, v = rgb_to_hsv(128, 0, 128)
        assert h == pytest.approx(300.0)
        assert s == pytest.approx(100.0)
        assert v == pytest.approx(128 / 255 * 100)

    def test_ranges(self):
        for r, g, b in [(12, 200, 99), (255, 1, 254), (3, 3, 4)]:
            h, s, v = rgb_to_hsv(r, g, b)
            assert 0 <= h < 360
            assert 0 <= s <= 100
            assert 0 <= v <= 100


class TestHsvToRgb:

    def test_primaries(self):
        assert hsv_to_rgb(0, 100, 100) == DeviceColor(255, 0, 0)
        assert hsv_to_rgb(120, 100, 100) == DeviceColor(0, 255, 0)
        assert hsv_to_rgb(240, 100, 100) == DeviceColor(0, 0, 255)
        assert hsv_to_rgb(60, 100, 100) == DeviceColor(255, 255, 0)

    def test_hue_wraps(self):
        assert hsv_to_rgb(360, 100, 100) == DeviceColor(255, 0, 0)

    def test_clamped(self):
        assert hsv_to_rgb(0, 150, 200) == DeviceColor(255, 0, 0)
        assert hsv_to_rgb(0, -10, -10) == DeviceColor(0, 0, 0)

    def test_grey(self):
        assert hsv_to_rgb(0, 0, 50) == DeviceColor(128, 128, 128)

    def test_round_trip_within_one(self):
        for r in range(0, 256, 17):
            for g in range(0, 256, 51):
                for b in (0, 64, 200, 255):
                    back = hsv_to_rgb(*rgb_to_hsv(r, g, b))
                    assert abs(back.r - r) <= 1
                    assert abs(back.g - g) <= 1
                    assert abs(back.b - b) <= 1


# ---------------------------------------------------------------------------
# ModeTable
# ---------------------------------------------------------------------------


class TestModeTable:

    def test_defaults(self):
        table = ModeTable()
        assert list(table) == list(DEFAULT_MODE_COLORS)
        assert table["purple"] == DeviceColor(128, 0, 128)
        assert len(table) == 6

    def test_overrides_and_extensions(self):
        table = ModeTable({"Red": DeviceColor(200, 0, 0),
                           "orange": DeviceColor(255, 128, 0)})
        assert table["red"] == DeviceColor(200, 0, 0)
        assert table["orange"] == DeviceColor(255, 128, 0)
        assert len(table) == 7

    def test_without_defaults(self):
        table = ModeTable({"x": WHITE}, include_defaults=False)
        assert list(table) == ["x"]

    def test_cycle_names_exist(self):
        table = ModeTable()
        assert COLOR_CYCLE == ("red", "green", "blue", "yellow", "purple", "white")
        for name in COLOR_CYCLE:
            assert name in table


# ---------------------------------------------------------------------------
# classify_mode
# ---------------------------------------------------------------------------


class TestClassifyNormalized:

    def test_off(self):
        assert classify_mode(BLACK, ModeTable()) == MODE_OFF

    def test_exact(self):
        table = ModeTable()
        assert classify_mode(DeviceColor(255, 0, 0), table) == "red"
        assert classify_mode(WHITE, table) == "white"

    def test_dimmed_colour_matches(self):
        table = ModeTable()
        assert classify_mode(DeviceColor(128, 0, 0), table) == "red"
        assert classify_mode(DeviceColor(100, 100, 0), table) == "yellow"
        assert classify_mode(DeviceColor(10, 10, 10), table) == "white"

    def test_unknown(self):
        assert classify_mode(DeviceColor(220, 30, 30), ModeTable()) == MODE_UNKNOWN

    def test_scaled_halves_round_up(self):
        # 1 / 6 * 255 == 42.5 scales to 43, not to the even 42.
        table = ModeTable({"amber": DeviceColor(255, 43, 0)})
        assert classify_mode(DeviceColor(6, 1, 0), table) == "amber"

    def test_half_brightness_entry_never_matches(self):
        # (128,0,128) scales to (255,0,255) before the comparison.
        assert classify_mode(DeviceColor(128, 0, 128), ModeTable()) == MODE_UNKNOWN


class TestClassifyTolerance:

    def _classify(self, color, **kw):
        return classify_mode(
            color, ModeTable(), algorithm=ModeMatch.TOLERANCE, **kw
        )

    def test_off(self):
        assert self._classify(BLACK) == MODE_OFF

    def test_within_tolerance(self):
        assert self._classify(DeviceColor(220, 30, 30)) == "red"
        assert self._classify(DeviceColor(128, 0, 128)) == "purple"

    def test_no_normalisation(self):
        assert self._classify(DeviceColor(128, 0, 0)) == MODE_UNKNOWN

    def test_custom_tolerance(self):
        assert self._classify(DeviceColor(220, 30, 30), tolerance=10) == MODE_UNKNOWN

    def test_closest_wins(self):
        table = ModeTable({"warm": DeviceColor(255, 40, 40)})
        color = DeviceColor(250, 35, 35)
        assert classify_mode(
            color, table, algorithm=ModeMatch.TOLERANCE
        ) == "warm"


# ---------------------------------------------------------------------------
# parse_color_value
# ---------------------------------------------------------------------------


class TestParseColorValue:

    def test_hex(self):
        assert parse_color_value("#0000FF", ModeTable()) == DeviceColor(0, 0, 255)

    def test_mode_name_case_insensitive(self):
        assert parse_color_value(" Purple ", ModeTable()) == DeviceColor(128, 0, 128)

    def test_unknown(self):
        with pytest.raises(ValueError):
            parse_color_value("magenta", ModeTable())
