import pytest

from camstream.controls import (
    parse_control_values,
    parse_rectangle,
    parse_size,
    strip_enum_prefix,
)


def test_parse_rectangle_slash_form():
    assert parse_rectangle("(10,-20)/640x480") == (10, -20, 640, 480)


def test_parse_rectangle_comma_form():
    assert parse_rectangle("1,2,3,4") == (1, 2, 3, 4)


def test_parse_rectangle_invalid_is_empty():
    assert parse_rectangle("garbage") == (0, 0, 0, 0)


def test_parse_size_forms():
    assert parse_size("640x480") == (640, 480)
    assert parse_size("800,600") == (800, 600)


def test_parse_size_invalid_is_empty():
    assert parse_size("x") == parse_rectangle("x")[2:]


def test_parse_control_values_skips_empty():
    assert parse_control_values("1,,2,", int) == [1, 2]


def test_parse_control_values_single():
    assert parse_control_values("1.5", float) == [1.5]


@pytest.mark.parametrize("value", ["", ",,", None])
def test_parse_control_values_empty_raises(value):
    with pytest.raises(ValueError):
        parse_control_values(value, int)


def test_parse_control_values_with_size():
    assert parse_control_values("640x480", parse_size) == [(640, 480)]


def test_strip_enum_prefix():
    values = {0: "MeteringCentreWeighted", 1: "MeteringSpot", 2: "Custom"}
    assert strip_enum_prefix(values, "Metering") == {0: "CentreWeighted", 1: "Spot", 2: "Custom"}


def test_strip_enum_prefix_without_prefix_keeps_names():
    values = [(0, "AfModeManual"), (1, "AfModeAuto")]
    assert strip_enum_prefix(values, None) == dict(values)