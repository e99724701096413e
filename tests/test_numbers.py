from decimal import Decimal

from conecta.utils.numbers import empty_to_none, to_numeric_or_none


def test_numeric_coercion_accepts_formatted_money():
    assert to_numeric_or_none("$1,250.75") == Decimal("1250.75")
    assert to_numeric_or_none(" 3.5 ") == Decimal("3.5")
    assert to_numeric_or_none(0) == Decimal("0")


def test_numeric_coercion_maps_junk_to_none():
    for value in ("", "   ", None, "abc", "NaN", "Infinity", True, False):
        assert to_numeric_or_none(value) is None, value


def test_empty_to_none_only_touches_blank_strings():
    assert empty_to_none("") is None
    assert empty_to_none("  ") is None
    assert empty_to_none(0) == 0
    assert empty_to_none("x") == "x"
