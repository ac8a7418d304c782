import os
import sys
from decimal import Decimal

import pytest

# Add repo root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from fixed_point import FixedPointValue, format_unsigned, hex_to_int, wei_to_ether
from rpc_errors import ParseError, RpcError


@pytest.mark.parametrize(
    "hex_value, decimals, expected",
    [
        ("0x0", 18, "0"),
        ("0xde0b6b3a7640000", 18, "1"),
        ("0x1", 6, "0.000001"),
        ("0x64", 0, "100"),
        ("0x16e360", 6, "1.5"),
        ("0x12a05f200", 9, "5"),
        ("de0b6b3a7640000", 18, "1"),
        ("0XFF", 1, "25.5"),
    ],
)
def test_format_unsigned_known_values(hex_value, decimals, expected):
    assert format_unsigned(hex_value, decimals) == expected


def test_format_unsigned_beyond_double_precision():
    # 2**256 - 1 wei, far past 2**53
    max_uint = "0x" + "f" * 64
    magnitude = 2 ** 256 - 1
    out = format_unsigned(max_uint, 18)
    whole, frac = out.split(".")
    assert int(whole) == magnitude // 10 ** 18
    assert frac == str(magnitude % 10 ** 18).rjust(18, "0").rstrip("0")


def test_format_unsigned_reassembles_to_magnitude():
    for magnitude in (0, 1, 7, 10, 10 ** 18, 123456789012345678901234567890, 2 ** 200 + 3):
        for decimals in (0, 1, 6, 18, 30):
            out = format_unsigned(hex(magnitude), decimals)
            whole, _, frac = out.partition(".")
            assert not frac.endswith("0")
            rebuilt = int(whole) * 10 ** decimals + int(frac.ljust(decimals, "0") or "0")
            assert rebuilt == magnitude


def test_trailing_zeros_trimmed():
    assert format_unsigned(hex(1_500_000_000_000_000_000), 18) == "1.5"
    assert format_unsigned(hex(10), 1) == "1"


def test_wei_to_ether():
    assert wei_to_ether("0x29a2241af62c0000") == "3"
    assert wei_to_ether("0x2386f26fc10000") == "0.01"


@pytest.mark.parametrize("bad", ["", "0x", "0xzz", "-0x1", "0x1_0", " 0x10", "1 0", "0x-1"])
def test_invalid_hex_raises_parse_error(bad):
    with pytest.raises(ParseError):
        hex_to_int(bad)


def test_parse_error_is_rpc_and_value_error():
    with pytest.raises(RpcError):
        format_unsigned("nothex", 18)
    with pytest.raises(ValueError):
        format_unsigned("nothex", 18)


def test_non_string_input_rejected():
    with pytest.raises(ParseError):
        hex_to_int(100)


@pytest.mark.parametrize("decimals", [-1, 1.5, True])
def test_bad_decimals_rejected(decimals):
    with pytest.raises(ValueError):
        format_unsigned("0x1", decimals)


def test_fixed_point_value():
    value = FixedPointValue.from_hex("0x16e360", 6)
    assert value.magnitude == 1_500_000
    assert str(value) == "1.5"
    assert value.to_decimal() == Decimal("1.5")


def test_fixed_point_value_decimal_is_exact():
    magnitude = 2 ** 256 - 1
    value = FixedPointValue(magnitude, 18)
    assert value.to_decimal() == Decimal(str(value))
    assert value.to_decimal().as_tuple().exponent == -18


def test_fixed_point_value_rejects_negative():
    with pytest.raises(ValueError):
        FixedPointValue(-1, 18)
