"""
Unit tests for shared/serialization_utils.py.
"""

import json
from decimal import Decimal

import pytest
from hexbytes import HexBytes

from shared.serialization_utils import DecimalEncoder, dumps, format_units, iso_from_seconds, to_hex

# ===========================================================================
# format_units
# ===========================================================================


class TestFormatUnits:
    def test_whole_tokens(self):
        assert format_units(10**24) == "1000000"

    def test_fractional(self):
        assert format_units(5 * 10**9) == "0.000000005"
        assert format_units(15 * 10**17) == "1.5"

    def test_zero(self):
        assert format_units(0) == "0"

    def test_hex_and_decimal_strings(self):
        assert format_units("0xde0b6b3a7640000") == "1"
        assert format_units("2000000000000000000") == "2"

    def test_custom_decimals(self):
        assert format_units(1234, decimals=2) == "12.34"

    def test_uint256_max_exact(self):
        value = 2**256 - 1
        text = format_units(value)
        assert text.replace(".", "").lstrip("0") == str(value)

    @pytest.mark.parametrize("bad", [None, "abc", True, 1.5j])
    def test_rejects_non_quantities(self, bad):
        with pytest.raises(ValueError):
            format_units(bad)


# ===========================================================================
# DecimalEncoder / dumps
# ===========================================================================


class TestDecimalEncoder:
    def test_decimal_as_string(self):
        assert json.loads(json.dumps({"x": Decimal("1.5")}, cls=DecimalEncoder)) == {"x": "1.5"}

    def test_hexbytes_as_hex(self):
        assert json.loads(dumps({"h": HexBytes(b"\x01\x02")})) == {"h": "0x0102"}

    def test_large_int_as_string(self):
        assert json.loads(dumps({"n": 2**60})) == {"n": str(2**60)}

    def test_safe_int_and_bool_unchanged(self):
        assert json.loads(dumps({"n": 42, "b": True, "l": [1, 2]})) == {"n": 42, "b": True, "l": [1, 2]}


class TestHelpers:
    def test_to_hex(self):
        assert to_hex(b"\xab") == "0xab"
        assert to_hex("0xff") == "0xff"

    def test_iso_from_seconds(self):
        assert iso_from_seconds(1_700_000_000) == "2023-11-14T22:13:20Z"
