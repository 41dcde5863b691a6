"""
Tests for Plutus datum decoding and typed projections.
"""
import cbor2
import pytest

from oracle_validator.errors import UnexpectedDatumShape
from oracle_validator.ledger.assets import ADA, AssetClass
from oracle_validator.ledger.datum import (
    ByteArrayData,
    ConstrData,
    IntData,
    ListData,
    MapData,
    decode_datum,
    decode_datum_hex,
    encode_datum,
    expect_bytes,
    expect_constr,
    expect_int,
    expect_list,
    expect_map,
    expect_utf8,
    map_lookup,
)


class TestDecode:
    """CBOR to Datum conversion."""

    def test_compact_constructor_tags(self):
        """Tags 121..127 map to alternatives 0..6."""
        d = decode_datum(cbor2.dumps(cbor2.CBORTag(121, [1, b"\x01"])))
        assert d == ConstrData(0, (IntData(1), ByteArrayData(b"\x01")))

        d = decode_datum(cbor2.dumps(cbor2.CBORTag(127, [])))
        assert d == ConstrData(6, ())

    def test_extended_constructor_tags(self):
        """Tags 1280..1400 map to alternatives 7..127."""
        d = decode_datum(cbor2.dumps(cbor2.CBORTag(1280, [])))
        assert d == ConstrData(7, ())

        d = decode_datum(cbor2.dumps(cbor2.CBORTag(1400, [])))
        assert d == ConstrData(127, ())

    def test_general_constructor_form(self):
        """Tag 102 carries [alternative, fields]."""
        d = decode_datum(cbor2.dumps(cbor2.CBORTag(102, [500, [7]])))
        assert d == ConstrData(500, (IntData(7),))

    def test_bignum(self):
        """Bignum tags become plain ints."""
        d = decode_datum(cbor2.dumps(2 ** 80))
        assert d == IntData(2 ** 80)

        d = decode_datum(cbor2.dumps(-(2 ** 80)))
        assert d == IntData(-(2 ** 80))

    def test_map_and_list(self):
        d = decode_datum(cbor2.dumps({b"ticker": b"SNEK", b"decimals": 0}))
        assert isinstance(d, MapData)
        assert map_lookup(d.items, "ticker") == ByteArrayData(b"SNEK")
        assert map_lookup(d.items, "missing") is None

        d = decode_datum(cbor2.dumps([1, [2]]))
        assert d == ListData((IntData(1), ListData((IntData(2),))))

    def test_unknown_tag_rejected(self):
        with pytest.raises(UnexpectedDatumShape) as exc:
            decode_datum(cbor2.dumps(cbor2.CBORTag(130, [])))
        assert "constructor tag" in str(exc.value)

    def test_non_plutus_values_rejected(self):
        """Booleans, strings and floats are not Plutus data."""
        for value in (True, "text", 1.5, None):
            with pytest.raises(UnexpectedDatumShape):
                decode_datum(cbor2.dumps(value))

    def test_undecodable_bytes(self):
        with pytest.raises(UnexpectedDatumShape):
            decode_datum(b"\x9f\x01")

    def test_deep_nesting(self):
        with pytest.raises(UnexpectedDatumShape):
            decode_datum(b"\x81" * 5000 + b"\x00")

    def test_hex_entry_point(self):
        assert decode_datum_hex(cbor2.dumps(5).hex()) == IntData(5)
        with pytest.raises(UnexpectedDatumShape):
            decode_datum_hex("zz")

    def test_encode_inverse(self):
        datum = ConstrData(9, (
            MapData(((ByteArrayData(b"k"), IntData(1)),)),
            ListData((ConstrData(200, ()),)),
        ))
        assert decode_datum(encode_datum(datum)) == datum


class TestProjections:
    """Typed projections report expected vs actual shape."""

    def test_expect_list(self):
        assert expect_list(ListData((IntData(1),))) == (IntData(1),)
        with pytest.raises(UnexpectedDatumShape) as exc:
            expect_list(IntData(1), "prices")
        assert exc.value.expected == "list"
        assert exc.value.actual == "int"
        assert str(exc.value) == "prices: expected list, got int"

    def test_expect_int_and_bytes(self):
        assert expect_int(IntData(3)) == 3
        assert expect_bytes(ByteArrayData(b"x")) == b"x"
        with pytest.raises(UnexpectedDatumShape):
            expect_int(ByteArrayData(b"3"))
        with pytest.raises(UnexpectedDatumShape):
            expect_bytes(IntData(3))

    def test_expect_map(self):
        items = ((ByteArrayData(b"a"), IntData(1)),)
        assert expect_map(MapData(items)) == items
        with pytest.raises(UnexpectedDatumShape):
            expect_map(ListData(()))

    def test_expect_constr_checks_tag_and_arity(self):
        datum = ConstrData(0, (IntData(1), IntData(2)))
        assert expect_constr(datum, 0, 2) is datum

        with pytest.raises(UnexpectedDatumShape) as exc:
            expect_constr(datum, 1)
        assert exc.value.expected == "constr 1"
        assert exc.value.actual == "constr 0"

        with pytest.raises(UnexpectedDatumShape) as exc:
            expect_constr(datum, 0, 3)
        assert "3 fields" in str(exc.value)

    def test_expect_utf8(self):
        assert expect_utf8(ByteArrayData("₳DA".encode())) == "₳DA"
        with pytest.raises(UnexpectedDatumShape):
            expect_utf8(ByteArrayData(b"\xff\xfe"))


class TestAssetClassDatum:
    def test_from_datum(self):
        policy = bytes(range(28))
        datum = ConstrData(0, (ByteArrayData(policy), ByteArrayData(b"SNEK")))
        assert AssetClass.from_datum(datum) == AssetClass(policy, b"SNEK")

    def test_base_asset(self):
        datum = ConstrData(0, (ByteArrayData(b""), ByteArrayData(b"")))
        assert AssetClass.from_datum(datum) == ADA
        assert ADA.is_base
        assert ADA.unit == "lovelace"

    def test_bad_policy_length(self):
        datum = ConstrData(0, (ByteArrayData(b"\x01" * 10), ByteArrayData(b"")))
        with pytest.raises(UnexpectedDatumShape):
            AssetClass.from_datum(datum)

    def test_structural_equality(self):
        """Asset classes built separately are the same mapping key."""
        a = AssetClass(b"\x01" * 28, b"X")
        b = AssetClass.from_string(f"{'01' * 28}.58")
        assert a == b
        assert {a: 1}[b] == 1
        assert AssetClass.from_unit(a.unit) == a
