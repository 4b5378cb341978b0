"""
Codec Tests - Tagged value encoding and bounds-checked decoding.
"""

import collections
import struct

import pytest

from lpsave import codec
from lpsave.codec import encode, decode
from lpsave.errors import CorruptBuffer, DumpFailure, UnsupportedValue, ValueTooLarge
from lpsave.spec import MAX_DEPTH, TAG_NIL, TAG_TABLE, TAG_BYTES


SHARED = 40


def double(x):
    return x * 2


def uses_global():
    return SHARED + 2


def roundtrip(value):
    data = encode(value)
    decoded, pos = decode(data)
    assert pos == len(data)
    return decoded


# =============================================================================
# Scalars
# =============================================================================

class TestScalars:

    def test_nil(self):
        assert encode(None) == bytes([TAG_NIL])
        assert roundtrip(None) is None

    def test_booleans(self):
        assert roundtrip(True) is True
        assert roundtrip(False) is False
        assert encode(True) == b"\x01\x01"

    def test_number(self):
        assert roundtrip(1.5) == 1.5
        assert roundtrip(-0.0) == 0.0
        assert encode(2.0) == b"\x03" + struct.pack("=d", 2.0)

    def test_int_becomes_float(self):
        value = roundtrip(7)
        assert value == 7
        assert isinstance(value, float)

    def test_int_without_exact_double_rejected(self):
        with pytest.raises(UnsupportedValue, match="not exactly representable"):
            encode(2**53 + 1)

    def test_huge_int_rejected(self):
        with pytest.raises(UnsupportedValue, match="does not fit"):
            encode(10**400)

    def test_bytes(self):
        assert roundtrip(b"hello") == b"hello"
        assert roundtrip(b"") == b""
        assert roundtrip(bytearray(b"ab")) == b"ab"
        assert roundtrip(memoryview(b"xyz")) == b"xyz"

    def test_strided_memoryview(self):
        assert roundtrip(memoryview(b"abcdef")[::2]) == b"ace"

    def test_bytes_layout(self):
        assert encode(b"ab") == bytes([TAG_BYTES]) + struct.pack("=I", 2) + b"ab"

    def test_str_rejected(self):
        with pytest.raises(UnsupportedValue, match="cannot serialize str"):
            encode("text")

    def test_other_kinds_rejected(self):
        for value in (object(), [1.0], (1.0,), {1.0}):
            with pytest.raises(UnsupportedValue):
                encode(value)


class TestBytesLimit:

    def test_limit_is_u32(self):
        assert codec.MAX_BYTES_LENGTH == 2**32 - 1

    def test_length_at_limit_accepted(self, monkeypatch):
        monkeypatch.setattr(codec, "MAX_BYTES_LENGTH", 8)
        assert roundtrip(b"x" * 8) == b"x" * 8

    def test_length_over_limit_rejected(self, monkeypatch):
        monkeypatch.setattr(codec, "MAX_BYTES_LENGTH", 8)
        with pytest.raises(ValueTooLarge):
            encode(b"x" * 9)


# =============================================================================
# Tables
# =============================================================================

class TestTables:

    def test_pairs_in_order(self):
        table = roundtrip({b"k1": 1.5, True: b"x"})
        assert list(table.items()) == [(b"k1", 1.5), (True, b"x")]

    def test_empty_table(self):
        assert encode({}) == bytes([TAG_TABLE, TAG_NIL])
        assert roundtrip({}) == {}

    def test_nested_tables(self):
        value = {b"outer": {b"inner": {b"deep": 1.0}}, b"after": False}
        assert roundtrip(value) == value

    def test_table_followed_by_value(self):
        data = encode({b"a": 1.0}) + encode(b"next")
        first, pos = decode(data)
        second, end = decode(data, pos)
        assert first == {b"a": 1.0}
        assert second == b"next"
        assert end == len(data)

    def test_nil_key_rejected(self):
        with pytest.raises(UnsupportedValue, match="nil key"):
            encode({None: 1.0})

    def test_dict_subclass_rejected(self):
        with pytest.raises(UnsupportedValue, match="overridden behaviour"):
            encode(collections.OrderedDict(a=1.0))
        with pytest.raises(UnsupportedValue):
            encode(collections.defaultdict(float))

    def test_nan_key_rejected(self):
        with pytest.raises(UnsupportedValue, match="NaN key"):
            encode({float("nan"): 1.0})

    def test_failed_encode_leaves_buffer_untouched(self):
        out = bytearray(b"keep")
        with pytest.raises(UnsupportedValue):
            codec.encode_into({b"a": b"ok", b"b": "text"}, out)
        assert out == b"keep"

    def test_encode_into_appends(self):
        out = bytearray(b"keep")
        codec.encode_into({b"a": 1.0}, out)
        assert out == b"keep" + encode({b"a": 1.0})

    def test_duplicate_keys_last_write_wins(self):
        data = (bytes([TAG_TABLE]) + encode(b"k") + encode(1.0)
                + encode(b"k") + encode(2.0) + bytes([TAG_NIL]))
        table, _ = decode(data)
        assert table == {b"k": 2.0}

    def test_table_key_is_corrupt(self):
        data = bytes([TAG_TABLE]) + encode({}) + encode(1.0) + bytes([TAG_NIL])
        with pytest.raises(CorruptBuffer, match="unhashable"):
            decode(data)


class TestNesting:

    def test_cyclic_table_fails_fast(self):
        table = {}
        table[b"self"] = table
        with pytest.raises(UnsupportedValue, match="nesting"):
            encode(table)

    def test_nesting_at_limit(self):
        value = {}
        for _ in range(MAX_DEPTH - 1):
            value = {b"k": value}
        assert roundtrip(value) == value

    def test_decode_nesting_over_limit(self):
        # Each level is: table tag, key, then the nested table as the value
        data = (bytes([TAG_TABLE]) + encode(b"k")) * (MAX_DEPTH + 1)
        with pytest.raises(CorruptBuffer, match="nesting"):
            decode(data)


# =============================================================================
# Closures
# =============================================================================

class TestClosures:

    def test_function_roundtrip(self):
        f = roundtrip(double)
        assert f is not double
        assert f(21) == 42
        assert f.__name__ == "double"

    def test_lambda_roundtrip(self):
        f = roundtrip(lambda s: s.upper())
        assert f(b"ab") == b"AB"

    def test_builtins_available(self):
        f = roundtrip(lambda s: len(s))
        assert f(b"abc") == 3

    def test_default_env_is_isolated(self):
        data = encode(uses_global)
        f, _ = decode(data)
        with pytest.raises(NameError):
            f()

    def test_custom_env(self):
        data = encode(uses_global)
        f, _ = decode(data, env={"SHARED": 1})
        assert f() == 3

    def test_closure_in_table(self):
        table = roundtrip({b"fn": double, b"n": 2.0})
        assert table[b"fn"](table[b"n"]) == 4.0

    def test_captured_variables_rejected(self):
        factor = 3

        def scale(x):
            return x * factor

        with pytest.raises(UnsupportedValue, match="captured variables"):
            encode(scale)

    def test_defaults_rejected(self):
        def pad(x, width=4):
            return x.ljust(width)

        with pytest.raises(UnsupportedValue, match="default arguments"):
            encode(pad)

    def test_builtin_rejected(self):
        with pytest.raises(UnsupportedValue, match="builtin"):
            encode(len)

    def test_bound_method_rejected(self):
        with pytest.raises(UnsupportedValue):
            encode(b"x".upper)

    def test_dump_failure(self, monkeypatch):
        def refuse(obj):
            raise ValueError("unmarshallable object")

        monkeypatch.setattr(codec.marshal, "dumps", refuse)
        with pytest.raises(DumpFailure, match="double"):
            encode(double)

    def test_garbage_blob_is_corrupt(self):
        data = bytes([6]) + struct.pack("=I", 3) + b"\xff\xff\xff"
        with pytest.raises(CorruptBuffer):
            decode(data)

    def test_free_variables_are_corrupt(self):
        factor = 3

        def scale(x):
            return x * factor

        blob = codec.marshal.dumps(scale.__code__)
        data = bytes([6]) + struct.pack("=I", len(blob)) + blob
        with pytest.raises(CorruptBuffer, match="expects captured variables"):
            decode(data)

    def test_non_code_blob_is_corrupt(self):
        blob = codec.marshal.dumps(1.5)
        data = bytes([6]) + struct.pack("=I", len(blob)) + blob
        with pytest.raises(CorruptBuffer, match="not a code object"):
            decode(data)


# =============================================================================
# Corrupt input
# =============================================================================

class TestCorruptInput:

    def test_empty_buffer(self):
        with pytest.raises(CorruptBuffer, match="truncated"):
            decode(b"")

    def test_unknown_tag(self):
        with pytest.raises(CorruptBuffer, match="wrong type identifier 2"):
            decode(b"\x02")

    def test_every_truncation_fails(self):
        data = encode({b"name": b"digits", b"n": 3.0, b"ok": True, b"fn": double})
        for cut in range(len(data)):
            with pytest.raises(CorruptBuffer):
                decode(data[:cut])

    def test_bytes_length_past_end(self):
        data = bytes([TAG_BYTES]) + struct.pack("=I", 100) + b"short"
        with pytest.raises(CorruptBuffer, match="need 100 bytes"):
            decode(data)

    def test_decode_at_offset(self):
        data = b"junk" + encode(b"payload")
        value, pos = decode(data, 4)
        assert value == b"payload"
        assert pos == len(data)
