"""
Value Codec - tagged binary encoding for constant-table values.

Values map onto plain Python objects:

    None                          <- nil
    bool                          <- boolean
    float (or int that fits)      <- number, native double
    bytes / bytearray / memoryview <- bytes (decodes to bytes)
    dict                          <- table, insertion order kept
    function                      <- closure without captured state

Encoding writes into a scratch bytearray owned by the call. Decoding checks
every read against the end of the buffer before touching it.

Closures are stored as marshalled code objects. marshal is not safe against
hostile input: only decode records you produced, or authenticate them with
lpsave.security first.
"""

from __future__ import annotations

import builtins
import marshal
import math
import struct
import types
from typing import Any

from lpsave.spec import (
    COUNT_FORMAT,
    NUMBER_FORMAT,
    TAG_NIL,
    TAG_BOOLEAN,
    TAG_NUMBER,
    TAG_BYTES,
    TAG_TABLE,
    TAG_CLOSURE,
    MAX_BYTES_LENGTH,
    MAX_DEPTH,
)
from lpsave.errors import CorruptBuffer, DumpFailure, UnsupportedValue, ValueTooLarge

_COUNT = struct.Struct(COUNT_FORMAT)
_NUMBER = struct.Struct(NUMBER_FORMAT)


# =============================================================================
# Encoding
# =============================================================================

def encode(value: Any) -> bytes:
    """Encode a single value (recursively for tables) and return the bytes."""
    out = bytearray()
    encode_into(value, out)
    return bytes(out)


def encode_into(value: Any, out: bytearray) -> None:
    """
    Append the encoding of ``value`` to ``out``.
    On error ``out`` is left as it was.
    """
    scratch = bytearray()
    _encode(value, scratch, 0)
    out += scratch


def _encode(value: Any, out: bytearray, depth: int) -> None:
    if value is None:
        out.append(TAG_NIL)
    elif isinstance(value, bool):
        out.append(TAG_BOOLEAN)
        out.append(1 if value else 0)
    elif isinstance(value, (int, float)):
        out.append(TAG_NUMBER)
        out += _NUMBER.pack(_as_number(value))
    elif isinstance(value, (bytes, bytearray, memoryview)):
        _encode_bytes(value, out)
    elif isinstance(value, dict):
        _encode_table(value, out, depth)
    elif isinstance(value, types.BuiltinFunctionType):
        raise UnsupportedValue(f"cannot serialize builtin function {value.__name__}")
    elif isinstance(value, types.FunctionType):
        _encode_closure(value, out)
    else:
        raise UnsupportedValue(f"cannot serialize {type(value).__name__}")


def _as_number(value: int | float) -> float:
    if isinstance(value, float):
        return value
    try:
        number = float(value)
    except OverflowError:
        raise UnsupportedValue(f"integer {value} does not fit a double") from None
    if int(number) != value:
        raise UnsupportedValue(f"integer {value} is not exactly representable as a double")
    return number


def _encode_bytes(value: bytes | bytearray | memoryview, out: bytearray) -> None:
    length = value.nbytes if isinstance(value, memoryview) else len(value)
    if length > MAX_BYTES_LENGTH:
        raise ValueTooLarge(f"bytes value of length {length} exceeds {MAX_BYTES_LENGTH}")
    if isinstance(value, memoryview):
        # Strided views cannot be appended directly
        value = value.tobytes()
    out.append(TAG_BYTES)
    out += _COUNT.pack(length)
    out += value


def _encode_table(table: dict, out: bytearray, depth: int) -> None:
    if type(table) is not dict:
        # Subclasses may override lookup/iteration; the wire format has no room for that
        raise UnsupportedValue(
            f"cannot serialize table with overridden behaviour ({type(table).__name__})"
        )
    if depth >= MAX_DEPTH:
        raise UnsupportedValue(f"table nesting exceeds {MAX_DEPTH} levels (cyclic table?)")

    out.append(TAG_TABLE)
    for key, item in table.items():
        if key is None:
            raise UnsupportedValue("cannot serialize table with nil key")
        if isinstance(key, float) and math.isnan(key):
            raise UnsupportedValue("cannot serialize table with NaN key")
        _encode(key, out, depth + 1)
        _encode(item, out, depth + 1)
    # End of table: nil can never be a key
    out.append(TAG_NIL)


def _encode_closure(func: types.FunctionType, out: bytearray) -> None:
    if func.__closure__:
        raise UnsupportedValue(f"cannot serialize function {func.__qualname__} with captured variables")
    if func.__defaults__ or func.__kwdefaults__:
        raise UnsupportedValue(f"cannot serialize function {func.__qualname__} with default arguments")

    try:
        blob = marshal.dumps(func.__code__)
    except ValueError as e:
        raise DumpFailure(f"unable to dump function {func.__qualname__}: {e}") from e

    if len(blob) > MAX_BYTES_LENGTH:
        raise ValueTooLarge(f"dump of function {func.__qualname__} exceeds {MAX_BYTES_LENGTH} bytes")
    out.append(TAG_CLOSURE)
    out += _COUNT.pack(len(blob))
    out += blob


# =============================================================================
# Decoding
# =============================================================================

def decode(data: bytes | bytearray | memoryview, pos: int = 0, *,
           env: dict[str, Any] | None = None) -> tuple[Any, int]:
    """
    Decode one value starting at ``pos``.
    Returns (value, position just past the value).

    ``env`` is the globals mapping decoded closures are bound to. By default
    each decode call gets a fresh namespace holding only the builtins.
    """
    if env is None:
        env = {"__builtins__": builtins}
    return _Decoder(data, env).value(pos, 0)


class _Decoder:
    """Bounds-checked cursor over an encoded buffer."""

    def __init__(self, data: bytes | bytearray | memoryview, env: dict[str, Any]) -> None:
        self.data = memoryview(data)
        self.end = len(self.data)
        self.env = env

    def need(self, pos: int, size: int) -> None:
        if pos < 0 or pos + size > self.end:
            raise CorruptBuffer(
                f"truncated buffer: need {size} bytes at offset {pos}, "
                f"{max(self.end - pos, 0)} available"
            )

    def count(self, pos: int) -> tuple[int, int]:
        self.need(pos, _COUNT.size)
        return _COUNT.unpack_from(self.data, pos)[0], pos + _COUNT.size

    def value(self, pos: int, depth: int) -> tuple[Any, int]:
        self.need(pos, 1)
        tag = self.data[pos]
        pos += 1

        if tag == TAG_NIL:
            return None, pos
        if tag == TAG_BOOLEAN:
            self.need(pos, 1)
            return self.data[pos] != 0, pos + 1
        if tag == TAG_NUMBER:
            self.need(pos, _NUMBER.size)
            return _NUMBER.unpack_from(self.data, pos)[0], pos + _NUMBER.size
        if tag == TAG_BYTES:
            length, pos = self.count(pos)
            self.need(pos, length)
            return bytes(self.data[pos:pos + length]), pos + length
        if tag == TAG_TABLE:
            return self.table(pos, depth)
        if tag == TAG_CLOSURE:
            return self.closure(pos)
        raise CorruptBuffer(f"wrong type identifier {tag} at offset {pos - 1}")

    def table(self, pos: int, depth: int) -> tuple[dict, int]:
        if depth >= MAX_DEPTH:
            raise CorruptBuffer(f"table nesting exceeds {MAX_DEPTH} levels")

        table: dict = {}
        while True:
            self.need(pos, 1)
            if self.data[pos] == TAG_NIL:
                return table, pos + 1
            key_pos = pos
            key, pos = self.value(pos, depth + 1)
            item, pos = self.value(pos, depth + 1)
            try:
                table[key] = item  # last write wins
            except TypeError:
                raise CorruptBuffer(
                    f"unhashable table key of type {type(key).__name__} at offset {key_pos}"
                ) from None

    def closure(self, pos: int) -> tuple[types.FunctionType, int]:
        length, pos = self.count(pos)
        self.need(pos, length)
        blob = bytes(self.data[pos:pos + length])
        try:
            code = marshal.loads(blob)
        except (EOFError, ValueError, TypeError) as e:
            raise CorruptBuffer(f"failed to load function at offset {pos}: {e}") from e
        if not isinstance(code, types.CodeType):
            raise CorruptBuffer(f"closure payload at offset {pos} is not a code object")
        if code.co_freevars:
            raise CorruptBuffer(f"closure at offset {pos} expects captured variables")
        return types.FunctionType(code, self.env), pos + length
