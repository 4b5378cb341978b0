"""
Pattern Reader - rebuild patterns from records.

Safety features:
  - Header checked before anything else (magic, versions, layout widths)
  - Every count and length checked against the bytes actually left
  - Tree and instruction arrays copied into fresh buffers; the result
    shares nothing with the input
  - All or nothing: a failure leaves no half-built pattern behind
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lpsave import codec
from lpsave.spec import (
    MAGIC,
    HEADER_SIZE,
    COUNT_FORMAT,
    TREE_NODE_WIDTH,
    INSTRUCTION_WIDTH,
    MAX_RECORD_SIZE,
)
from lpsave.errors import AllocationFailure, CorruptBuffer
from lpsave.header import HostHeader, check
from lpsave.pattern import Pattern, pattern_type

logger = logging.getLogger(__name__)

_COUNT = struct.Struct(COUNT_FORMAT)


@dataclass
class RecordInfo:
    """Layout of a record, as found by PatternReader.inspect()."""

    header: HostHeader
    tree_node_count: int
    instruction_count: int
    ktable_offset: int
    ktable_length: int
    trailing: int

    @property
    def has_bytecode(self) -> bool:
        return self.header.has_bytecode


class PatternReader:
    """
    Record reader.

    Usage:
        pattern = PatternReader.parse(data)
        pattern = PatternReader.read("digits.lpeg")

        if PatternReader.is_record(data):
            info = PatternReader.inspect(data)
    """

    @staticmethod
    def is_record(data: bytes | bytearray | memoryview) -> bool:
        """Fast check if bytes start like a record. Looks at the magic only."""
        return bytes(data[:len(MAGIC)]) == MAGIC

    @staticmethod
    def is_record_file(path: str | Path) -> bool:
        """Fast check if a file is a record. Reads only the magic."""
        with open(path, "rb") as f:
            head = f.read(len(MAGIC))
        return head == MAGIC

    @classmethod
    def parse(cls, data: bytes | bytearray | memoryview, *, env: dict[str, Any] | None = None) -> Pattern:
        """
        Rebuild a pattern from a record.

        ``env`` is the globals mapping closures in the constant table are
        bound to (see lpsave.codec.decode). Bytes after the constant table
        are ignored.
        """
        view = memoryview(data)
        has_bytecode = check(HostHeader.unpack(view))
        factory = pattern_type()

        tree, pos = _read_array(view, HEADER_SIZE, TREE_NODE_WIDTH, "tree")
        code = None
        if has_bytecode:
            code, pos = _read_array(view, pos, INSTRUCTION_WIDTH, "instruction")

        ktable, pos = codec.decode(view, pos, env=env)
        if not isinstance(ktable, dict):
            ktable = None

        pattern = factory(tree, code=code, ktable=ktable)
        logger.debug(
            "loaded pattern: %d nodes, %d instructions, %d of %d bytes used",
            pattern.tree_node_count, pattern.codesize, pos, len(view),
        )
        return pattern

    @classmethod
    def read(cls, path: str | Path, *, env: dict[str, Any] | None = None,
             max_size: int = MAX_RECORD_SIZE) -> Pattern:
        """Load a pattern from a file. Raises ValueError if the file exceeds max_size."""
        path = Path(path)
        size = path.stat().st_size
        if size > max_size:
            raise ValueError(f"File size {size} exceeds maximum {max_size} bytes")
        return cls.parse(path.read_bytes(), env=env)

    @staticmethod
    def inspect(data: bytes | bytearray | memoryview) -> RecordInfo:
        """
        Walk a record without building a pattern.
        The header must still match this host: the body layout depends on it.
        """
        view = memoryview(data)
        header = HostHeader.unpack(view)
        check(header)

        pos = HEADER_SIZE
        tree_count, pos = _skip_array(view, pos, TREE_NODE_WIDTH, "tree")
        code_count = 0
        if header.has_bytecode:
            code_count, pos = _skip_array(view, pos, INSTRUCTION_WIDTH, "instruction")

        _, end = codec.decode(view, pos)
        return RecordInfo(
            header=header,
            tree_node_count=tree_count,
            instruction_count=code_count,
            ktable_offset=pos,
            ktable_length=end - pos,
            trailing=len(view) - end,
        )


def _read_count(view: memoryview, pos: int, what: str) -> tuple[int, int]:
    if pos + _COUNT.size > len(view):
        raise CorruptBuffer(f"truncated record: missing {what} count at offset {pos}")
    count = _COUNT.unpack_from(view, pos)[0]
    if count == 0:
        raise CorruptBuffer(f"invalid {what} count 0 at offset {pos}")
    return count, pos + _COUNT.size


def _skip_array(view: memoryview, pos: int, width: int, what: str) -> tuple[int, int]:
    count, pos = _read_count(view, pos, what)
    size = count * width
    if pos + size > len(view):
        raise CorruptBuffer(
            f"truncated record: {what} array needs {size} bytes, {len(view) - pos} available"
        )
    return count, pos + size


def _read_array(view: memoryview, pos: int, width: int, what: str) -> tuple[bytes, int]:
    """Copy a counted array of fixed-width records into a fresh buffer."""
    _, end = _skip_array(view, pos, width, what)
    start = pos + _COUNT.size
    try:
        block = bytes(view[start:end])
    except MemoryError:
        raise AllocationFailure(f"out of memory allocating {end - start} bytes for {what} array") from None
    return block, end


load = PatternReader.parse
read = PatternReader.read
is_record = PatternReader.is_record
inspect = PatternReader.inspect
