"""
Pattern Writer - serialize a pattern into a record.

Record = header | u32 node count | tree nodes
         | [u32 instruction count | instructions] | encoded constant table
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path

from lpsave import codec
from lpsave.spec import COUNT_FORMAT, INSTRUCTION_WIDTH
from lpsave.errors import ValueTooLarge
from lpsave.header import local_header
from lpsave.pattern import Pattern

logger = logging.getLogger(__name__)

_COUNT = struct.Struct(COUNT_FORMAT)
_MAX_COUNT = 2**32 - 1


class PatternWriter:
    """
    Serializes patterns to bytes.

    Usage:
        data = PatternWriter.serialize(pattern)
        data = PatternWriter.serialize(pattern, include_bytecode=True)
        PatternWriter.write(pattern, "digits.lpeg")
    """

    @staticmethod
    def serialize(pattern: Pattern, include_bytecode: bool = False) -> bytes:
        """
        Build the full record for ``pattern``.

        With ``include_bytecode`` the pattern is compiled first if needed;
        a compile error aborts the save.
        """
        buf = bytearray(local_header().with_bytecode(include_bytecode).pack())

        # Tree nodes
        _append_array(buf, pattern.tree_node_count, pattern.tree, "tree")

        # Instructions
        if include_bytecode:
            code = pattern.compile()
            _append_array(buf, len(code) // INSTRUCTION_WIDTH, code, "instruction")

        # Constant table; an empty one is stored as nil
        codec.encode_into(pattern.ktable or None, buf)

        logger.debug(
            "saved pattern: %d nodes, %d instructions, %d bytes",
            pattern.tree_node_count,
            pattern.codesize if include_bytecode else 0,
            len(buf),
        )
        return bytes(buf)

    @staticmethod
    def write(pattern: Pattern, path: str | Path, include_bytecode: bool = False) -> int:
        """Write the record to a file. Returns bytes written."""
        data = PatternWriter.serialize(pattern, include_bytecode)
        Path(path).write_bytes(data)
        return len(data)


def _append_array(buf: bytearray, count: int, block: bytes, what: str) -> None:
    if count > _MAX_COUNT:
        raise ValueTooLarge(f"{what} count {count} exceeds {_MAX_COUNT}")
    buf += _COUNT.pack(count)
    buf += block


save = PatternWriter.serialize
write = PatternWriter.write
