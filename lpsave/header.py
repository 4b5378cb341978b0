"""
Host Compatibility Header.

Records are written with the host's native layout (byte order, double
width, marshal format), so a record only loads in a process whose header
matches the producer's exactly. The has_bytecode flag is the one field that
may differ; it tells the reader whether an instruction array follows.
"""

from __future__ import annotations

import dataclasses
import functools
import struct
import sys
from dataclasses import dataclass

from lpsave.spec import (
    MAGIC,
    FORMAT_VERSION,
    HEADER_FORMAT,
    HEADER_SIZE,
    BUILD_VERSION_WIDTH,
    FLAG_IS_INTEGER,
    FLAG_LITTLE_ENDIAN,
    FLAG_HAS_BYTECODE,
    NUMBER_FORMAT,
    NUMBER_WIDTH,
    TREE_NODE_WIDTH,
    INSTRUCTION_WIDTH,
)
from lpsave.errors import CorruptBuffer, HeaderMismatch

_HEADER = struct.Struct(HEADER_FORMAT)


@dataclass(frozen=True)
class HostHeader:
    """Fixed-size preamble identifying the producing host."""

    magic: bytes
    format_version: int
    host_version: int
    number_width: int
    tree_node_width: int
    instruction_width: int
    flags: int
    build_version: bytes

    @property
    def is_integer(self) -> bool:
        return bool(self.flags & FLAG_IS_INTEGER)

    @property
    def little_endian(self) -> bool:
        return bool(self.flags & FLAG_LITTLE_ENDIAN)

    @property
    def has_bytecode(self) -> bool:
        return bool(self.flags & FLAG_HAS_BYTECODE)

    def with_bytecode(self, has_bytecode: bool) -> HostHeader:
        """Copy of this header with the has_bytecode flag set or cleared."""
        flags = self.flags & ~FLAG_HAS_BYTECODE
        if has_bytecode:
            flags |= FLAG_HAS_BYTECODE
        return dataclasses.replace(self, flags=flags)

    def pack(self) -> bytes:
        return _HEADER.pack(
            self.magic,
            self.format_version,
            self.host_version,
            self.number_width,
            self.tree_node_width,
            self.instruction_width,
            self.flags,
            self.build_version,
        )

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview, pos: int = 0) -> HostHeader:
        available = len(data) - pos
        if available < HEADER_SIZE:
            raise CorruptBuffer(
                f"truncated header: need {HEADER_SIZE} bytes, {max(available, 0)} available"
            )
        return cls(*_HEADER.unpack_from(data, pos))


@functools.lru_cache(maxsize=None)
def local_header() -> HostHeader:
    """
    Header describing the running process.
    Computed on first use and cached for the life of the process.
    """
    from lpsave import __version__

    flags = 0
    if NUMBER_FORMAT[-1] not in "efd":
        flags |= FLAG_IS_INTEGER
    if sys.byteorder == "little":
        flags |= FLAG_LITTLE_ENDIAN

    build = f"lpsave {__version__}".encode("ascii")[:BUILD_VERSION_WIDTH]
    return HostHeader(
        magic=MAGIC,
        format_version=FORMAT_VERSION,
        host_version=sys.version_info.major * 100 + sys.version_info.minor,
        number_width=NUMBER_WIDTH,
        tree_node_width=TREE_NODE_WIDTH,
        instruction_width=INSTRUCTION_WIDTH,
        flags=flags,
        build_version=build.ljust(BUILD_VERSION_WIDTH, b"\0"),
    )


def check(remote: HostHeader) -> bool:
    """
    Compare a record's header with the local one, ignoring has_bytecode.
    Returns the record's has_bytecode flag. Raises HeaderMismatch otherwise.
    """
    local = local_header().with_bytecode(False)
    masked = remote.with_bytecode(False)
    if masked != local:
        for field in dataclasses.fields(HostHeader):
            got = getattr(masked, field.name)
            expected = getattr(local, field.name)
            if got != expected:
                raise HeaderMismatch(
                    f"header mismatch: {field.name} is {got!r}, expected {expected!r}"
                )
    return remote.has_bytecode
