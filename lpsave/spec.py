"""
LPEG Pattern Record Format v1
=============================

Layout (all multi-byte fields in the producing host's native byte order):

    magic            4s    b"LPEG"               <- identification
    format_version   u16                         <- this layout
    host_version     u16   major * 100 + minor   <- interpreter (fixes marshal format)
    number_width     u8    sizeof(double)
    tree_node_width  u8
    instruction_width u8
    flags            u8    bit0 is_integer, bit1 little-endian, bit2 has_bytecode
    build_version    16s   NUL padded
    ---------------------------------------------- header ends (28 bytes)
    u32 tree_node_count
    tree_node_count * tree_node_width bytes
    [has_bytecode: u32 instruction_count, instruction_count * instruction_width bytes]
    encoded constant table (Table, or Nil when empty)

Value encoding (one tag byte, then a tag-specific payload):

    NIL      0   -
    BOOLEAN  1   u8 0/1
    NUMBER   3   native double
    BYTES    4   u32 length, raw bytes
    TABLE    5   key, value, key, value, ..., NIL
    CLOSURE  6   u32 length, marshalled code object

Design Decisions:
    - The header must match byte for byte (has_bytecode aside). Records are
      a cache format for one host, not an interchange format.
    - Tables end with a NIL tag where a key would be; NIL is never a key.
    - Closures carry code only: no captured cells, no defaults.
"""

import struct

# Magic bytes - first four bytes of every record
MAGIC = b"LPEG"

# Format version
FORMAT_VERSION = 1

# Header: magic, format_version, host_version, number_width,
# tree_node_width, instruction_width, flags, build_version
HEADER_FORMAT = "=4sHHBBBB16s"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
BUILD_VERSION_WIDTH = 16

FLAG_IS_INTEGER = 0x01
FLAG_LITTLE_ENDIAN = 0x02
FLAG_HAS_BYTECODE = 0x04

# Fixed record widths of the engine's tree nodes and instructions
TREE_NODE_WIDTH = 8
INSTRUCTION_WIDTH = 4

# Counters and numbers inside the record body
COUNT_FORMAT = "=I"
NUMBER_FORMAT = "=d"
NUMBER_WIDTH = struct.calcsize(NUMBER_FORMAT)

# Value type tags
TAG_NIL = 0
TAG_BOOLEAN = 1
TAG_NUMBER = 3
TAG_BYTES = 4
TAG_TABLE = 5
TAG_CLOSURE = 6

# Largest bytes value a u32 length prefix can describe
MAX_BYTES_LENGTH = 2**32 - 1

# Nesting limit for tables; keeps self-referential input from recursing forever
MAX_DEPTH = 200

# Default ceiling for records read from disk
MAX_RECORD_SIZE = 256 * 1024 * 1024

# File extension
EXTENSION = ".lpeg"
