"""
lpsave - save and load compiled patterns.
Host-bound binary cache format: build a pattern once, reload it without
re-parsing or re-compiling.
"""

__version__ = "0.3.0"
__format_version__ = 1

from lpsave.spec import MAGIC, FORMAT_VERSION, HEADER_SIZE
from lpsave.errors import (
    SerializeError,
    ValueTooLarge,
    UnsupportedValue,
    DumpFailure,
    CorruptBuffer,
    HeaderMismatch,
    CompileFailure,
    AllocationFailure,
    MissingRuntimeSupport,
    SignatureMismatch,
)
from lpsave.codec import encode, decode
from lpsave.header import HostHeader, local_header, check
from lpsave.pattern import Pattern, install, uninstall
from lpsave.writer import PatternWriter, save
from lpsave.reader import PatternReader, RecordInfo, load
