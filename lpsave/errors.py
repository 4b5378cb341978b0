"""
Error types raised by save/load.

Every error is a ValueError carrying a ``kind`` naming its category, so
callers can either catch the specific class or log ``err.kind``.
"""

from __future__ import annotations


class SerializeError(ValueError):
    """Base class for every save/load failure."""

    kind = "SerializeError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ValueTooLarge(SerializeError):
    """A bytes value is longer than a u32 length prefix allows."""

    kind = "ValueTooLarge"


class UnsupportedValue(SerializeError):
    """The value (or something nested in it) has no encoding."""

    kind = "UnsupportedValue"


class DumpFailure(SerializeError):
    """A closure body could not be dumped."""

    kind = "DumpFailure"


class CorruptBuffer(SerializeError):
    """Input is truncated, or carries an unknown tag or impossible value."""

    kind = "CorruptBuffer"


class HeaderMismatch(SerializeError):
    """The record was produced by an incompatible host."""

    kind = "HeaderMismatch"


class CompileFailure(SerializeError):
    """On-demand compilation requested by save failed."""

    kind = "CompileFailure"


class AllocationFailure(SerializeError):
    """A buffer for a decoded array could not be allocated."""

    kind = "AllocationFailure"


class MissingRuntimeSupport(SerializeError):
    """No pattern engine has been installed in this process."""

    kind = "MissingRuntimeSupport"


class SignatureMismatch(SerializeError):
    """A signed record failed HMAC verification."""

    kind = "SignatureMismatch"
