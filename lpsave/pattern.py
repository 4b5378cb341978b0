"""
Pattern object model and the runtime hooks of the pattern engine.

The engine that parses, compiles and matches patterns lives elsewhere. It
registers itself here with install(): the class used to rebuild loaded
patterns, and the compiler that turns a tree into instructions on demand.
"""

from __future__ import annotations

from typing import Callable

from lpsave.spec import TREE_NODE_WIDTH, INSTRUCTION_WIDTH
from lpsave.errors import CompileFailure, MissingRuntimeSupport, SerializeError


class Pattern:
    """A compiled pattern: raw tree nodes, optional instructions, constant table."""

    def __init__(self, tree: bytes, code: bytes | None = None, ktable: dict | None = None) -> None:
        if not tree or len(tree) % TREE_NODE_WIDTH:
            raise ValueError(
                f"Tree must be a non-empty multiple of {TREE_NODE_WIDTH} bytes, got {len(tree)}"
            )
        if code is not None and (not code or len(code) % INSTRUCTION_WIDTH):
            raise ValueError(
                f"Code must be a non-empty multiple of {INSTRUCTION_WIDTH} bytes, got {len(code)}"
            )
        if ktable is not None and not isinstance(ktable, dict):
            raise ValueError(f"Constant table must be a dict, got {type(ktable).__name__}")
        self.tree = bytes(tree)
        self.code = bytes(code) if code is not None else None
        self.ktable = ktable

    @property
    def tree_node_count(self) -> int:
        return len(self.tree) // TREE_NODE_WIDTH

    @property
    def codesize(self) -> int:
        """Number of instructions, 0 when not compiled."""
        if self.code is None:
            return 0
        return len(self.code) // INSTRUCTION_WIDTH

    @property
    def compiled(self) -> bool:
        return self.code is not None

    def compile(self) -> bytes:
        """Compile with the installed compiler unless already compiled."""
        if self.code is None:
            self.code = _compile(self)
        return self.code

    def __repr__(self) -> str:
        ktable = len(self.ktable) if self.ktable else 0
        return (f"<{type(self).__name__} nodes={self.tree_node_count} "
                f"instructions={self.codesize} ktable={ktable}>")


Compiler = Callable[[Pattern], bytes]


class _Runtime:
    def __init__(self, pattern_type: type[Pattern], compiler: Compiler | None) -> None:
        self.pattern_type = pattern_type
        self.compiler = compiler


_runtime: _Runtime | None = None


def install(pattern_type: type[Pattern] = Pattern, compiler: Compiler | None = None) -> None:
    """Register the pattern engine for this process (replaces any earlier one)."""
    global _runtime
    _runtime = _Runtime(pattern_type, compiler)


def uninstall() -> None:
    global _runtime
    _runtime = None


def installed() -> bool:
    return _runtime is not None


def pattern_type() -> type[Pattern]:
    """The registered pattern class. Raises MissingRuntimeSupport if none."""
    if _runtime is None:
        raise MissingRuntimeSupport("pattern engine not installed")
    return _runtime.pattern_type


def _compile(pattern: Pattern) -> bytes:
    if _runtime is None or _runtime.compiler is None:
        raise MissingRuntimeSupport("no pattern compiler installed")
    try:
        code = _runtime.compiler(pattern)
    except SerializeError:
        raise
    except Exception as e:
        raise CompileFailure(f"compilation failed: {e}") from e

    if not isinstance(code, (bytes, bytearray)) or not code or len(code) % INSTRUCTION_WIDTH:
        raise CompileFailure(
            f"compiler returned invalid code (expected non-empty multiple of {INSTRUCTION_WIDTH} bytes)"
        )
    return bytes(code)
