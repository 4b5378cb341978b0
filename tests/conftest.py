import hashlib

import pytest

from lpsave.pattern import Pattern, install, uninstall


def fake_compile(pattern):
    """Deterministic stand-in for the engine's compiler: 8 instructions."""
    fake_compile.calls += 1
    return hashlib.sha256(pattern.tree).digest()


fake_compile.calls = 0


@pytest.fixture(autouse=True)
def runtime():
    fake_compile.calls = 0
    install(Pattern, fake_compile)
    yield fake_compile
    uninstall()


@pytest.fixture
def pattern():
    return Pattern(bytes(range(24)), ktable={b"k1": 1.5, True: b"x"})
