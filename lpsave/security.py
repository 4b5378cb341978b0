"""
Record Security - signing and encryption for records kept in shared caches.

A record's constant table may hold closures, and loading a closure runs
marshal on the stored code. Records that pass through storage you do not
control should be signed (or sealed) when written and verified before load.

Security features:
  - HMAC-SHA256 signing (shared secret)
  - AES-256-GCM sealing for records that must stay private
  - Key derivation via PBKDF2 for password-based sealing
  - Short fingerprints for cache keys
"""

from __future__ import annotations

import hashlib
import hmac
import os

from lpsave.errors import CorruptBuffer, SignatureMismatch

SIGNATURE_PREFIX = b"LPEG-SIG"
SEALED_PREFIX = b"LPEG-ENC/1\n"

_MAC_SIZE = hashlib.sha256().digest_size
_SALT_SIZE = 16
_NONCE_SIZE = 12
_TAG_SIZE = 16


def _secret_bytes(secret: str | bytes) -> bytes:
    if isinstance(secret, str):
        return secret.encode("utf-8")
    return secret


# =============================================================================
# HMAC Signing & Verification
# =============================================================================

def sign(record: bytes, secret: str | bytes) -> bytes:
    """
    Sign a record with HMAC-SHA256.
    Returns: prefix + mac (32) + record
    """
    mac = hmac.new(_secret_bytes(secret), record, hashlib.sha256).digest()
    return SIGNATURE_PREFIX + mac + record


def verify(signed: bytes, secret: str | bytes) -> bytes:
    """
    Check the signature of data produced by sign().
    Returns the inner record. Raises SignatureMismatch if unsigned or tampered.
    """
    if not is_signed(signed):
        raise SignatureMismatch("record is not signed")

    start = len(SIGNATURE_PREFIX)
    stored = signed[start:start + _MAC_SIZE]
    record = signed[start + _MAC_SIZE:]
    expected = hmac.new(_secret_bytes(secret), record, hashlib.sha256).digest()
    if not hmac.compare_digest(stored, expected):
        raise SignatureMismatch("signature does not match record")
    return record


def is_signed(data: bytes) -> bool:
    return data.startswith(SIGNATURE_PREFIX) and len(data) >= len(SIGNATURE_PREFIX) + _MAC_SIZE


# =============================================================================
# AES-256-GCM Sealing
# =============================================================================

def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit key from a password using PBKDF2."""
    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations=600_000,  # OWASP recommended minimum
        dklen=32,
    )


def _aesgcm():
    try:
        from cryptography.hazmat.primitives.ciphers.aead import AESGCM
    except ImportError:
        raise ImportError(
            "The 'cryptography' package is required for sealing. "
            "Install it with: pip install lpsave[crypto]"
        )
    return AESGCM


def seal(record: bytes, password: str) -> bytes:
    """
    Encrypt a record with AES-256-GCM using a password.
    Returns: prefix + salt (16) + nonce (12) + ciphertext + tag (16)
    """
    AESGCM = _aesgcm()

    salt = os.urandom(_SALT_SIZE)
    nonce = os.urandom(_NONCE_SIZE)
    key = _derive_key(password, salt)

    ciphertext = AESGCM(key).encrypt(nonce, record, SEALED_PREFIX)
    return SEALED_PREFIX + salt + nonce + ciphertext


def unseal(data: bytes, password: str) -> bytes:
    """
    Decrypt data produced by seal() and return the record.
    Raises SignatureMismatch on a wrong password or tampered data.
    """
    AESGCM = _aesgcm()
    from cryptography.exceptions import InvalidTag

    if not is_sealed(data):
        raise CorruptBuffer("data is not a sealed record")
    body = data[len(SEALED_PREFIX):]
    if len(body) < _SALT_SIZE + _NONCE_SIZE + _TAG_SIZE:
        raise CorruptBuffer("truncated sealed record")

    salt = body[:_SALT_SIZE]
    nonce = body[_SALT_SIZE:_SALT_SIZE + _NONCE_SIZE]
    ciphertext = body[_SALT_SIZE + _NONCE_SIZE:]

    key = _derive_key(password, salt)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, SEALED_PREFIX)
    except InvalidTag:
        raise SignatureMismatch("unable to unseal record: wrong password or tampered data") from None


def is_sealed(data: bytes) -> bool:
    """Check if data is a sealed record."""
    return data.startswith(SEALED_PREFIX)


# =============================================================================
# Fingerprints
# =============================================================================

def fingerprint(record: bytes) -> str:
    """
    Short identifier for a record, e.g. as a cache key.
    Same bytes, same fingerprint.
    """
    return hashlib.sha256(record).hexdigest()[:16]
