"""
Vault envelope codec: AES-256-GCM with the file mode carried inline.

Envelope layout (big-endian where numeric):

    MAGIC (8) || NONCE (12) || MODE (4, uint32 permission bits) || CIPHERTEXT+TAG

``SVAULT02`` envelopes bind ``MAGIC || MODE`` as associated data, so the
mode cannot be altered without failing authentication. Legacy
``SVAULT01`` envelopes carry no associated data and are still readable.

Decryption fails closed: a short payload, an unknown magic or a bad tag
all raise EnvelopeError and no plaintext is returned.
"""

from __future__ import annotations

import logging
import os
import secrets
import struct
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .atomic import write_atomic
from .models import ENCRYPTED_EXT
from .project import PathLike, file_exists

logger = logging.getLogger("secretvault.crypto")

MAGIC_HEADER: Final[bytes] = b"SVAULT02"
LEGACY_MAGIC_HEADER: Final[bytes] = b"SVAULT01"
KEY_SIZE: Final[int] = 32
NONCE_SIZE: Final[int] = 12
MODE_SIZE: Final[int] = 4
MIN_ENVELOPE_SIZE: Final[int] = len(MAGIC_HEADER) + NONCE_SIZE + MODE_SIZE
DEFAULT_MODE: Final[int] = 0o600


class EnvelopeError(ValueError):
    """Raised when an envelope is malformed or fails authentication."""


class NotEncryptedError(ValueError):
    """Raised when a path does not carry the ciphertext suffix."""


class TargetExistsError(FileExistsError):
    """Raised when a restore would overwrite an existing file without force."""

    def __init__(self, target: PathLike) -> None:
        self.target = os.fspath(target)
        super().__init__(f"target already exists: {self.target}")


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be exactly {KEY_SIZE} bytes")


def encrypt_payload(plaintext: bytes, key: bytes, mode: int) -> bytes:
    """Seal plaintext into a self-describing envelope.

    Args:
        plaintext: Bytes to protect (may be empty).
        key: 32-byte AES key.
        mode: Original permission bits; only the low 9 bits are kept.

    Returns:
        The envelope bytes.
    """
    _check_key(key)
    nonce = secrets.token_bytes(NONCE_SIZE)
    mode_bytes = struct.pack(">I", mode & 0o777)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, MAGIC_HEADER + mode_bytes)
    return MAGIC_HEADER + nonce + mode_bytes + ciphertext


def decrypt_payload(payload: bytes, key: bytes) -> tuple[bytes, int]:
    """Open an envelope.

    Args:
        payload: Envelope bytes.
        key: 32-byte AES key.

    Returns:
        Tuple of (plaintext, permission bits).

    Raises:
        EnvelopeError: Truncated payload, unknown magic, or failed tag check.
    """
    _check_key(key)
    if len(payload) < MIN_ENVELOPE_SIZE:
        raise EnvelopeError("invalid encrypted payload")

    magic = payload[: len(MAGIC_HEADER)]
    if magic == MAGIC_HEADER:
        associated = True
    elif magic == LEGACY_MAGIC_HEADER:
        associated = False
    else:
        raise EnvelopeError("invalid magic header")

    nonce_end = len(MAGIC_HEADER) + NONCE_SIZE
    mode_end = nonce_end + MODE_SIZE
    nonce = payload[len(MAGIC_HEADER):nonce_end]
    mode_bytes = payload[nonce_end:mode_end]
    aad = magic + mode_bytes if associated else None

    try:
        plaintext = AESGCM(key).decrypt(nonce, payload[mode_end:], aad)
    except InvalidTag:
        raise EnvelopeError("message authentication failed") from None

    (mode,) = struct.unpack(">I", mode_bytes)
    return plaintext, mode


def encrypt_file(path: PathLike, key: bytes) -> tuple[str, int]:
    """Replace a plaintext file with its ``.svault`` sidecar.

    A path that already ends in the sidecar suffix is left alone. If a
    stale sidecar exists from an interrupted run, the plaintext wins and
    the sidecar is rewritten.

    Args:
        path: Plaintext file.
        key: 32-byte project key.

    Returns:
        Tuple of (sidecar path, original permission bits). For an
        already-encrypted path this is ("", 0).
    """
    path = os.fspath(path)
    if path.endswith(ENCRYPTED_EXT):
        return "", 0

    with open(path, "rb") as f:
        plaintext = f.read()
    original_mode = os.stat(path).st_mode & 0o777

    payload = encrypt_payload(plaintext, key, original_mode)
    dst = path + ENCRYPTED_EXT
    write_atomic(dst, payload, 0o600)
    os.remove(path)

    logger.debug("Encrypted %s -> %s", path, dst)
    return dst, original_mode


def decrypt_file(path: PathLike, key: bytes, force: bool = False) -> str:
    """Turn a ``.svault`` sidecar back into its plaintext file.

    Args:
        path: Sidecar path.
        key: 32-byte project key.
        force: Overwrite an existing plaintext at the destination.

    Returns:
        The restored plaintext path.

    Raises:
        NotEncryptedError: ``path`` lacks the sidecar suffix.
        TargetExistsError: Plaintext already present and ``force`` unset.
        EnvelopeError: The sidecar failed to decrypt.
    """
    path = os.fspath(path)
    if not path.endswith(ENCRYPTED_EXT):
        raise NotEncryptedError(f"not an encrypted file: {path}")

    dst = path[: -len(ENCRYPTED_EXT)]
    if file_exists(dst) and not force:
        raise TargetExistsError(dst)

    with open(path, "rb") as f:
        payload = f.read()
    plaintext, mode = decrypt_payload(payload, key)

    write_atomic(dst, plaintext, mode or DEFAULT_MODE)
    os.remove(path)

    logger.debug("Decrypted %s -> %s", path, dst)
    return dst


def restore_plaintext_from_encrypted(
    source: PathLike,
    target: PathLike,
    key: bytes,
    fallback_mode: int = 0,
    force: bool = False,
) -> None:
    """Decrypt ``source`` into ``target`` without touching the source.

    The restored mode comes from the envelope; when that is zero the
    ``fallback_mode`` is used, then owner read/write.

    Raises:
        TargetExistsError: Checked before any decryption work.
        EnvelopeError: The source failed to decrypt.
    """
    if file_exists(target) and not force:
        raise TargetExistsError(target)

    with open(source, "rb") as f:
        payload = f.read()
    plaintext, mode = decrypt_payload(payload, key)

    mode = mode or fallback_mode or DEFAULT_MODE
    os.makedirs(os.path.dirname(os.path.abspath(target)), mode=0o700, exist_ok=True)
    write_atomic(target, plaintext, mode)
