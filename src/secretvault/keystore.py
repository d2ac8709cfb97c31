"""
Project key storage.

Each project has one 32-byte AES key, stored base64-encoded beside the
project's manifest with a small JSON record describing where and when
it was created:

    projects/<project-id>/project.key              (0600)
    projects/<project-id>/project-key-metadata.json
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import secrets
import socket
from typing import Optional

from pydantic import BaseModel

from .atomic import write_atomic
from .crypto import KEY_SIZE
from .models import ProjectContext, utc_timestamp
from .vault_store import absolute_vault_file_path

logger = logging.getLogger("secretvault.keystore")

KEY_FILE = "project.key"
KEY_METADATA_FILE = "project-key-metadata.json"


class KeyNotFoundError(LookupError):
    """Raised when no key is stored for the project."""


class InvalidKeyError(ValueError):
    """Raised when stored or supplied key material is unusable."""


class KeyMetadata(BaseModel):
    """Where and when a project key was recorded."""

    project_id: str
    project_path: str
    machine: str = ""
    user: str = ""
    recorded_at: str = ""


def key_from_input(value: Optional[str] = None, generate: bool = False) -> bytes:
    """Produce a project key.

    Args:
        value: Passphrase; hashed with SHA-256 into a 32-byte key.
        generate: Ignore ``value`` and return 32 random bytes.

    Raises:
        InvalidKeyError: Neither a passphrase nor ``generate`` given.
    """
    if generate:
        return secrets.token_bytes(KEY_SIZE)
    if value is None or not value.strip():
        raise InvalidKeyError("key value cannot be empty")
    return hashlib.sha256(value.encode("utf-8")).digest()


def fingerprint(key: bytes) -> str:
    """Short, non-reversible identifier for a key (12 hex chars)."""
    return hashlib.sha256(key).hexdigest()[:12]


def _current_user() -> str:
    return (os.environ.get("USER") or os.environ.get("USERNAME") or "").strip()


def save_project_key(context: ProjectContext, key: bytes) -> None:
    """Store the project key and its metadata record.

    Raises:
        InvalidKeyError: ``key`` is not 32 bytes.
    """
    if len(key) != KEY_SIZE:
        raise InvalidKeyError(f"invalid key length: got {len(key)}, want {KEY_SIZE}")

    key_path = absolute_vault_file_path(context, KEY_FILE)
    key_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    write_atomic(key_path, base64.b64encode(key), 0o600)

    metadata = KeyMetadata(
        project_id=context.project_id,
        project_path=str(context.project_path),
        machine=socket.gethostname(),
        user=_current_user(),
        recorded_at=utc_timestamp(),
    )
    meta_path = absolute_vault_file_path(context, KEY_METADATA_FILE)
    write_atomic(meta_path, metadata.model_dump_json().encode("utf-8"), 0o600)
    logger.info("Stored key %s for project %s", fingerprint(key), context.project_id)


def load_project_key(context: ProjectContext) -> bytes:
    """Read the project key.

    Raises:
        KeyNotFoundError: No key stored for this project.
        InvalidKeyError: Stored material is not base64 of 32 bytes.
    """
    key_path = absolute_vault_file_path(context, KEY_FILE)
    try:
        raw = key_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise KeyNotFoundError(f"no key configured for project {context.project_path}") from None

    try:
        key = base64.b64decode(raw.strip(), validate=True)
    except binascii.Error:
        raise InvalidKeyError("stored key has invalid format") from None
    if len(key) != KEY_SIZE:
        raise InvalidKeyError(f"stored key has invalid length: {len(key)}")
    return key


def load_key_metadata(context: ProjectContext) -> Optional[KeyMetadata]:
    """The metadata record for the project key, if one exists and parses."""
    meta_path = absolute_vault_file_path(context, KEY_METADATA_FILE)
    if not meta_path.exists():
        return None
    try:
        return KeyMetadata.model_validate(json.loads(meta_path.read_text(encoding="utf-8")))
    except ValueError as exc:
        logger.warning("Ignoring unreadable key metadata %s: %s", meta_path, exc)
        return None


def clear_project_key(context: ProjectContext) -> None:
    """Remove the project key and its metadata.

    Raises:
        KeyNotFoundError: No key stored for this project.
    """
    key_path = absolute_vault_file_path(context, KEY_FILE)
    try:
        key_path.unlink()
    except FileNotFoundError:
        raise KeyNotFoundError(f"no key configured for project {context.project_path}") from None
    absolute_vault_file_path(context, KEY_METADATA_FILE).unlink(missing_ok=True)
