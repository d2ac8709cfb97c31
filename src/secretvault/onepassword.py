"""
1Password document store, the remote restore source.

Absorbed files are uploaded as 1Password documents through the ``op``
CLI. The manifest records the vault, document id, title and checksum so
a file can be restored even after every local ciphertext is gone.

All ``op`` invocations go through an injectable runner so the store can
be exercised without the real binary.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import re
import shutil
import socket
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel

from .crypto import TargetExistsError
from .models import ProjectContext, VaultEntry, utc_timestamp
from .project import PathLike, file_exists, project_relative_path

logger = logging.getLogger("secretvault.onepassword")

OP_BINARY = "op"
ID_KEYS = ("id", "uuid", "documentId")
_NON_TAG_CHARS = re.compile(r"[^a-z0-9._-]+")

Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]


class DocumentStoreError(RuntimeError):
    """Raised when the ``op`` CLI is missing, unauthenticated or fails."""


class DocumentMetadata(BaseModel):
    """Provenance fields written onto an uploaded document."""

    project_id: str = ""
    project_path: str = ""
    relative_path: str = ""
    absolute_path: str = ""
    directory: str = ""
    filename: str = ""
    machine: str = ""
    user: str = ""
    absorbed_at: str = ""

    def is_empty(self) -> bool:
        return not any(v.strip() for v in self.model_dump().values())


def _default_runner(args: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(
        list(args),
        capture_output=True,
        text=True,
        check=False,
    )


# ---------------------------------------------------------------------------
# Output parsing and naming helpers
# ---------------------------------------------------------------------------


def _id_from_object(obj: dict[str, Any]) -> str:
    for key in ID_KEYS:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def extract_document_id(output: str) -> str:
    """Pull a document id out of ``op`` output.

    The output is tried as a JSON object, then as a JSON array of
    objects, and finally taken verbatim as a bare id.
    """
    text = output.strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        return text

    if isinstance(parsed, dict):
        found = _id_from_object(parsed)
        if found:
            return found
    elif isinstance(parsed, list):
        for item in parsed:
            if isinstance(item, dict):
                found = _id_from_object(item)
                if found:
                    return found
    return text


def sanitize_tag(value: str) -> str:
    """Lowercase, collapse disallowed characters to ``-``, cap at 64 chars."""
    clean = _NON_TAG_CHARS.sub("-", value.strip().lower()).strip("-._")
    return clean[:64]


def metadata_tags(metadata: DocumentMetadata) -> str:
    """Comma-separated tag list for an uploaded document."""
    tags = ["secretvault", "source:secretvault", "os:" + sanitize_tag(platform.system())]
    for key, value in (
        ("project", metadata.project_id),
        ("host", metadata.machine),
        ("user", metadata.user),
    ):
        value = sanitize_tag(value)
        if value:
            tags.append(f"{key}:{value}")

    joined = ",".join(tags)
    if len(joined) > 1000:
        return ",".join(tags[:3])
    return joined


def title_for_path(context: ProjectContext, absolute_path: PathLike) -> str:
    """Document title: project id plus relative path (or basename)."""
    rel = project_relative_path(context.project_path, absolute_path)
    return f"secretvault {context.project_id} {rel or os.path.basename(absolute_path)}"


def file_sha256(path: PathLike) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def build_document_metadata(context: ProjectContext, original_path: PathLike) -> DocumentMetadata:
    """Collect provenance for a file about to be uploaded."""
    abs_path = os.path.abspath(original_path)
    return DocumentMetadata(
        project_id=context.project_id,
        project_path=str(context.project_path),
        relative_path=project_relative_path(context.project_path, abs_path) or "",
        absolute_path=abs_path,
        directory=os.path.dirname(abs_path),
        filename=os.path.basename(abs_path),
        machine=socket.gethostname(),
        user=(os.environ.get("USER") or os.environ.get("USERNAME") or "").strip(),
        absorbed_at=utc_timestamp(),
    )


# ---------------------------------------------------------------------------
# OnePasswordStore
# ---------------------------------------------------------------------------


class OnePasswordStore:
    """Upload, fetch and delete documents with the 1Password CLI.

    Args:
        runner: Executes an argv list and returns a CompletedProcess.
            Defaults to ``subprocess.run`` with captured text output.
        binary: Name or path of the ``op`` executable.
        which: Resolves ``binary`` to a path, or None when absent.
    """

    def __init__(
        self,
        runner: Optional[Runner] = None,
        binary: str = OP_BINARY,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self._runner = runner or _default_runner
        self._binary = binary
        self._which = which

    def is_installed(self) -> bool:
        """Whether the ``op`` binary can be found."""
        return self._which(self._binary) is not None

    def is_authenticated(self) -> bool:
        """Whether ``op`` has at least one signed-in account."""
        result = self._run(["account", "list", "--format", "json"], check=False)
        if result.returncode != 0:
            return False
        try:
            accounts = json.loads(result.stdout or "[]")
        except ValueError as exc:
            raise DocumentStoreError(f"could not parse op account list: {exc}") from exc
        return isinstance(accounts, list) and len(accounts) > 0

    def ensure_ready(self) -> None:
        """Raise DocumentStoreError unless ``op`` is installed and signed in."""
        if not self.is_installed():
            raise DocumentStoreError("1Password CLI (op) is not installed")
        if not self.is_authenticated():
            raise DocumentStoreError("1Password CLI is not authenticated")

    def upload(
        self,
        path: PathLike,
        vault_name: str,
        title: str,
        metadata: Optional[DocumentMetadata] = None,
    ) -> str:
        """Create a document from ``path`` and return its id."""
        args = ["document", "create", os.fspath(path), "--vault", vault_name,
                "--title", title, "--format", "json"]
        if metadata is not None:
            args += ["--tags", metadata_tags(metadata)]
        result = self._run(args)

        document_id = extract_document_id(result.stdout or "")
        if not document_id:
            raise DocumentStoreError("could not parse document id from op output")

        if metadata is not None and not metadata.is_empty():
            self._apply_metadata(document_id, vault_name, metadata)
        logger.info("Uploaded %s to 1Password as %s", path, document_id)
        return document_id

    def restore_document(self, entry: VaultEntry, target: Path, mode: int, force: bool) -> None:
        """Download an entry's document to ``target`` and set its mode."""
        self.ensure_ready()
        if file_exists(target):
            if not force:
                raise TargetExistsError(target)
            os.remove(target)
        os.makedirs(os.path.dirname(os.path.abspath(target)), mode=0o700, exist_ok=True)

        args = ["document", "get", entry.onepassword_document, "--out-file", os.fspath(target)]
        if entry.onepassword_vault.strip():
            args += ["--vault", entry.onepassword_vault]
        self._run(args)
        os.chmod(target, mode or 0o600)

    def delete_document(self, document_id: str, vault_name: str = "") -> None:
        """Delete a document from 1Password."""
        if not document_id.strip():
            raise DocumentStoreError("missing 1password document id")
        args = ["item", "delete", document_id]
        if vault_name.strip():
            args += ["--vault", vault_name]
        self._run(args)

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _apply_metadata(self, document_id: str, vault_name: str, metadata: DocumentMetadata) -> None:
        assignments = [
            f"secretvault.{key}[text]={value.strip()}"
            for key, value in metadata.model_dump().items()
            if value.strip()
        ]
        if not assignments:
            return
        args = ["item", "edit", document_id]
        if vault_name.strip():
            args += ["--vault", vault_name]
        self._run(args + assignments)

    def _run(self, args: list[str], check: bool = True) -> "subprocess.CompletedProcess[str]":
        argv = [self._binary, *args]
        logger.debug("Running %s %s", self._binary, " ".join(args[:2]))
        try:
            result = self._runner(argv)
        except OSError as exc:
            raise DocumentStoreError(f"could not run {self._binary}: {exc}") from exc
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise DocumentStoreError(f"op {' '.join(args[:2])} failed: {detail}")
        return result
