"""
Pydantic models for the vault's persistent state and configuration.

The manifest is the single source of truth for which files a project
has locked, where their ciphertext lives, and where else a copy can be
found. Field names mirror the on-disk JSON exactly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

ENCRYPTED_EXT = ".svault"
MANIFEST_VERSION = 1


def utc_timestamp() -> str:
    """Current time as an RFC 3339 UTC string with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Project and manifest state
# ---------------------------------------------------------------------------


class ProjectContext(BaseModel):
    """The working project, recomputed on every invocation.

    Attributes:
        project_path: Absolute project root.
        project_id: First 16 hex chars of SHA-256 over the root path.
        key_id: Identifier under which the project key is stored.
    """

    project_path: Path
    project_id: str
    key_id: str


class VaultEntry(BaseModel):
    """One tracked file and every place its ciphertext may live."""

    file_id: str = ""
    absolute_path: str = ""
    relative_path: str = ""
    directory: str = ""
    filename: str = ""
    vault_file: str = ""
    project_encrypted_file: str = ""
    locked_at: str = ""
    last_restored_at: str = ""
    original_mode: int = 0
    onepassword_vault: str = ""
    onepassword_document: str = ""
    onepassword_title: str = ""
    checksum_sha256: str = ""
    absorbed_at: str = ""

    @property
    def has_remote_document(self) -> bool:
        """Whether the entry was absorbed into the remote document store."""
        return bool(self.onepassword_document.strip())

    @property
    def display_name(self) -> str:
        """Short human label: relative path, else bare filename."""
        return self.relative_path.strip() or Path(self.absolute_path).name


class VaultManifest(BaseModel):
    """Per-project vault state, keyed by absolute original path."""

    version: int = MANIFEST_VERSION
    project_id: str = ""
    project_path: str = ""
    updated_at: str = ""
    entries: dict[str, VaultEntry] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class VaultConfig(BaseModel):
    """Optional user configuration read from ``<vault home>/config.yaml``."""

    op_vault: str = "Private"
    extra_sensitive_names: list[str] = Field(default_factory=list)
    extra_sensitive_suffixes: list[str] = Field(default_factory=list)
    extra_sensitive_dirs: list[str] = Field(default_factory=list)
    extra_ignored_dirs: list[str] = Field(default_factory=list)


SENSITIVE_EXACT_NAMES = frozenset({
    ".env",
    ".envrc",
    "terraform.tfvars",
    "terraform.tfvars.json",
    "id_rsa",
    "id_ed25519",
    "id_dsa",
    "credentials",
    "credentials.json",
    "secrets.yml",
    "secrets.yaml",
    "secrets.json",
    ".npmrc",
    ".pypirc",
})

SENSITIVE_SUFFIXES = (
    ".tfvars",
    ".tfvars.json",
    ".pem",
    ".key",
    ".p12",
    ".pfx",
    ".jks",
    ".keystore",
    ".ovpn",
    ".asc",
    ".gpg",
    ".kubeconfig",
)

SENSITIVE_DIR_NAMES = frozenset({
    "secrets",
    "private",
    "credentials",
    ".aws",
    ".ssh",
    ".gnupg",
})

IGNORED_DIR_NAMES = frozenset({
    ".git",
    ".terraform",
    ".svn",
    ".hg",
    "node_modules",
    "dist",
    "build",
    "vendor",
    ".next",
    ".nuxt",
    ".idea",
    ".vscode",
    ".ai-sessions",
})

SECRET_CONTENT_PATTERN = re.compile(
    rb"(?i)(api[_-]?key|token|password|private[_-]?key|secret[_-]?(key|token|value))\s*[:=]"
    rb"|aws_secret_access_key"
    rb"|-----BEGIN (RSA|EC|OPENSSH|PGP) PRIVATE KEY-----"
)


@dataclass(frozen=True)
class ClassifierRules:
    """Immutable rule tables consulted by the sensitivity classifier.

    Attributes:
        exact_names: Lowercase basenames that are always sensitive.
        env_prefix: Basename prefix of dotenv overlay files.
        suffixes: Lowercase basename suffixes that are always sensitive.
        sensitive_dirs: Lowercase path components that mark a file sensitive.
        ignored_dirs: Lowercase directory names pruned during traversal.
        content_pattern: Bytes regex matched against a file's head.
        content_max_size: Files larger than this are not content-scanned.
        content_read_size: How many leading bytes the content scan reads.
    """

    exact_names: frozenset[str] = SENSITIVE_EXACT_NAMES
    env_prefix: str = ".env."
    suffixes: tuple[str, ...] = SENSITIVE_SUFFIXES
    sensitive_dirs: frozenset[str] = SENSITIVE_DIR_NAMES
    ignored_dirs: frozenset[str] = IGNORED_DIR_NAMES
    content_pattern: re.Pattern[bytes] = field(default=SECRET_CONTENT_PATTERN)
    content_max_size: int = 1 << 20
    content_read_size: int = 4096

    @classmethod
    def default(cls) -> "ClassifierRules":
        """The built-in rule set."""
        return cls()

    @classmethod
    def from_config(cls, config: Optional[VaultConfig]) -> "ClassifierRules":
        """Built-in rules extended with the user's configured additions."""
        if config is None:
            return cls()
        return cls(
            exact_names=SENSITIVE_EXACT_NAMES | {n.lower() for n in config.extra_sensitive_names},
            suffixes=SENSITIVE_SUFFIXES + tuple(s.lower() for s in config.extra_sensitive_suffixes),
            sensitive_dirs=SENSITIVE_DIR_NAMES | {d.lower() for d in config.extra_sensitive_dirs},
            ignored_dirs=IGNORED_DIR_NAMES | {d.lower() for d in config.extra_ignored_dirs},
        )
