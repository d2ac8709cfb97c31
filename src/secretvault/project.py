"""Project identity and path helpers shared by every vault component."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Iterable, Optional, Union

from .models import ProjectContext

PathLike = Union[str, "os.PathLike[str]"]


def load_project_context(cwd: Optional[PathLike] = None) -> ProjectContext:
    """Build the context for the project rooted at ``cwd``.

    Args:
        cwd: Project root. Defaults to the process working directory.

    Returns:
        ProjectContext with a stable id derived from the absolute root.
    """
    root = os.path.abspath(cwd if cwd is not None else os.getcwd())
    project_id = hashlib.sha256(root.encode("utf-8")).hexdigest()[:16]
    return ProjectContext(
        project_path=Path(root),
        project_id=project_id,
        key_id=f"project-{project_id}",
    )


def normalize_roots(args: Iterable[str]) -> list[str]:
    """Drop blank arguments; fall back to the current directory."""
    roots = [arg for arg in args if arg.strip()]
    return roots or ["."]


def hash_path_id(path: PathLike) -> str:
    """SHA-256 hex digest of a path string, used as a content slot id."""
    return hashlib.sha256(os.fspath(path).encode("utf-8")).hexdigest()


def project_relative_path(project_root: PathLike, absolute_path: PathLike) -> Optional[str]:
    """Path relative to the project root, or None when it lies outside.

    Args:
        project_root: Absolute project root.
        absolute_path: Absolute path to relativize.

    Returns:
        Normalized relative path string, or None.
    """
    rel = os.path.normpath(os.path.relpath(os.fspath(absolute_path), os.fspath(project_root)))
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return None
    return rel


def file_exists(path: Optional[PathLike]) -> bool:
    """True when ``path`` is non-blank and stat-able."""
    if path is None or not os.fspath(path).strip():
        return False
    return os.path.exists(path)
