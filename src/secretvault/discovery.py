"""
Sensitive file discovery.

Walks project roots and classifies each regular file by name, suffix,
containing directory and, as a last resort, a scan of its first few
kilobytes. A directory that cannot be read aborts the whole call
rather than being skipped.
"""

from __future__ import annotations

import logging
import os
import stat
from typing import Iterable, Iterator, Optional

from .models import ENCRYPTED_EXT, ClassifierRules
from .project import PathLike

logger = logging.getLogger("secretvault.discovery")


def _raise(exc: OSError) -> None:
    raise exc


def _walk_files(root: str, rules: ClassifierRules) -> Iterator[str]:
    """Yield every regular file under ``root``, pruning ignored directories.

    The root itself is pruned too when its own name is ignored.
    """
    if os.path.basename(os.path.normpath(root)).lower() in rules.ignored_dirs:
        logger.debug("Skipping ignored root %s", root)
        return
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames[:] = sorted(d for d in dirnames if d.lower() not in rules.ignored_dirs)
        for fname in sorted(filenames):
            path = os.path.join(dirpath, fname)
            if stat.S_ISREG(os.lstat(path).st_mode):
                yield path


def find_sensitive_files(
    roots: Iterable[PathLike],
    rules: Optional[ClassifierRules] = None,
) -> list[str]:
    """Collect sensitive plaintext files under the given roots.

    Args:
        roots: Files or directories to examine.
        rules: Classifier rules. Defaults to the built-in tables.

    Returns:
        Sorted, de-duplicated absolute paths.

    Raises:
        OSError: Any stat, open or walk failure.
    """
    rules = rules or ClassifierRules.default()
    found: set[str] = set()

    for root in roots:
        root = os.fspath(root)
        if not os.path.isdir(root):
            os.stat(root)
            path = os.path.abspath(root)
            if not path.lower().endswith(ENCRYPTED_EXT) and is_sensitive_file(path, rules):
                found.add(path)
            continue

        for path in _walk_files(root, rules):
            if path.lower().endswith(ENCRYPTED_EXT):
                continue
            path = os.path.abspath(path)
            if is_sensitive_file(path, rules):
                found.add(path)

    logger.debug("Discovered %d sensitive file(s)", len(found))
    return sorted(found)


def find_encrypted_files(
    roots: Iterable[PathLike],
    rules: Optional[ClassifierRules] = None,
) -> list[str]:
    """Collect ciphertext sidecars under the given roots.

    Args:
        roots: Files or directories to examine.
        rules: Classifier rules, consulted for the ignored directories.

    Returns:
        Sorted, de-duplicated absolute paths ending in the sidecar suffix.

    Raises:
        OSError: Any stat or walk failure.
    """
    rules = rules or ClassifierRules.default()
    found: set[str] = set()

    for root in roots:
        root = os.fspath(root)
        if not os.path.isdir(root):
            os.stat(root)
            if root.lower().endswith(ENCRYPTED_EXT):
                found.add(os.path.abspath(root))
            continue

        for path in _walk_files(root, rules):
            if path.lower().endswith(ENCRYPTED_EXT):
                found.add(os.path.abspath(path))

    return sorted(found)


def is_sensitive_file(path: PathLike, rules: Optional[ClassifierRules] = None) -> bool:
    """Classify a single file. The first matching rule wins.

    Order: exact basename, dotenv overlay prefix, suffix, sensitive
    directory component, then content heuristic.

    Raises:
        OSError: When the content scan cannot stat or read the file.
    """
    rules = rules or ClassifierRules.default()
    path = os.fspath(path)
    base = os.path.basename(path).lower()

    if base in rules.exact_names:
        return True
    if base.startswith(rules.env_prefix):
        return True
    if base.endswith(rules.suffixes):
        return True
    if has_sensitive_dir(path, rules):
        return True
    return looks_sensitive_by_content(path, rules)


def has_sensitive_dir(path: PathLike, rules: Optional[ClassifierRules] = None) -> bool:
    """Whether any component of ``path`` names a sensitive directory."""
    rules = rules or ClassifierRules.default()
    parts = os.path.normpath(os.fspath(path)).lower().split(os.sep)
    return any(part in rules.sensitive_dirs for part in parts)


def looks_sensitive_by_content(path: PathLike, rules: Optional[ClassifierRules] = None) -> bool:
    """Scan the head of a small, non-empty file for secret assignments."""
    rules = rules or ClassifierRules.default()
    size = os.stat(path).st_size
    if size == 0 or size > rules.content_max_size:
        return False

    with open(path, "rb") as f:
        head = f.read(rules.content_read_size)
    if not head:
        return False
    return rules.content_pattern.search(head) is not None
