"""Crash-safe file replacement: write a sibling temp file, then rename."""

from __future__ import annotations

import os
import tempfile

from .project import PathLike

TEMP_PREFIX = ".svault-tmp-"


def write_atomic(path: PathLike, data: bytes, mode: int) -> None:
    """Replace ``path`` with ``data`` so readers see old or new, never partial.

    The temp file lives in the target's directory so the final rename
    stays on one filesystem. On any failure before the rename the temp
    file is removed and the target is untouched.

    Args:
        path: Destination file.
        data: Full new contents.
        mode: Permission bits for the new file.

    Raises:
        OSError: Temp creation, write, chmod or rename failed.
    """
    path = os.fspath(path)
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
            os.fchmod(tmp.fileno(), mode & 0o7777)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise
