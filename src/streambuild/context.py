"""Tar build context creation from a directory."""

from __future__ import annotations

import io
import logging
import os
import stat
import tarfile
from pathlib import Path
from typing import List, Optional, Union

from .errors import ContextError

logger = logging.getLogger(__name__)


class ContextPackager:
    """
    Packs a directory into the tar archive a build context is made of.

    Every file below the root becomes one entry named by its path relative
    to the root. Directories get no entries of their own.
    """

    def __init__(self, deterministic_timestamp: Optional[int] = None):
        # None keeps each file's own mtime.
        self.deterministic_timestamp = deterministic_timestamp

    def list_files(self, root: Union[str, Path]) -> List[Path]:
        """Returns every file below root, sorted by path."""
        root = Path(root)
        if not root.is_dir():
            raise ContextError(f"Build context is not a directory: {root}", path=root)

        files = []
        # os.walk is not guaranteed to be sorted, so we sort explicitly.
        for dirpath, dirs, filenames in os.walk(root):
            dirs.sort()
            for filename in sorted(filenames):
                files.append(Path(dirpath) / filename)
        return files

    def pack(self, root: Union[str, Path]) -> io.BytesIO:
        """
        Builds a finalized tar archive of root in memory.

        Raises ContextError if any file cannot be read; nothing is returned
        for a partially read directory. Entries that are not regular files,
        such as sockets and FIFOs, are skipped.
        """
        root = Path(root)
        buffer = io.BytesIO()

        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for file_path in self.list_files(root):
                try:
                    st = os.stat(file_path)
                    if not stat.S_ISREG(st.st_mode):
                        logger.debug("Skipping %s: not a regular file", file_path)
                        continue
                    with open(file_path, "rb") as f:
                        data = f.read()
                except OSError as e:
                    raise ContextError(f"Failed to read {file_path}: {e}", path=file_path) from e

                info = tarfile.TarInfo(file_path.relative_to(root).as_posix())
                info.size = len(data)
                info.mode = st.st_mode & 0o7777
                info.mtime = (
                    self.deterministic_timestamp
                    if self.deterministic_timestamp is not None
                    else int(st.st_mtime)
                )
                tar.addfile(info, io.BytesIO(data))

        buffer.seek(0)
        return buffer
