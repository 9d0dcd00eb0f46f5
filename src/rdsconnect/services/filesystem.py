"""Filesystem helpers for rdsconnect."""

import logging
import os
import sys
import tempfile
from typing import Optional

from rdsconnect.constants import DIR_MODE, FILE_MODE
from rdsconnect.errors import ConnectError


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: str):
        if os.path.isdir(path):
            return
        os.makedirs(path, exist_ok=True)
        self.set_permissions(path, DIR_MODE)

    def atomic_write_text(self, path: str, content: str, mode: int = FILE_MODE):
        """Write ``content`` so readers only ever see the old or the new file.

        The temporary file lives next to the destination so ``os.replace``
        stays a same-filesystem rename.
        """
        directory = os.path.dirname(os.path.abspath(path))
        self.ensure_dir(directory)

        fd, temp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}-", dir=directory)
        try:
            if sys.platform != "win32":
                os.fchmod(fd, mode)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
                file_obj.flush()
                os.fsync(file_obj.fileno())
            os.replace(temp_path, path)
        except OSError as exc:
            raise ConnectError(f"Could not write '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.debug("Wrote %s", path)

    @staticmethod
    def modified_time_ns(path: str) -> Optional[int]:
        try:
            return os.stat(path).st_mtime_ns
        except FileNotFoundError:
            return None
