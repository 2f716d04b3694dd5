from __future__ import annotations

import io
import os
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Protocol

from .errors import AccessViolation, FileNotFound


class Storage(Protocol):
    def exists(self, name: str) -> bool: ...

    def open_for_read(self, name: str) -> BinaryIO: ...

    def write_all(self, name: str, data: bytes) -> None: ...


class DirectoryStorage:
    """Files under one root directory; names may not escape it."""

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).resolve()

    def resolve(self, name: str) -> Path:
        """Map a request name to a file path strictly inside the root; directories are refused."""
        path = (self.root / name.lstrip("/")).resolve()
        if self.root not in path.parents:
            raise AccessViolation(f"Access violation: {name} is outside the served directory.")
        if path.is_dir():
            raise AccessViolation(f"Access violation: {name} is a directory.")
        return path

    def exists(self, name: str) -> bool:
        return self.resolve(name).is_file()

    def open_for_read(self, name: str) -> BinaryIO:
        path = self.resolve(name)
        if not path.is_file():
            raise FileNotFound(name)
        return open(path, "rb")

    def write_all(self, name: str, data: bytes) -> None:
        """Replace ``name`` with ``data`` atomically; existing files are overwritten."""
        path = self.resolve(name)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise


class MemoryStorage:
    def __init__(self, files: Dict[str, bytes] | None = None):
        self.files: Dict[str, bytes] = dict(files or {})
        self._lock = threading.Lock()

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self.files

    def open_for_read(self, name: str) -> BinaryIO:
        with self._lock:
            if name not in self.files:
                raise FileNotFound(name)
            return io.BytesIO(self.files[name])

    def write_all(self, name: str, data: bytes) -> None:
        with self._lock:
            self.files[name] = data
