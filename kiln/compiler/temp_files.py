"""Temporary artifacts of one backend run.

Every intermediate file lives in a single per-run directory. The directory
is removed when the `TempFiles` scope exits, on success or failure, and as a
last resort at interpreter exit.
"""
from __future__ import annotations

import atexit
import os
import shutil
import tempfile
from typing import Optional


class TempFiles:

    def __init__(self, prefix: str = "kiln") -> None:
        self.prefix = prefix
        self._dir: Optional[str] = None
        self._registered = False

    @property
    def dir(self) -> str:
        if self._dir is None:
            self._dir = tempfile.mkdtemp(prefix=f"{self.prefix}-")
            if not self._registered:
                atexit.register(self.cleanup)
                self._registered = True
        return self._dir

    def create(self, name: str, suffix: str) -> str:
        """Create a fresh, empty temporary file and return its absolute path."""
        fd, path = tempfile.mkstemp(prefix=name, suffix=suffix, dir=self.dir)
        os.close(fd)
        return os.path.abspath(path)

    def named(self, file_name: str) -> str:
        """Path for a file with a fixed name inside the run directory."""
        return os.path.join(self.dir, file_name)

    @property
    def native_binary_file_name(self) -> str:
        return self.named("program.bc")

    @property
    def c_adapter_bitcode_name(self) -> str:
        return self.named("api.cpp.bc")

    def cleanup(self) -> None:
        if self._dir is not None:
            shutil.rmtree(self._dir, ignore_errors=True)
            self._dir = None

    def __enter__(self) -> TempFiles:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
