"""
File system utilities for Captain.

This module provides safe file operations including:
- Atomic writes (write to temp file, then rename)
- Append-only writes for logs that must never be rewritten
- Directory creation
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from captain.errors import FileSystemError


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist.

    Creates parent directories as needed (like mkdir -p).

    Args:
        path: Path to the directory to create.

    Returns:
        Path: The path object for the created/existing directory.

    Raises:
        FileSystemError: If directory creation fails.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    Uses a temporary file in the same directory and a rename, so readers
    never observe a partially written file.

    Raises:
        FileSystemError: If write operation fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)

            shutil.move(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def append_line(path: str | Path, line: str, header: Optional[str] = None) -> None:
    """
    Append a single line to a file, creating it (with an optional header) first.

    Existing content is never rewritten.

    Raises:
        FileSystemError: If the append fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        if header is not None and not path.exists():
            with open(path, "a", encoding="utf-8") as f:
                f.write(header)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")
    except OSError as e:
        raise FileSystemError(f"Failed to append to {path}: {e}")


def read_file(path: str | Path, encoding: str = "utf-8") -> str:
    """
    Read a file, returning an empty string if it does not exist.

    Raises:
        FileSystemError: If the file exists but cannot be read.
    """
    path = Path(path)
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding=encoding)
    except OSError as e:
        raise FileSystemError(f"Failed to read file {path}: {e}")
