# backend/docmanager/utils/files.py
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import BinaryIO

_UNSAFE_TOKEN_CHARS = re.compile(r"[^a-zA-Z0-9]")


def clean_filename(filename: str | None) -> str:
    """Normalize a client supplied filename, rejecting path traversal"""
    if not filename or not filename.strip():
        raise ValueError("Filename is empty")
    # Browsers on Windows may send backslash separated names
    cleaned = PurePosixPath(filename.strip().replace("\\", "/")).as_posix()
    if ".." in PurePosixPath(cleaned).parts:
        raise ValueError(f"Filename contains invalid path sequence: {filename}")
    name = PurePosixPath(cleaned).name
    if not name:
        raise ValueError(f"Filename has no name component: {filename}")
    return name


def get_file_extension(filename: str) -> str:
    """Return the extension including the dot, or an empty string"""
    index = filename.rfind(".")
    if index <= 0:
        return ""
    return filename[index:]


def sanitize_token(value: str | None, placeholder: str = "new") -> str:
    if value is None or str(value) == "":
        return placeholder
    return _UNSAFE_TOKEN_CHARS.sub("_", str(value))


def copy_stream_to_file(source: BinaryIO, file_path: Path) -> int:
    """Copy a binary stream to `file_path` and return the number of bytes written"""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if hasattr(source, "seek"):
        source.seek(0)
    with file_path.open("wb") as buffer:
        shutil.copyfileobj(source, buffer)
    return file_path.stat().st_size


def get_relative_path(absolute_path: Path, base_path: Path) -> str:
    """Convert absolute path to relative path for database storage.

    Paths outside `base_path` are returned absolute.
    """
    absolute_path = Path(absolute_path).absolute()
    base_path = Path(base_path).absolute()

    try:
        return absolute_path.relative_to(base_path).as_posix()
    except ValueError:
        return str(absolute_path)
