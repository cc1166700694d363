# tests/services/test_storage.py
import io
import re

import pytest

from docmanager.exceptions import NotFoundError, StorageError, ValidationError
from docmanager.services.storage import LocalStorageBackend


def test_generate_filename_format():
    name = LocalStorageBackend.generate_filename("INV/2024 01", 7, ".pdf")

    assert re.fullmatch(r"INV_2024_01_7_\d{8}_\d{6}_[0-9a-f]{8}\.pdf", name)


def test_generate_filename_placeholders():
    name = LocalStorageBackend.generate_filename(None, None, ".png")

    assert name.startswith("document_new_")
    assert name.endswith(".png")


def test_generate_filename_is_unique():
    names = {LocalStorageBackend.generate_filename("A", 1, ".png") for _ in range(20)}
    assert len(names) == 20


def test_store_writes_bytes_under_owner(storage, temp_storage_dir, png_bytes):
    stored = storage.store(io.BytesIO(png_bytes), "scan.png", "image/png", 5, "DOC-1")

    assert stored.original_filename == "scan.png"
    assert stored.content_type == "image/png"
    assert stored.file_size == len(png_bytes)
    assert stored.file_path == f"uploads/5/{stored.stored_filename}"
    assert (temp_storage_dir / stored.file_path).read_bytes() == png_bytes


def test_store_rejects_bad_filename(storage):
    with pytest.raises(ValidationError):
        storage.store(io.BytesIO(b"data"), "../escape.png", "image/png", 1, "DOC-1")


def test_store_failure_raises_storage_error(storage, temp_storage_dir):
    class BrokenStream(io.BytesIO):
        def read(self, *args, **kwargs):
            raise OSError("disk full")

    with pytest.raises(StorageError):
        storage.store(BrokenStream(b"data"), "scan.png", "image/png", 1, "DOC-1")

    assert list((temp_storage_dir / "uploads" / "1").iterdir()) == []


def test_delete_missing_file_is_not_an_error(storage, png_bytes):
    stored = storage.store(io.BytesIO(png_bytes), "scan.png", "image/png", 1, "DOC-1")
    storage.delete(stored)

    storage.delete(stored)

    assert not storage.absolute_path(stored).exists()


def test_resolve_path_missing_file(storage, png_bytes):
    stored = storage.store(io.BytesIO(png_bytes), "scan.png", "image/png", 1, "DOC-1")
    storage.absolute_path(stored).unlink()

    with pytest.raises(NotFoundError):
        storage.resolve_path(stored)


def test_load_returns_stream(storage, png_bytes):
    stored = storage.store(io.BytesIO(png_bytes), "scan.png", "image/png", 1, "DOC-1")

    with storage.load(stored) as stream:
        assert stream.read() == png_bytes


def test_roots_follow_settings_when_unset(temp_storage_dir):
    backend = LocalStorageBackend()

    assert backend.storage_root == temp_storage_dir
    assert backend.uploads_root == temp_storage_dir / "uploads"
