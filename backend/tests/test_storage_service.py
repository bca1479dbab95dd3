"""
Tests for the filesystem image store.
"""
import pytest

from services.errors import NotFoundError
from services.storage_service import ImageStore, build_image_key, get_image_store, safe_filename


class TestKeys:

    def test_key_layout(self):
        assert build_image_key(3, "photo.jpg", now_ms=1700000000123) == "3/1700000000123_photo.jpg"

    @pytest.mark.parametrize("name,expected", [
        ("photo.jpg", "photo.jpg"),
        ("../../etc/passwd", "passwd"),
        ("my receipt (1).jpg", "my_receipt_1_.jpg"),
        ("", "receipt.jpg"),
        (None, "receipt.jpg"),
        ("...", "receipt.jpg"),
    ])
    def test_safe_filename(self, name, expected):
        assert safe_filename(name) == expected


class TestImageStore:

    def test_save_and_load(self, image_store):
        key = image_store.save(1, "a.jpg", b"bytes")
        assert key.startswith("1/")
        assert image_store.load(key) == b"bytes"
        assert image_store.path_for(key).is_file()

    def test_missing(self, image_store):
        with pytest.raises(NotFoundError):
            image_store.load("1/nope.jpg")
        with pytest.raises(NotFoundError):
            image_store.path_for("1/nope.jpg")

    def test_key_escaping_root(self, image_store, tmp_path):
        (tmp_path / "secret.txt").write_bytes(b"x")
        with pytest.raises(NotFoundError):
            image_store.load("../secret.txt")

    def test_delete(self, image_store):
        key = image_store.save(1, "a.jpg", b"bytes")
        assert image_store.delete(key) is True
        assert image_store.delete(key) is False
        assert image_store.delete("../outside.jpg") is False

    def test_dependency_reads_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IMAGE_DIR", str(tmp_path / "elsewhere"))
        store = get_image_store()
        assert isinstance(store, ImageStore)
        assert store.root == tmp_path / "elsewhere"
