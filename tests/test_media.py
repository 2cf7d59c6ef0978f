from __future__ import annotations

import io
from pathlib import Path
from typing import List

import pytest
import requests
from PIL import Image

import media
from media import cache_cover, cover_cache_path
from models import Book


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def _png(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), (200, 30, 30, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def covers_home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("BIBLIO_HOME", str(tmp_path))
    return tmp_path


def test_cover_is_shrunk_and_cached_once(covers_home: Path, monkeypatch) -> None:
    downloads: List[str] = []

    def fake_get(url: str, timeout=None) -> FakeResponse:
        downloads.append(url)
        return FakeResponse(_png(1000, 500))

    monkeypatch.setattr(media.requests, "get", fake_get)
    book = Book(id="B1", title="Dune", thumbnail="https://books.example/dune.png")

    first = cache_cover(book, max_edge=100)
    second = cache_cover(book, max_edge=100)

    assert first == second
    assert downloads == ["https://books.example/dune.png"]
    with Image.open(first) as image:
        assert image.format == "JPEG"
        assert max(image.size) == 100


def test_changed_cover_url_gets_its_own_file(covers_home: Path) -> None:
    old = cover_cache_path("B1", "https://books.example/v1.jpg", 512)
    new = cover_cache_path("B1", "https://books.example/v2.jpg", 512)
    original = cover_cache_path("B1", "https://books.example/v1.jpg", None)

    assert len({old, new, original}) == 3
    assert old.parent == covers_home / "covers"


def test_missing_or_failed_covers_return_none(covers_home: Path, monkeypatch) -> None:
    monkeypatch.setattr(media.requests, "get", lambda *args, **kwargs: pytest.fail("no download expected"))
    assert cache_cover(Book(id="B1")) is None

    monkeypatch.setattr(media.requests, "get", lambda *args, **kwargs: FakeResponse(b"", status_code=404))
    assert cache_cover(Book(id="B1", thumbnail="https://books.example/missing.jpg")) is None


def test_unreadable_image_is_kept_as_downloaded(covers_home: Path, monkeypatch) -> None:
    monkeypatch.setattr(media.requests, "get", lambda *args, **kwargs: FakeResponse(b"not an image"))

    path = cache_cover(Book(id="B1", thumbnail="https://books.example/odd.jpg"))

    assert path is not None
    assert path.read_bytes() == b"not an image"
