from __future__ import annotations

import hashlib
import io
import logging
from pathlib import Path
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

import config
from models import Book

logger = logging.getLogger(__name__)

COVER_EDGE = 512


def cover_cache_path(book_id: str, cover_url: str, max_edge: Optional[int]) -> Path:
    """Cache location for one book's cover at one size.

    The URL is part of the key so a book whose catalog cover changes gets a
    fresh file instead of the stale one.
    """
    size = str(max_edge) if max_edge else "orig"
    digest = hashlib.sha1(f"{book_id}|{cover_url}|{size}".encode("utf-8")).hexdigest()
    return config.covers_dir() / f"{digest}.jpg"


def _download(cover_url: str, book_id: str) -> Optional[bytes]:
    try:
        response = requests.get(cover_url, timeout=config.http_timeout())
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Unable to download cover for %s: %s", book_id, exc)
        return None
    return response.content or None


def _shrink(content: bytes, max_edge: int) -> Optional[bytes]:
    try:
        image = Image.open(io.BytesIO(content))
        image.thumbnail((max_edge, max_edge), Image.LANCZOS)
        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="JPEG", quality=85)
    except (UnidentifiedImageError, OSError):
        return None
    return buffer.getvalue()


def _store(target_path: Path, content: bytes) -> Optional[Path]:
    partial = target_path.with_suffix(".part")
    try:
        partial.write_bytes(content)
        partial.replace(target_path)
    except OSError as exc:
        logger.warning("Unable to write cover %s: %s", target_path, exc)
        return None
    return target_path


def cache_cover(book: Book, *, max_edge: Optional[int] = COVER_EDGE) -> Optional[Path]:
    """Download the book's catalog cover once and keep a local copy."""
    if not book.thumbnail:
        return None

    target_path = cover_cache_path(book.id, book.thumbnail, max_edge)
    if target_path.exists():
        return target_path

    content = _download(book.thumbnail, book.id)
    if content is None:
        return None

    if max_edge:
        shrunk = _shrink(content, max_edge)
        if shrunk is None:
            logger.warning("Cover for %s is not a readable image, keeping it as downloaded", book.id)
        else:
            content = shrunk
    return _store(target_path, content)
