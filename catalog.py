from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

import config
from models import Book, str_list

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown author"
PAGE_SIZE = 10


def _pick_isbn(info: Dict[str, Any]) -> Optional[str]:
    identifiers = [item for item in info.get("industryIdentifiers") or [] if isinstance(item, dict)]
    for identifier in identifiers:
        if identifier.get("type") == "ISBN_13" and identifier.get("identifier"):
            return str(identifier["identifier"])
    if identifiers and identifiers[0].get("identifier"):
        return str(identifiers[0]["identifier"])
    return None


def format_book_data(item: Dict[str, Any]) -> Book:
    """Normalize a Google Books volume into a Book."""
    info = item.get("volumeInfo") or {}

    thumbnail = (info.get("imageLinks") or {}).get("thumbnail")
    if thumbnail:
        thumbnail = str(thumbnail).replace("http:", "https:", 1)

    page_count = info.get("pageCount")
    return Book(
        id=str(item["id"]),
        title=info.get("title") or "",
        authors=str_list(info.get("authors")) or [UNKNOWN_AUTHOR],
        description=info.get("description") or None,
        thumbnail=thumbnail or None,
        isbn=_pick_isbn(info),
        published_date=info.get("publishedDate"),
        page_count=page_count if isinstance(page_count, int) else None,
        categories=str_list(info.get("categories")),
        publisher=info.get("publisher"),
    )


def _get_json(url: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
    try:
        response = requests.get(url, params=params, timeout=config.http_timeout())
        response.raise_for_status()
        return response.json()
    except requests.RequestException as error:
        logger.error("Unable to reach the book catalog: %s", error)
    except ValueError as error:
        logger.error("Catalog returned an unreadable payload: %s", error)
    return None


def search_books(query: str, max_results: Optional[int] = None) -> List[Book]:
    """Search the catalog. Failures are logged and yield an empty list."""
    if not query or not query.strip():
        return []

    params = {
        "q": query.strip(),
        "maxResults": str(max_results or config.catalog_max_results()),
    }
    lang = config.catalog_lang()
    if lang:
        params["langRestrict"] = lang

    data = _get_json(config.catalog_url(), params)
    items = data.get("items") if isinstance(data, dict) else None
    if not items:
        return []

    books: List[Book] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        books.append(format_book_data(item))
    logger.debug("Catalog search %r returned %d books", query, len(books))
    return books


def get_book_by_id(book_id: str) -> Optional[Book]:
    if not book_id or not book_id.strip():
        return None
    data = _get_json(f"{config.catalog_url()}/{book_id.strip()}")
    if not isinstance(data, dict) or not data.get("id"):
        return None
    return format_book_data(data)


def describe_book(book: Book, index: int) -> str:
    """Return a printable description for a catalog book."""
    lines = [
        f"{index}. {book.title or 'Untitled'}",
        f"   Author(s): {', '.join(book.authors) or UNKNOWN_AUTHOR}",
    ]
    if book.published_date:
        lines.append(f"   Published: {book.published_date}")
    if book.publisher:
        lines.append(f"   Publisher: {book.publisher}")
    if book.page_count:
        lines.append(f"   Pages: {book.page_count}")
    if book.categories:
        lines.append(f"   Categories: {', '.join(book.categories[:4])}")
    if book.isbn:
        lines.append(f"   ISBN: {book.isbn}")
    return "\n".join(lines)
