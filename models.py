from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class ReadingStatus(str, Enum):
    READ = "read"
    READING = "reading"
    WANT_TO_READ = "want_to_read"


class ReadingSheetType(str, Enum):
    ESSAI = "essai"
    ROMAN_HISTOIRE = "roman_histoire"
    LIBRE = "libre"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _coerce_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def str_list(value: Any) -> List[str]:
    """Coerce a JSON value to a list of strings. A bare string becomes one item."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# Attribute name -> serialized key, shared by both snapshot stores.
BOOK_KEYS = {
    "id": "id",
    "title": "title",
    "authors": "authors",
    "description": "description",
    "thumbnail": "thumbnail",
    "isbn": "isbn",
    "published_date": "publishedDate",
    "page_count": "pageCount",
    "categories": "categories",
    "publisher": "publisher",
}


@dataclass(frozen=True)
class Book:
    id: str
    title: str = ""
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    isbn: Optional[str] = None
    published_date: Optional[str] = None
    page_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    publisher: Optional[str] = None

    def book_fields(self) -> Dict[str, Any]:
        values = {name: getattr(self, name) for name in BOOK_KEYS}
        values["authors"] = list(self.authors)
        values["categories"] = list(self.categories)
        return values

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name, key in BOOK_KEYS.items():
            value = getattr(self, name)
            if value is None or (name == "categories" and not value):
                continue
            data[key] = list(value) if isinstance(value, list) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        return cls(**_book_kwargs(data))


def _book_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(data["id"]),
        "title": str(data.get("title") or ""),
        "authors": str_list(data.get("authors")),
        "description": data.get("description"),
        "thumbnail": data.get("thumbnail"),
        "isbn": data.get("isbn"),
        "published_date": data.get("publishedDate"),
        "page_count": _optional_int(data.get("pageCount")),
        "categories": str_list(data.get("categories")),
        "publisher": data.get("publisher"),
    }


@dataclass
class ReadingSheet:
    type: ReadingSheetType = ReadingSheetType.LIBRE
    responses: Dict[str, str] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "responses": dict(self.responses),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReadingSheet":
        responses = data.get("responses") or {}
        if not isinstance(responses, dict):
            responses = {}
        return cls(
            type=_coerce_enum(ReadingSheetType, data.get("type"), ReadingSheetType.LIBRE),
            responses={str(key): "" if value is None else str(value) for key, value in responses.items()},
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
        )


@dataclass(frozen=True)
class LibraryEntry(Book):
    user_rating: Optional[int] = None
    read_date: str = ""
    status: ReadingStatus = ReadingStatus.READ
    reading_sheet: Optional[ReadingSheet] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.user_rating is not None:
            data["userRating"] = self.user_rating
        data["readDate"] = self.read_date
        data["status"] = self.status.value
        if self.reading_sheet is not None:
            data["readingSheet"] = self.reading_sheet.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LibraryEntry":
        sheet = data.get("readingSheet")
        return cls(
            **_book_kwargs(data),
            user_rating=_optional_int(data.get("userRating")),
            read_date=str(data.get("readDate") or ""),
            status=_coerce_enum(ReadingStatus, data.get("status"), ReadingStatus.READ),
            reading_sheet=ReadingSheet.from_dict(sheet) if isinstance(sheet, dict) else None,
        )


@dataclass
class Cabinet:
    id: str
    name: str
    book_ids: List[str] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "bookIds": list(self.book_ids),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cabinet":
        book_ids: List[str] = []
        for book_id in str_list(data.get("bookIds")):
            if book_id not in book_ids:
                book_ids.append(book_id)
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            book_ids=book_ids,
            created_at=str(data.get("createdAt") or ""),
        )


@dataclass(frozen=True)
class Identity:
    uid: str
    display_name: Optional[str] = None


def _decode_many(items: Any, decoder, label: str) -> List[Any]:
    if not isinstance(items, list):
        if items is not None:
            logger.error("Expected a list of %s, got %s", label, type(items).__name__)
        return []
    decoded = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            logger.warning("Skipping malformed %s entry: %r", label, item)
            continue
        try:
            decoded.append(decoder(item))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable %s entry %r: %s", label, item.get("id"), exc)
    return decoded


def decode_library(items: Any) -> List[LibraryEntry]:
    return _decode_many(items, LibraryEntry.from_dict, "library")


def decode_cabinets(items: Any) -> List[Cabinet]:
    return _decode_many(items, Cabinet.from_dict, "cabinet")


def encode_all(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]