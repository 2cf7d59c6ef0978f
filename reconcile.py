"""Merging of two library snapshots into one.

The primary side is the remote document and the secondary side the local
snapshot. Both merges are pure: they never mutate their inputs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from models import Cabinet, LibraryEntry, encode_all


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; anything unparsable yields ``None``."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_newer(existing: LibraryEntry, incoming: LibraryEntry) -> bool:
    incoming_date = parse_timestamp(incoming.read_date)
    if incoming_date is None:
        return False
    existing_date = parse_timestamp(existing.read_date)
    if existing_date is None:
        return True
    return incoming_date > existing_date


def merge_libraries(
    primary: Sequence[LibraryEntry],
    secondary: Sequence[LibraryEntry],
) -> List[LibraryEntry]:
    """Union by book id; on conflict the later valid read date wins, ties keep primary."""
    merged: Dict[str, LibraryEntry] = {}
    for entry in _chain(primary, secondary):
        existing = merged.get(entry.id)
        if existing is None or _is_newer(existing, entry):
            merged[entry.id] = entry
    return list(merged.values())


def _combine_cabinets(existing: Cabinet, incoming: Cabinet) -> Cabinet:
    book_ids = list(existing.book_ids)
    for book_id in incoming.book_ids:
        if book_id not in book_ids:
            book_ids.append(book_id)
    return Cabinet(
        id=existing.id,
        name=existing.name or incoming.name,
        book_ids=book_ids,
        created_at=incoming.created_at,
    )


def merge_cabinets(primary: Sequence[Cabinet], secondary: Sequence[Cabinet]) -> List[Cabinet]:
    """Union by cabinet id; shared cabinets get the union of their book ids."""
    merged: Dict[str, Cabinet] = {}
    for cabinet in _chain(primary, secondary):
        existing = merged.get(cabinet.id)
        if existing is None:
            merged[cabinet.id] = cabinet
        else:
            merged[cabinet.id] = _combine_cabinets(existing, cabinet)
    return list(merged.values())


def needs_remote_write(
    remote_library: Sequence[LibraryEntry],
    remote_cabinets: Sequence[Cabinet],
    merged_library: Sequence[LibraryEntry],
    merged_cabinets: Sequence[Cabinet],
) -> bool:
    return encode_all(merged_library) != encode_all(remote_library) or encode_all(
        merged_cabinets
    ) != encode_all(remote_cabinets)


def _chain(*groups: Iterable):
    for group in groups:
        yield from group
