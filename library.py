"""Session-scoped library state kept in sync with the local and remote snapshots.

A :class:`LibraryState` owns the in-memory library and cabinets for exactly one
identity at a time. Every identity transition reloads it from scratch: the
local snapshot is read, the remote document (if signed in) is fetched and the
two are merged. Mutations update memory immediately and queue best-effort
writes of the full collections to both stores on a single background worker.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from models import (
    Book,
    Cabinet,
    Identity,
    LibraryEntry,
    ReadingSheet,
    ReadingStatus,
    decode_cabinets,
    decode_library,
    encode_all,
    utc_now_iso,
)
from reconcile import merge_cabinets, merge_libraries, needs_remote_write
from snapshots import LocalSnapshotStore, RemoteDocumentStore, RemoteStoreError

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Identity]], None]


class SessionProvider:
    """Holds the optional signed-in identity and announces every transition."""

    def __init__(self, identity: Optional[Identity] = None):
        self._identity = identity
        self._listeners: List[IdentityListener] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[Identity]:
        return self._identity

    def subscribe(self, listener: IdentityListener) -> IdentityListener:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: IdentityListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def sign_in(self, uid: str, display_name: Optional[str] = None) -> Identity:
        identity = Identity(uid=uid, display_name=display_name)
        self._set(identity)
        return identity

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, identity: Optional[Identity]) -> None:
        with self._lock:
            self._identity = identity
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(identity)
            except Exception:
                logger.exception("Identity listener %r failed", listener)


class LibraryPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


@dataclass
class CabinetView:
    cabinet: Cabinet
    entries: List[LibraryEntry] = field(default_factory=list)


@dataclass
class LibraryOverview:
    cabinets: List[CabinetView] = field(default_factory=list)
    unassigned: List[LibraryEntry] = field(default_factory=list)


class LibraryState:
    def __init__(
        self,
        local_store: LocalSnapshotStore,
        remote_store: Optional[RemoteDocumentStore] = None,
    ):
        self.local_store = local_store
        self.remote_store = remote_store
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="library-persist")
        self._pending: List[Future] = []
        self._library: Dict[str, LibraryEntry] = {}
        self._cabinets: List[Cabinet] = []
        self._identity: Optional[Identity] = None
        self._phase = LibraryPhase.UNINITIALIZED
        self._generation = 0
        self._session: Optional[SessionProvider] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def phase(self) -> LibraryPhase:
        return self._phase

    @property
    def is_ready(self) -> bool:
        return self._phase is LibraryPhase.READY

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def generation(self) -> int:
        return self._generation

    def attach(self, session: SessionProvider) -> None:
        """Follow the session's identity, loading the current one right away."""
        self._session = session
        session.subscribe(self._on_identity_change)
        self.load(session.current)

    def _on_identity_change(self, identity: Optional[Identity]) -> None:
        new_uid = identity.uid if identity else None
        with self._lock:
            loaded_uid = self._identity.uid if self._identity else None
            if self._phase is not LibraryPhase.UNINITIALIZED and new_uid == loaded_uid:
                self._identity = identity
                return
        self.load(identity)

    def load(self, identity: Optional[Identity]) -> bool:
        """Rebuild the state for ``identity``. Returns False if a newer load superseded it."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._phase = LibraryPhase.LOADING
            self._identity = identity
            self._library = {}
            self._cabinets = []

        # Read through the persist worker so writes queued before this load land first.
        local_library, local_cabinets = self._executor.submit(self._read_local).result()

        if identity is None or self.remote_store is None:
            return self._finish_load(generation, local_library, local_cabinets)

        try:
            document = self.remote_store.get_document(identity.uid) or {}
        except RemoteStoreError as exc:
            logger.error("Remote library unavailable, using local snapshot: %s", exc)
            return self._finish_load(generation, local_library, local_cabinets)

        remote_library = decode_library(document.get("library"))
        remote_cabinets = decode_cabinets(document.get("cabinets"))
        merged_library = merge_libraries(remote_library, local_library)
        merged_cabinets = merge_cabinets(remote_cabinets, local_cabinets)
        write_remote = needs_remote_write(remote_library, remote_cabinets, merged_library, merged_cabinets)

        with self._lock:
            if not self._finish_load(generation, merged_library, merged_cabinets):
                return False
            logger.info(
                "Loaded library for %s: %d books, %d cabinets",
                identity.uid,
                len(merged_library),
                len(merged_cabinets),
            )
            self._schedule_persist(remote=write_remote)
        return True

    def _read_local(self) -> Tuple[List[LibraryEntry], List[Cabinet]]:
        try:
            return self.local_store.read_library(), self.local_store.read_cabinets()
        except sqlite3.Error as exc:
            logger.error("Local snapshot unreadable, starting empty: %s", exc)
            return [], []

    def _finish_load(self, generation: int, library: List[LibraryEntry], cabinets: List[Cabinet]) -> bool:
        with self._lock:
            if generation != self._generation:
                logger.info("Discarding stale library load %d (current is %d)", generation, self._generation)
                return False
            self._library = {entry.id: entry for entry in library}
            self._cabinets = list(cabinets)
            self._phase = LibraryPhase.READY
        return True

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued snapshot write has run."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)
        with self._lock:
            self._pending = [future for future in self._pending if not future.done()]

    def close(self) -> None:
        if self._session is not None:
            self._session.unsubscribe(self._on_identity_change)
            self._session = None
        self.flush()
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def _schedule_persist(self, *, remote: bool = True) -> None:
        # Called with the lock held so queued writes keep mutation order.
        library = list(self._library.values())
        cabinets = list(self._cabinets)
        identity = self._identity
        self._pending = [future for future in self._pending if not future.done()]
        self._pending.append(self._executor.submit(self._write_local, library, cabinets))
        if remote and identity is not None and self.remote_store is not None:
            self._pending.append(self._executor.submit(self._write_remote, identity.uid, library, cabinets))

    def _write_local(self, library: List[LibraryEntry], cabinets: List[Cabinet]) -> None:
        try:
            self.local_store.write(library, cabinets)
        except sqlite3.Error as exc:
            logger.error("Failed to save local library snapshot: %s", exc)

    def _write_remote(self, uid: str, library: List[LibraryEntry], cabinets: List[Cabinet]) -> None:
        assert self.remote_store is not None
        try:
            self.remote_store.set_document(
                uid,
                {"library": encode_all(library), "cabinets": encode_all(cabinets)},
                merge=True,
            )
        except RemoteStoreError as exc:
            logger.error("Failed to save remote library for %s: %s", uid, exc)

    def _accepting(self, operation: str) -> bool:
        if self._phase is LibraryPhase.READY:
            return True
        logger.warning("Ignoring %s while the library is %s", operation, self._phase.value)
        return False

    # ------------------------------------------------------------------ #
    # Library mutations
    # ------------------------------------------------------------------ #
    def add_to_library(self, book: Book, rating: int) -> Optional[LibraryEntry]:
        """Rate a book as read now. An existing reading sheet is kept."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            logger.warning("Ignoring rating %r for %s: expected an integer from 1 to 5", rating, book.id)
            return None
        with self._lock:
            if not self._accepting("add_to_library"):
                return None
            existing = self._library.get(book.id)
            entry = LibraryEntry(
                **book.book_fields(),
                user_rating=rating,
                read_date=utc_now_iso(),
                status=ReadingStatus.READ,
                reading_sheet=existing.reading_sheet if existing else None,
            )
            self._library[book.id] = entry
            self._schedule_persist()
        return entry

    def save_reading_sheet(self, book_id: str, sheet: ReadingSheet) -> Optional[ReadingSheet]:
        with self._lock:
            if not self._accepting("save_reading_sheet"):
                return None
            entry = self._library.get(book_id)
            if entry is None:
                logger.debug("No library entry for %s, reading sheet not saved", book_id)
                return None
            now = utc_now_iso()
            if entry.reading_sheet is not None:
                created_at = entry.reading_sheet.created_at
            else:
                created_at = sheet.created_at or now
            saved = ReadingSheet(
                type=sheet.type,
                responses=dict(sheet.responses),
                created_at=created_at,
                updated_at=now,
            )
            self._library[book_id] = replace(entry, reading_sheet=saved)
            self._schedule_persist()
        return saved

    def clear_reading_sheet(self, book_id: str) -> bool:
        with self._lock:
            if not self._accepting("clear_reading_sheet"):
                return False
            entry = self._library.get(book_id)
            if entry is None or entry.reading_sheet is None:
                return False
            self._library[book_id] = replace(entry, reading_sheet=None)
            self._schedule_persist()
        return True

    def remove_from_library(self, book_id: str) -> bool:
        with self._lock:
            if not self._accepting("remove_from_library"):
                return False
            removed = self._library.pop(book_id, None) is not None
            filed = any(book_id in cabinet.book_ids for cabinet in self._cabinets)
            if not removed and not filed:
                return False
            self._cabinets = [
                replace(cabinet, book_ids=[other for other in cabinet.book_ids if other != book_id])
                for cabinet in self._cabinets
            ]
            self._schedule_persist()
        return removed

    # ------------------------------------------------------------------ #
    # Cabinet mutations
    # ------------------------------------------------------------------ #
    def create_cabinet(self, name: str) -> Optional[Cabinet]:
        trimmed = (name or "").strip()
        if not trimmed:
            return None
        with self._lock:
            if not self._accepting("create_cabinet"):
                return None
            cabinet = Cabinet(id=str(uuid.uuid4()), name=trimmed, book_ids=[], created_at=utc_now_iso())
            self._cabinets.append(cabinet)
            self._schedule_persist()
        return cabinet

    def move_book_to_cabinet(self, book_id: str, cabinet_id: Optional[str]) -> bool:
        """File a book into one cabinet, or into none when ``cabinet_id`` is None."""
        with self._lock:
            if not self._accepting("move_book_to_cabinet"):
                return False
            found = cabinet_id is None
            updated: List[Cabinet] = []
            for cabinet in self._cabinets:
                book_ids = [other for other in cabinet.book_ids if other != book_id]
                if cabinet_id is not None and cabinet.id == cabinet_id:
                    book_ids.append(book_id)
                    found = True
                updated.append(replace(cabinet, book_ids=book_ids))
            self._cabinets = updated
            self._schedule_persist()
        return found

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def is_book_in_library(self, book_id: str) -> bool:
        with self._lock:
            return book_id in self._library

    def get_entry(self, book_id: str) -> Optional[LibraryEntry]:
        with self._lock:
            return self._library.get(book_id)

    @property
    def library(self) -> List[LibraryEntry]:
        with self._lock:
            return list(self._library.values())

    @property
    def cabinets(self) -> List[Cabinet]:
        with self._lock:
            return list(self._cabinets)

    def get_cabinet(self, cabinet_id: str) -> Optional[Cabinet]:
        with self._lock:
            return next((cabinet for cabinet in self._cabinets if cabinet.id == cabinet_id), None)

    def stats(self) -> Dict[str, Any]:
        entries = self.library
        total = len(entries)
        average = round(sum(entry.user_rating or 0 for entry in entries) / total, 1) if total else 0.0
        return {
            "total_books": total,
            "average_rating": average,
            "reading_sheets": sum(1 for entry in entries if entry.reading_sheet is not None),
        }

    def overview(self) -> LibraryOverview:
        """Cabinets with their books resolved, plus the books filed nowhere."""
        with self._lock:
            entries = dict(self._library)
            cabinets = list(self._cabinets)
        assigned = set()
        views: List[CabinetView] = []
        for cabinet in cabinets:
            resolved = [entries[book_id] for book_id in cabinet.book_ids if book_id in entries]
            assigned.update(entry.id for entry in resolved)
            views.append(CabinetView(cabinet=cabinet, entries=resolved))
        unassigned = [entry for entry in entries.values() if entry.id not in assigned]
        return LibraryOverview(cabinets=views, unassigned=unassigned)
