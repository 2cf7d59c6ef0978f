from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

import config
from catalog import get_book_by_id, search_books
from library import LibraryState, SessionProvider
from media import cache_cover
from models import Book, LibraryEntry, ReadingSheet, ReadingSheetType
from reading_sheets import describe_template, describe_templates, empty_responses
from snapshots import LocalSnapshotStore, open_remote_store

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

app = FastAPI(title="Bibliothèque API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session() -> SessionProvider:
    if not hasattr(get_session, "_instance"):
        get_session._instance = SessionProvider()
    return get_session._instance  # type: ignore[attr-defined]


def get_library() -> LibraryState:
    if not hasattr(get_library, "_instance"):
        state = LibraryState(LocalSnapshotStore(), open_remote_store())
        state.attach(get_session())
        get_library._instance = state
    return get_library._instance  # type: ignore[attr-defined]


@app.on_event("startup")
def _startup() -> None:
    config.configure_logging()


@app.on_event("shutdown")
def _shutdown() -> None:
    state = getattr(get_library, "_instance", None)
    if isinstance(state, LibraryState):
        state.close()
        state.local_store.close()
        if state.remote_store is not None:
            state.remote_store.close()


def ready_library(state: LibraryState = Depends(get_library)) -> LibraryState:
    if not state.is_ready:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Library is loading")
    return state


# -----------------------------------------------------------------------------
# Pydantic models
# -----------------------------------------------------------------------------


class BookPayload(BaseModel):
    id: str = Field(..., min_length=1)
    title: str = ""
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    isbn: Optional[str] = None
    publishedDate: Optional[str] = None
    pageCount: Optional[int] = None
    categories: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None

    def to_book(self) -> Book:
        return Book.from_dict(self.model_dump())


class RatingPayload(BaseModel):
    book: BookPayload
    rating: int = Field(..., ge=1, le=5)


class SheetPayload(BaseModel):
    type: ReadingSheetType
    responses: Optional[Dict[str, str]] = None


class CabinetPayload(BaseModel):
    name: str


class MovePayload(BaseModel):
    cabinet_id: Optional[str] = None


class SessionPayload(BaseModel):
    uid: str = Field(..., min_length=1)
    display_name: Optional[str] = None


class SessionResponse(BaseModel):
    uid: Optional[str] = None
    display_name: Optional[str] = None
    phase: str


class LibraryStats(BaseModel):
    total_books: int
    average_rating: float
    reading_sheets: int


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------


def _cover_asset(entry: LibraryEntry) -> Optional[str]:
    path = cache_cover(entry)
    return f"/api/covers/{path.name}" if path else None


def _session_response(session: SessionProvider, state: LibraryState) -> SessionResponse:
    identity = session.current
    return SessionResponse(
        uid=identity.uid if identity else None,
        display_name=identity.display_name if identity else None,
        phase=state.phase.value,
    )


def _require_entry(state: LibraryState, book_id: str) -> LibraryEntry:
    entry = state.get_entry(book_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not in library")
    return entry


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/search")
def search_catalog(q: Optional[str] = Query(None)) -> List[Dict[str, Any]]:
    return [book.to_dict() for book in search_books(q or "")]


@app.get("/api/catalog/{book_id}")
def catalog_book(book_id: str) -> Dict[str, Any]:
    book = get_book_by_id(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    return book.to_dict()


@app.get("/api/session", response_model=SessionResponse)
def current_session(
    session: SessionProvider = Depends(get_session),
    state: LibraryState = Depends(get_library),
) -> SessionResponse:
    return _session_response(session, state)


@app.post("/api/session", response_model=SessionResponse)
def sign_in(
    payload: SessionPayload,
    session: SessionProvider = Depends(get_session),
    state: LibraryState = Depends(get_library),
) -> SessionResponse:
    session.sign_in(payload.uid, payload.display_name)
    return _session_response(session, state)


@app.delete("/api/session", response_model=SessionResponse)
def sign_out(
    session: SessionProvider = Depends(get_session),
    state: LibraryState = Depends(get_library),
) -> SessionResponse:
    session.sign_out()
    return _session_response(session, state)


@app.get("/api/library")
def list_library(state: LibraryState = Depends(ready_library)) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in state.library]


@app.get("/api/library/stats", response_model=LibraryStats)
def library_stats(state: LibraryState = Depends(ready_library)) -> LibraryStats:
    return LibraryStats(**state.stats())


@app.get("/api/library/overview")
def library_overview(state: LibraryState = Depends(ready_library)) -> Dict[str, Any]:
    overview = state.overview()
    return {
        "cabinets": [
            {**view.cabinet.to_dict(), "books": [entry.to_dict() for entry in view.entries]}
            for view in overview.cabinets
        ],
        "unassigned": [entry.to_dict() for entry in overview.unassigned],
    }


@app.get("/api/library/{book_id}")
def get_library_entry(book_id: str, state: LibraryState = Depends(ready_library)) -> Dict[str, Any]:
    entry = _require_entry(state, book_id)
    return {**entry.to_dict(), "coverAsset": _cover_asset(entry)}


@app.post("/api/library", status_code=status.HTTP_201_CREATED)
def rate_book(payload: RatingPayload, state: LibraryState = Depends(ready_library)) -> Dict[str, Any]:
    entry = state.add_to_library(payload.book.to_book(), payload.rating)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unable to save rating")
    return entry.to_dict()


@app.delete("/api/library/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_book(book_id: str, state: LibraryState = Depends(ready_library)) -> Response:
    state.remove_from_library(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/api/library/{book_id}/sheet")
def save_sheet(
    book_id: str,
    payload: SheetPayload,
    state: LibraryState = Depends(ready_library),
) -> Dict[str, Any]:
    _require_entry(state, book_id)
    responses = payload.responses if payload.responses is not None else empty_responses(payload.type)
    saved = state.save_reading_sheet(book_id, ReadingSheet(type=payload.type, responses=responses))
    if saved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not in library")
    return saved.to_dict()


@app.delete("/api/library/{book_id}/sheet", status_code=status.HTTP_204_NO_CONTENT)
def clear_sheet(book_id: str, state: LibraryState = Depends(ready_library)) -> Response:
    _require_entry(state, book_id)
    state.clear_reading_sheet(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/api/library/{book_id}/cabinet")
def move_book(
    book_id: str,
    payload: MovePayload,
    state: LibraryState = Depends(ready_library),
) -> List[Dict[str, Any]]:
    _require_entry(state, book_id)
    if payload.cabinet_id is not None and state.get_cabinet(payload.cabinet_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cabinet not found")
    state.move_book_to_cabinet(book_id, payload.cabinet_id)
    return [cabinet.to_dict() for cabinet in state.cabinets]


@app.get("/api/cabinets")
def list_cabinets(state: LibraryState = Depends(ready_library)) -> List[Dict[str, Any]]:
    return [cabinet.to_dict() for cabinet in state.cabinets]


@app.post("/api/cabinets", status_code=status.HTTP_201_CREATED)
def create_cabinet(payload: CabinetPayload, state: LibraryState = Depends(ready_library)) -> Dict[str, Any]:
    cabinet = state.create_cabinet(payload.name)
    if cabinet is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cabinet name is required")
    return cabinet.to_dict()


@app.get("/api/reading-sheets/templates")
def reading_sheet_templates() -> List[Dict[str, Any]]:
    return describe_templates()


@app.get("/api/reading-sheets/templates/{sheet_type}")
def reading_sheet_template(sheet_type: ReadingSheetType) -> Dict[str, Any]:
    return describe_template(sheet_type)


@app.get("/api/covers/{filename}")
def cover_image(filename: str) -> FileResponse:
    safe_name = Path(filename).name
    target = config.covers_dir() / safe_name
    if not target.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cover not found")
    return FileResponse(target)
