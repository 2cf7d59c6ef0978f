from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

import server
from library import LibraryState, SessionProvider
from models import Book
from server import app, get_library, get_session
from snapshots import LocalSnapshotStore, SqliteDocumentStore


def _book_payload(book_id: str, title: str) -> Dict[str, Any]:
    return {
        "id": book_id,
        "title": title,
        "authors": ["Author"],
        "publishedDate": "2001",
        "pageCount": 320,
    }


@pytest.fixture
def session() -> SessionProvider:
    return SessionProvider()


@pytest.fixture
def state(tmp_path: Path, session: SessionProvider, monkeypatch) -> LibraryState:
    monkeypatch.setenv("BIBLIO_HOME", str(tmp_path))
    local_store = LocalSnapshotStore(db_path=tmp_path / "local.db")
    remote_store = SqliteDocumentStore(db_path=tmp_path / "remote.db")
    test_state = LibraryState(local_store, remote_store)
    test_state.attach(session)
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_library] = lambda: test_state
    yield test_state
    app.dependency_overrides.pop(get_session, None)
    app.dependency_overrides.pop(get_library, None)
    test_state.close()
    local_store.close()
    remote_store.close()


@pytest.fixture
def client(state: LibraryState) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def test_rate_organize_and_remove_books(client: TestClient, state: LibraryState) -> None:
    response = client.post("/api/library", json={"book": _book_payload("B1", "Dune"), "rating": 5})
    assert response.status_code == 201
    assert response.json()["userRating"] == 5
    assert response.json()["status"] == "read"

    client.post("/api/library", json={"book": _book_payload("B2", "Emma"), "rating": 3})

    response = client.post("/api/cabinets", json={"name": "  Sci-fi "})
    assert response.status_code == 201
    cabinet_id = response.json()["id"]
    assert response.json()["name"] == "Sci-fi"

    response = client.put("/api/library/B1/cabinet", json={"cabinet_id": cabinet_id})
    assert response.status_code == 200
    assert response.json()[0]["bookIds"] == ["B1"]

    overview = client.get("/api/library/overview").json()
    assert [book["id"] for book in overview["cabinets"][0]["books"]] == ["B1"]
    assert [book["id"] for book in overview["unassigned"]] == ["B2"]

    stats = client.get("/api/library/stats").json()
    assert stats == {"total_books": 2, "average_rating": 4.0, "reading_sheets": 0}

    response = client.delete("/api/library/B1")
    assert response.status_code == 204
    assert [book["id"] for book in client.get("/api/library").json()] == ["B2"]
    assert client.get("/api/cabinets").json()[0]["bookIds"] == []
    assert client.get("/api/library/B1").status_code == 404


def test_rating_and_cabinet_validation(client: TestClient) -> None:
    response = client.post("/api/library", json={"book": _book_payload("B1", "Dune"), "rating": 9})
    assert response.status_code == 422

    response = client.post("/api/cabinets", json={"name": "   "})
    assert response.status_code == 400
    assert client.get("/api/cabinets").json() == []

    client.post("/api/library", json={"book": _book_payload("B1", "Dune"), "rating": 4})
    response = client.put("/api/library/B1/cabinet", json={"cabinet_id": "missing"})
    assert response.status_code == 404


def test_reading_sheet_endpoints(client: TestClient) -> None:
    response = client.put(
        "/api/library/unknown/sheet",
        json={"type": "libre", "responses": {"notes_libres": "?"}},
    )
    assert response.status_code == 404

    client.post("/api/library", json={"book": _book_payload("B1", "Dune"), "rating": 4})
    first = client.put(
        "/api/library/B1/sheet",
        json={"type": "essai", "responses": {"pourquoi_lu": "curiosité"}},
    ).json()
    second = client.put(
        "/api/library/B1/sheet",
        json={"type": "essai", "responses": {"pourquoi_lu": "travail"}},
    ).json()
    assert second["createdAt"] == first["createdAt"]

    entry = client.get("/api/library/B1").json()
    assert entry["readingSheet"]["responses"] == {"pourquoi_lu": "travail"}
    assert entry["coverAsset"] is None

    assert client.delete("/api/library/B1/sheet").status_code == 204
    assert "readingSheet" not in client.get("/api/library/B1").json()

    blank = client.put("/api/library/B1/sheet", json={"type": "libre"}).json()
    assert blank["responses"] == {"notes_libres": ""}

    templates = client.get("/api/reading-sheets/templates").json()
    assert [template["type"] for template in templates] == ["essai", "roman_histoire", "libre"]

    roman = client.get("/api/reading-sheets/templates/roman_histoire").json()
    assert roman["label"] == "Roman / Histoire"
    assert len(roman["responses"]) == len(roman["fields"]) == 9
    assert client.get("/api/reading-sheets/templates/poeme").status_code == 422


def test_session_switch_reloads_library(client: TestClient, state: LibraryState) -> None:
    state.remote_store.set_document(
        "alice",
        {"library": [{"id": "A1", "title": "Alice's", "readDate": "2024-01-01", "userRating": 5}]},
    )

    assert client.get("/api/session").json() == {"uid": None, "display_name": None, "phase": "ready"}

    response = client.post("/api/session", json={"uid": "alice", "display_name": "Alice"})
    assert response.json() == {"uid": "alice", "display_name": "Alice", "phase": "ready"}
    assert [book["id"] for book in client.get("/api/library").json()] == ["A1"]

    response = client.delete("/api/session")
    assert response.json()["uid"] is None


def test_library_routes_wait_for_loading(client: TestClient, state: LibraryState, monkeypatch) -> None:
    monkeypatch.setattr(type(state), "is_ready", property(lambda self: False))

    assert client.get("/api/library").status_code == 503
    assert client.get("/api/health").json() == {"status": "ok"}


def test_catalog_routes(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(server, "search_books", lambda query: [Book(id="vol-1", title=query)])
    monkeypatch.setattr(server, "get_book_by_id", lambda book_id: None)

    assert client.get("/api/search", params={"q": "camus"}).json() == [{"id": "vol-1", "title": "camus", "authors": []}]
    assert client.get("/api/catalog/vol-9").status_code == 404
    assert client.get("/api/covers/nothing.jpg").status_code == 404
