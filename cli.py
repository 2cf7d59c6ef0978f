from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import pandas

import config
from catalog import PAGE_SIZE, describe_book, search_books
from library import LibraryState
from models import Book, Identity, LibraryEntry
from snapshots import LocalSnapshotStore, open_remote_store

EXPORT_COLUMNS = [
    "id",
    "title",
    "authors",
    "publisher",
    "published_date",
    "isbn",
    "page_count",
    "user_rating",
    "read_date",
    "status",
    "cabinet",
    "reading_sheet",
]

QUIT_WORDS = {"quit", "exit"}


class QuitSession(Exception):
    """Raised when the reader types 'quit' at any prompt."""


def ask(prompt: str) -> str:
    try:
        response = input(prompt).strip()
    except EOFError:
        raise QuitSession() from None
    if response.lower() in QUIT_WORDS:
        raise QuitSession()
    return response


def print_book_details(book: Book) -> None:
    """Show everything the catalog knows about a book."""
    click.echo(book.title or "(untitled)")
    click.echo(f"  by {', '.join(book.authors) or 'unknown'}")
    for label, value in (
        ("Publisher", book.publisher),
        ("Published", book.published_date),
        ("Pages", book.page_count),
        ("ISBN", book.isbn),
        ("Categories", ", ".join(book.categories)),
    ):
        if value:
            click.echo(f"  {label}: {value}")
    if book.description:
        click.echo()
        click.echo(textwrap.fill(book.description, width=78, initial_indent="  ", subsequent_indent="  "))


def choose_result(books: List[Book]) -> Optional[Book]:
    """Page through search results until the reader picks one or skips."""
    if not books:
        click.echo("No books matched your search.")
        return None

    offset = 0
    while offset < len(books):
        for idx, book in enumerate(books[offset : offset + PAGE_SIZE], start=offset + 1):
            click.echo(describe_book(book, idx))
        click.echo()
        response = ask("Number to rate it, 'd <number>' for details, 'n' for more, 's' to skip, 'quit' to stop: ")
        normalized = response.lower()

        if normalized.startswith("d"):
            remainder = response[1:].strip()
            if not remainder.isdigit():
                click.echo("Use the format 'd <number>' to see a book's details.")
            elif 1 <= int(remainder) <= len(books):
                click.echo()
                print_book_details(books[int(remainder) - 1])
                click.echo()
            else:
                click.echo("That selection is out of range. Please try again.")
            continue

        if normalized in {"s", "skip"}:
            return None
        if normalized in {"n", "next"}:
            offset += PAGE_SIZE
            continue
        if response.isdigit() and 1 <= int(response) <= len(books):
            return books[int(response) - 1]
        click.echo("Please enter a result number or one of the listed options.")

    click.echo("No more results to show.")
    return None


def ask_rating() -> Optional[int]:
    while True:
        value = ask("Your rating (1-5, blank to cancel): ")
        if not value:
            return None
        if value.isdigit() and 1 <= int(value) <= 5:
            return int(value)
        click.echo("Please enter a whole number from 1 to 5.")


def _rate_one(state: LibraryState) -> bool:
    """One search-and-rate round. Returns False once the reader is done."""
    query = ask("\nSearch (title, author, keywords): ")
    if not query:
        click.echo("No query provided. Please try again.")
        return True

    chosen = choose_result(search_books(query))
    if chosen is None:
        return True

    previous = state.get_entry(chosen.id)
    if previous is not None:
        click.echo(f"'{chosen.title}' is already rated {previous.user_rating}/5; a new rating replaces it.")

    rating = ask_rating()
    if rating is None:
        click.echo("Skipped rating this book.")
        return True

    state.add_to_library(chosen, rating)
    click.echo(f"Rated '{chosen.title}' {rating}/5.")
    return ask("Search for another book? (y/n): ").lower() in {"y", "yes"}


def interactive_session(state: LibraryState) -> None:
    """Search the catalog and rate books into the library."""
    click.echo("\nSearch the catalog to rate books you have read.")
    click.echo("Type 'quit' at any prompt to exit.")

    try:
        while _rate_one(state):
            pass
    except QuitSession:
        click.echo("Goodbye.")

    stats = state.stats()
    click.echo(f"\nSession complete. {stats['total_books']} books, average rating {stats['average_rating']}.")


def library_rows(state: LibraryState) -> List[Dict[str, Any]]:
    cabinet_names = {}
    for cabinet in state.cabinets:
        for book_id in cabinet.book_ids:
            cabinet_names[book_id] = cabinet.name
    return [_entry_row(entry, cabinet_names.get(entry.id, "")) for entry in state.library]


def _entry_row(entry: LibraryEntry, cabinet: str) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "title": entry.title,
        "authors": ", ".join(entry.authors),
        "publisher": entry.publisher or "",
        "published_date": entry.published_date or "",
        "isbn": entry.isbn or "",
        "page_count": entry.page_count,
        "user_rating": entry.user_rating,
        "read_date": entry.read_date,
        "status": entry.status.value,
        "cabinet": cabinet,
        "reading_sheet": entry.reading_sheet.type.value if entry.reading_sheet else "",
    }


def export_library(state: LibraryState, path: Path) -> Path:
    """Write the library to a CSV spreadsheet."""
    frame = pandas.DataFrame(library_rows(state), columns=EXPORT_COLUMNS)
    frame.to_csv(path, index=False)
    return path


def open_library(user: Optional[str]) -> LibraryState:
    """Load the device library, reconciled with ``user``'s remote one when given."""
    remote_store = open_remote_store() if user else None
    state = LibraryState(LocalSnapshotStore(), remote_store)
    state.load(Identity(uid=user) if user else None)
    return state


def close_library(state: LibraryState) -> None:
    state.close()
    state.local_store.close()
    if state.remote_store is not None:
        state.remote_store.close()


@click.group(invoke_without_command=True)
@click.option("--user", default=None, help="Sync with the remote library of this user id")
@click.pass_context
def cli(ctx: click.Context, user: Optional[str]):
    """Rate and organize the books you read."""
    config.configure_logging()
    state = open_library(user)
    ctx.obj = state
    ctx.call_on_close(lambda: close_library(state))
    if ctx.invoked_subcommand is None:
        interactive_session(state)


@cli.command()
@click.pass_obj
def search(state: LibraryState):
    """Search the catalog and rate books (default)"""
    interactive_session(state)


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def export(state: LibraryState, path: Path):
    """Export the library as a CSV spreadsheet"""
    target = export_library(state, path)
    click.echo(f"Exported {len(state.library)} books to {target}")


if __name__ == "__main__":
    cli()
