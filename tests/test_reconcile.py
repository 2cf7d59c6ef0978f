from __future__ import annotations

import unittest

from models import Cabinet, LibraryEntry
from reconcile import merge_cabinets, merge_libraries, needs_remote_write, parse_timestamp


def _entry(book_id: str, read_date: str, rating: int = 3) -> LibraryEntry:
    return LibraryEntry(
        id=book_id,
        title=f"Title {book_id}",
        authors=["Author"],
        user_rating=rating,
        read_date=read_date,
    )


class ParseTimestampTests(unittest.TestCase):
    def test_accepts_iso_variants(self) -> None:
        zulu = parse_timestamp("2024-02-01T10:00:00.000Z")
        offset = parse_timestamp("2024-02-01T10:00:00+00:00")
        date_only = parse_timestamp("2024-02-01")

        self.assertIsNotNone(zulu)
        self.assertEqual(zulu, offset)
        self.assertIsNotNone(date_only)
        self.assertLess(date_only, zulu)

    def test_rejects_garbage(self) -> None:
        self.assertIsNone(parse_timestamp(""))
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp("yesterday"))


class MergeLibrariesTests(unittest.TestCase):
    def test_union_keeps_every_distinct_book(self) -> None:
        remote = [_entry("B1", "2024-01-01"), _entry("B2", "2024-01-02")]
        local = [_entry("B2", "2024-01-03"), _entry("B3", "2024-01-04")]

        merged = merge_libraries(remote, local)

        self.assertEqual([entry.id for entry in merged], ["B1", "B2", "B3"])

    def test_later_read_date_wins(self) -> None:
        remote = [_entry("B1", "2024-02-01T00:00:00.000Z", rating=5)]
        local = [_entry("B1", "2024-01-01T00:00:00.000Z", rating=3)]

        self.assertEqual(merge_libraries(remote, local)[0].user_rating, 5)
        self.assertEqual(merge_libraries(local, remote)[0].user_rating, 5)

    def test_unparsable_date_loses_to_valid_one(self) -> None:
        remote = [_entry("B1", "not a date", rating=1)]
        local = [_entry("B1", "2024-01-01", rating=4)]

        self.assertEqual(merge_libraries(remote, local)[0].user_rating, 4)
        self.assertEqual(merge_libraries(local, remote)[0].user_rating, 4)

    def test_ties_and_double_garbage_keep_primary(self) -> None:
        same_remote = [_entry("B1", "2024-01-01T12:00:00Z", rating=2)]
        same_local = [_entry("B1", "2024-01-01T12:00:00.000Z", rating=5)]
        self.assertEqual(merge_libraries(same_remote, same_local)[0].user_rating, 2)

        bad_remote = [_entry("B1", "???", rating=2)]
        bad_local = [_entry("B1", "", rating=5)]
        self.assertEqual(merge_libraries(bad_remote, bad_local)[0].user_rating, 2)

    def test_inputs_are_left_untouched(self) -> None:
        remote = [_entry("B1", "2024-01-01")]
        local = [_entry("B2", "2024-01-01")]

        merge_libraries(remote, local)

        self.assertEqual(len(remote), 1)
        self.assertEqual(len(local), 1)


class MergeCabinetsTests(unittest.TestCase):
    def test_shared_cabinet_unions_book_ids(self) -> None:
        remote = [Cabinet(id="C1", name="Classics", book_ids=["B1"], created_at="2024-01-01")]
        local = [Cabinet(id="C1", name="Classics", book_ids=["B2", "B1"], created_at="2024-01-05")]

        merged = merge_cabinets(remote, local)

        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].book_ids, ["B1", "B2"])
        self.assertEqual(merged[0].created_at, "2024-01-05")

    def test_name_prefers_remote_unless_empty(self) -> None:
        named = merge_cabinets(
            [Cabinet(id="C1", name="Remote")],
            [Cabinet(id="C1", name="Local")],
        )
        unnamed = merge_cabinets(
            [Cabinet(id="C1", name="")],
            [Cabinet(id="C1", name="Local")],
        )

        self.assertEqual(named[0].name, "Remote")
        self.assertEqual(unnamed[0].name, "Local")

    def test_distinct_cabinets_are_all_kept(self) -> None:
        merged = merge_cabinets(
            [Cabinet(id="C1", name="One", book_ids=["B1"])],
            [Cabinet(id="C2", name="Two", book_ids=["B2"])],
        )

        self.assertEqual({cabinet.id for cabinet in merged}, {"C1", "C2"})


class NeedsRemoteWriteTests(unittest.TestCase):
    def test_detects_local_only_additions(self) -> None:
        remote = [_entry("B1", "2024-01-01")]
        merged = merge_libraries(remote, [_entry("B2", "2024-01-01")])

        self.assertTrue(needs_remote_write(remote, [], merged, []))

    def test_identical_content_needs_no_write(self) -> None:
        remote = [_entry("B1", "2024-01-01")]
        cabinets = [Cabinet(id="C1", name="One", book_ids=["B1"])]
        merged_library = merge_libraries(remote, [_entry("B1", "2023-01-01")])
        merged_cabinets = merge_cabinets(cabinets, [])

        self.assertFalse(needs_remote_write(remote, cabinets, merged_library, merged_cabinets))


if __name__ == "__main__":
    unittest.main()
