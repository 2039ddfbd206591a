"""
Integration tests for the entity store against a temporary SQLite database.

Covers insert-or-ignore writes, name -> key resolution for filings (all-or-nothing
batches), typed and auto-detected selects, searches and filter deletes.
"""

import asyncio
import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import AsyncAdaptedQueuePool

from syllabank.errors import (
    AmbiguousReference,
    InternalShapeMismatch,
    InvalidShape,
    StorageError,
    UnclassifiableEntity,
    UnresolvedReference,
)
from syllabank.models import make_engine
from syllabank.sets import equivalent
from syllabank.store import SyllabusStore

from catalog_samples import COURSES, FILES, FILINGS, PROFESSORS, TempDatabase, as_view


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = TempDatabase()
        self.store = await self.db.open()

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def load_samples(self) -> dict:
        await self.store.insert(COURSES)
        await self.store.insert(PROFESSORS)
        await self.store.insert(FILES)
        await self.store.insert(FILINGS)
        return await self.file_ids()

    async def file_ids(self) -> dict:
        return {row["filename"]: row["file_id"] for row in await self.store.select_files()}


class TestInsertAndSelect(StoreTestCase):
    async def test_empty_filter_returns_every_row(self) -> None:
        file_ids = await self.load_samples()

        expected_views = [as_view(f, file_ids) for f in FILINGS]
        self.assertTrue(equivalent(await self.store.select({}), expected_views))
        self.assertTrue(equivalent(await self.store.select_syllabi({}), expected_views))
        self.assertTrue(equivalent(await self.store.select_professors({}), PROFESSORS))

        expected_courses = [{"description": None, **c} for c in COURSES]
        self.assertTrue(equivalent(await self.store.select_courses({}), expected_courses))
        self.assertEqual(sorted(file_ids), sorted(f["filename"] for f in FILES))

    async def test_selects_single_attribute(self) -> None:
        file_ids = await self.load_samples()
        rows = await self.store.select({"course": "COT3100"})
        self.assertTrue(equivalent(rows, [as_view(FILINGS[0], file_ids), as_view(FILINGS[2], file_ids)]))

    async def test_selects_multiple_attributes(self) -> None:
        file_ids = await self.load_samples()
        rows = await self.store.select({"course": "COP9999", "last_name": "Man"})
        self.assertTrue(equivalent(rows, [as_view(FILINGS[1], file_ids), as_view(FILINGS[5], file_ids)]))

    async def test_selects_professors_and_courses(self) -> None:
        await self.load_samples()
        self.assertTrue(equivalent(await self.store.select_professors({"last_name": "Man"}), [PROFESSORS[0], PROFESSORS[2]]))
        self.assertTrue(equivalent(await self.store.select({"n_number": "N01234567"}), [PROFESSORS[1]]))
        self.assertTrue(equivalent(await self.store.select({"name": "CS2"}), [COURSES[1]]))

    async def test_null_filter_matches_null_column(self) -> None:
        await self.load_samples()
        rows = await self.store.select_courses({"description": None})
        self.assertEqual(rows, [{"course": "COP9999", "name": "Finding Jesus with Fortran", "description": None}])

    async def test_round_trip_through_surrogate_keys(self) -> None:
        await self.store.insert({"course": "COT3100", "name": "Comp Structures", "description": "common sense stuff"})
        await self.store.insert({"first_name": "Egg", "last_name": "Man", "n_number": "N00000001"})
        await self.store.insert({"filename": "yeet.pdf"})
        await self.store.insert(FILINGS[0])

        files = await self.store.select_files({"filename": "yeet.pdf"})
        self.assertEqual(len(files), 1)
        rows = await self.store.select_syllabi({"course": "COT3100"})
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row["file_id"], files[0]["file_id"])
        for key in ("first_name", "last_name", "time_begin", "time_end", "days", "term", "year"):
            self.assertEqual(row[key], FILINGS[0][key])

    async def test_mixed_batch_is_inserted_in_dependency_order(self) -> None:
        await self.store.insert([FILINGS[0], COURSES[0], {"filename": "yeet.pdf"}, PROFESSORS[0]])
        self.assertEqual(len(await self.store.select_syllabi({})), 1)

    async def test_duplicate_natural_key_is_ignored(self) -> None:
        await self.store.insert(COURSES[0])
        await self.store.insert({"course": "COT3100", "name": "Renamed"})
        await self.store.insert([PROFESSORS[0], PROFESSORS[0]])
        await self.store.insert([{"filename": "yeet.pdf"}, {"filename": "yeet.pdf"}])
        self.assertEqual(await self.store.select_courses({}), [COURSES[0]])
        self.assertEqual(len(await self.store.select_professors({})), 1)
        self.assertEqual(len(await self.store.select_files({})), 1)

    async def test_all_syllabi_newest_first(self) -> None:
        await self.load_samples()
        rows = await self.store.all_syllabi()
        self.assertEqual(len(rows), len(FILINGS))
        self.assertEqual([r["year"] for r in rows], sorted((r["year"] for r in rows), reverse=True))


class TestRejectedInput(StoreTestCase):
    async def test_unclassifiable_element_fails_whole_batch(self) -> None:
        with self.assertRaises(UnclassifiableEntity) as ctx:
            await self.store.insert([COURSES[0], {"course": "COT3100"}])
        self.assertEqual(ctx.exception.index, 1)
        self.assertEqual(await self.store.select_courses({}), [])

    async def test_insert_rejects_non_objects(self) -> None:
        with self.assertRaises(InvalidShape):
            await self.store.insert("COT3100")

    async def test_bad_filters_are_rejected(self) -> None:
        with self.assertRaises(InvalidShape):
            await self.store.select_courses({"bogus": 1})
        with self.assertRaises(InvalidShape):
            await self.store.select_syllabi({"year": "2018"})
        with self.assertRaises(InvalidShape):
            await self.store.select({"filename": "yeet.pdf"})

    async def test_storage_rejects_unknown_days(self) -> None:
        await self.store.insert([COURSES[0], PROFESSORS[0], {"filename": "yeet.pdf"}])
        with self.assertRaises(StorageError) as ctx:
            await self.store.insert({**FILINGS[0], "days": "Sunday"})
        self.assertTrue(str(ctx.exception).startswith("Bad query"))
        self.assertEqual(await self.store.select_syllabi({}), [])

    async def test_storage_rejects_unknown_course(self) -> None:
        await self.store.insert([PROFESSORS[0], {"filename": "yeet.pdf"}])
        with self.assertRaises(StorageError):
            await self.store.insert(FILINGS[0])

    async def test_malformed_stored_row_is_reported(self) -> None:
        bad_rows = [{"course": "COT3100", "name": None, "description": None}]
        with mock.patch.object(self.store, "fetch", mock.AsyncMock(return_value=bad_rows)):
            with self.assertRaises(InternalShapeMismatch):
                await self.store.select_courses({})


class TestResolution(StoreTestCase):
    async def test_resolve_professor_by_name_parts(self) -> None:
        await self.load_samples()
        resolver = self.store.resolver
        self.assertEqual(sorted(await resolver.resolve_professor(last="Man")), ["N00000001", "N99999999"])
        self.assertEqual(await resolver.resolve_professor(first="Egg", last="Man"), ["N00000001"])
        self.assertEqual(await resolver.resolve_professor(first="NoSuch"), [])
        with self.assertRaises(InvalidShape):
            await resolver.resolve_professor()

    async def test_resolve_file(self) -> None:
        file_ids = await self.load_samples()
        self.assertEqual(await self.store.resolver.resolve_file("foo.pdf"), [file_ids["foo.pdf"]])
        self.assertEqual(await self.store.resolver.resolve_file("nope.pdf"), [])

    async def test_unknown_professor_inserts_nothing(self) -> None:
        await self.load_samples()
        before = await self.store.select_syllabi({})
        good = {**FILINGS[0], "year": 2019}
        bad = {**FILINGS[0], "first_name": "NoSuch", "year": 2020}
        with self.assertRaises(UnresolvedReference) as ctx:
            await self.store.insert([good, bad])
        self.assertIn("NoSuch", str(ctx.exception))
        self.assertTrue(equivalent(await self.store.select_syllabi({}), before))

    async def test_unknown_file_is_unresolved(self) -> None:
        await self.load_samples()
        with self.assertRaisesRegex(UnresolvedReference, "missing.pdf"):
            await self.store.insert_filings({**FILINGS[0], "filename": "missing.pdf"})

    async def test_ambiguous_professor_name_fails(self) -> None:
        await self.load_samples()
        await self.store.insert({"first_name": "Egg", "last_name": "Man", "n_number": "N00000002"})
        with self.assertRaises(AmbiguousReference) as ctx:
            await self.store.insert({**FILINGS[0], "year": 2021})
        self.assertEqual(ctx.exception.matches, 2)
        self.assertEqual(await self.store.select_syllabi({"year": 2021}), [])

    async def test_failed_batch_leaves_no_lookups_running(self) -> None:
        await self.load_samples()
        before = asyncio.all_tasks()
        batch = [{**FILINGS[0], "first_name": f"NoSuch{i}", "year": 2000 + i} for i in range(5)]
        with self.assertRaises(UnresolvedReference):
            await self.store.insert_filings(batch)
        self.assertEqual([t for t in asyncio.all_tasks() - before if not t.done()], [])
        await self.store.end()

    async def test_large_batch_resolves_concurrently(self) -> None:
        await self.load_samples()
        batch = [{**FILINGS[0], "year": 1990 + i} for i in range(25)]
        await self.store.insert_filings(batch)
        rows = await self.store.select_syllabi({"course": "COT3100", "first_name": "Egg"})
        self.assertEqual(len(rows), 26)


class TestCreateFailure(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = TempDatabase()
        self.db.engine = make_engine(self.db.url, poolclass=AsyncAdaptedQueuePool)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_failed_schema_creation_releases_connection(self) -> None:
        failure = OperationalError("CREATE TABLE courses", {}, Exception("disk I/O error"))
        with mock.patch("syllabank.store.create_schema", mock.AsyncMock(side_effect=failure)):
            with self.assertRaisesRegex(StorageError, "disk I/O error"):
                await SyllabusStore.create(self.db.engine)
        self.assertEqual(self.db.engine.sync_engine.pool.checkedout(), 0)


class TestSearchAndDelete(StoreTestCase):
    async def test_search_courses(self) -> None:
        await self.load_samples()
        self.assertEqual([c["course"] for c in await self.store.search_courses("cs2")], ["COP3503"])
        self.assertEqual(sorted(c["course"] for c in await self.store.search_courses("COP")), ["COP3503", "COP9999"])
        self.assertEqual(await self.store.search_courses("100%"), [])
        with self.assertRaises(InvalidShape):
            await self.store.search_courses("  ")

    async def test_search_professors(self) -> None:
        await self.load_samples()
        self.assertEqual([p["n_number"] for p in await self.store.search_professors("egg man")], ["N00000001"])
        self.assertEqual(len(await self.store.search_professors("man")), 2)

    async def test_delete_syllabi_by_joined_field(self) -> None:
        await self.load_samples()
        self.assertEqual(await self.store.delete_syllabi({"last_name": "Ferrari"}), 2)
        self.assertEqual(await self.store.select_syllabi({"last_name": "Ferrari"}), [])
        self.assertEqual(len(await self.store.select_syllabi({})), 4)
        self.assertEqual(await self.store.delete_syllabi({"last_name": "Ferrari"}), 0)

    async def test_delete_referenced_course_fails(self) -> None:
        await self.load_samples()
        with self.assertRaises(StorageError):
            await self.store.delete_courses({"course": "COT3100"})
        await self.store.delete_syllabi({"course": "COT3100"})
        self.assertEqual(await self.store.delete_courses({"course": "COT3100"}), 1)

    async def test_nuke_drops_tables(self) -> None:
        await self.load_samples()
        await self.store.nuke()
        self.db.store = self.store = await SyllabusStore.create(self.db.engine, create_tables=False)
        with self.assertRaisesRegex(StorageError, "no such table"):
            await self.store.select_courses({})


if __name__ == "__main__":
    unittest.main()
