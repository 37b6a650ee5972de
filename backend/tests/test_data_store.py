"""
Data Services — Data Store Tests
==================================

What we test:
    ✅ Paging: 30 rows per page, ordered by id, empty past the end
    ✅ Page parsing: strings accepted, zero/negative/non-numeric rejected
    ✅ insert_row swallows database errors and returns []
    ✅ seed_all inserts every record, reseeding stores duplicates
    ✅ seed fetch failures propagate
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from data_services.exceptions import ValidationError
from data_services.utils.data_store import PAGE_SIZE, DataStore

from conftest import make_records


async def _insert(store, records):
    for record in records:
        assert await store.insert_row(record) == [record]


class TestFetchPage:
    """Tests for paginated reads."""

    @pytest.mark.asyncio
    async def test_second_page_of_45_rows(self, data_store):
        await _insert(data_store, make_records(45))

        rows = await data_store.fetch_page(2)

        assert [row["id"] for row in rows] == list(range(31, 46))

    @pytest.mark.asyncio
    async def test_pages_are_ordered_and_bounded(self, data_store):
        # Insert out of order to prove ordering comes from the query
        records = make_records(70)
        await _insert(data_store, list(reversed(records)))

        pages = [await data_store.fetch_page(p) for p in (1, 2, 3)]

        assert [len(page) for page in pages] == [PAGE_SIZE, PAGE_SIZE, 10]
        for earlier, later in zip(pages, pages[1:]):
            assert max(r["id"] for r in earlier) <= min(r["id"] for r in later)
        for page in pages:
            ids = [r["id"] for r in page]
            assert ids == sorted(ids)

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, data_store):
        await _insert(data_store, make_records(5))
        assert await data_store.fetch_page(2) == []

    @pytest.mark.asyncio
    async def test_string_page_and_default(self, data_store):
        await _insert(data_store, make_records(35))

        assert len(await data_store.fetch_page("2")) == 5
        assert len(await data_store.fetch_page(None)) == 30

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page", [0, -1, "abc", "1.5"])
    async def test_invalid_page_rejected(self, data_store, page):
        with pytest.raises(ValidationError) as exc_info:
            await data_store.fetch_page(page)
        assert exc_info.value.errors[0]["name"] == "page"

    @pytest.mark.asyncio
    async def test_rows_have_all_columns(self, data_store):
        record = make_records(1)[0]
        await data_store.insert_row(record)

        rows = await data_store.fetch_page(1)

        assert rows == [record]


class TestInsertRow:
    """Tests for the swallow-on-failure insert."""

    @pytest.mark.asyncio
    async def test_database_error_returns_empty_list(self):
        session = MagicMock()
        session.execute = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("database is locked"))
        )
        session.commit = AsyncMock()
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=session)
        context.__aexit__ = AsyncMock(return_value=False)
        store = DataStore(session_factory=MagicMock(return_value=context), seed_url="http://x")

        result = await store.insert_row(make_records(1)[0])

        assert result == []
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_keys_become_null(self, data_store):
        result = await data_store.insert_row({"id": 7})

        assert result == [{"id": 7, "postId": None, "name": None, "email": None, "body": None}]


class TestSeedAll:
    """Tests for seeding from the remote collection."""

    @pytest.mark.asyncio
    async def test_seed_inserts_every_record(self, data_store, seed_transport):
        summary = await data_store.seed_all()

        assert summary == {"fetched": 45, "inserted": 45, "failed": 0}
        assert len(seed_transport.requests) == 1
        assert str(seed_transport.requests[0].url) == "https://seed.test/comments"
        assert [r["id"] for r in await data_store.fetch_page(2)] == list(range(31, 46))

    @pytest.mark.asyncio
    async def test_reseed_stores_duplicates(self, data_store):
        await data_store.seed_all()
        summary = await data_store.seed_all()

        assert summary["inserted"] == 45
        first_page = await data_store.fetch_page(1)
        # Every id now appears twice, in id order
        assert [r["id"] for r in first_page[:4]] == [1, 1, 2, 2]

    @pytest.mark.asyncio
    async def test_failed_inserts_are_counted(self, data_store):
        data_store.insert_row = AsyncMock(side_effect=[[{"id": 1}], [], RuntimeError("x")] + [[{}]] * 42)

        summary = await data_store.seed_all()

        assert summary == {"fetched": 45, "inserted": 43, "failed": 2}

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, data_store, seed_transport):
        import httpx

        seed_transport.status_code = 503

        with pytest.raises(httpx.HTTPStatusError):
            await data_store.seed_all()
        assert await data_store.fetch_page(1) == []

    @pytest.mark.asyncio
    async def test_non_list_payload_rejected(self, db_engine):
        import httpx
        from sqlalchemy.ext.asyncio import async_sessionmaker

        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"id": 1}))
        store = DataStore(
            session_factory=async_sessionmaker(db_engine, expire_on_commit=False),
            seed_url="https://seed.test/comments",
            transport=transport,
        )

        with pytest.raises(ValueError):
            await store.seed_all()
