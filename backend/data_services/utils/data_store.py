"""
Data Services — Data Access Utility
=====================================

What:  Paginated reads, single-row inserts and remote seeding for sampleData.
How:   SQLAlchemy Core statements over the async session factory; httpx for
       the outbound fetch.
Who:   Provided to the server as the `DataStore` injectable and used by the
       InsertData service. The entry point also runs seed_all() once the
       listening socket is up.

Failure Policy:
    fetch_page()  → driver errors propagate (logged first)
    insert_row()  → any database error is logged and swallowed; returns []
    seed_all()    → transport/HTTP/payload errors propagate; per-row insert
                    failures are only counted
    Nothing is retried.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx
from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from data_services.config import settings
from data_services.exceptions import ValidationError
from data_services.models.sample_data import COLUMNS, sample_data
from data_services.schemas.sample_data import SampleRecord, SeedSummary

logger = logging.getLogger(__name__)

# Fixed page size for GET /data
PAGE_SIZE = 30


class DataStore:
    """
    Access layer for the sampleData table.

    Args:
        session_factory: Override the default session factory (used in tests).
        seed_url: Override settings.seed_url.
        transport: Optional httpx transport for the seed fetch (used in tests).
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        seed_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if session_factory is None:
            from data_services.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory
        self.seed_url = seed_url or settings.seed_url
        self._transport = transport

    @staticmethod
    def _parse_page(page: Union[int, str, None]) -> int:
        if page is None or page == "":
            return 1
        try:
            number = int(page)
        except (TypeError, ValueError):
            raise ValidationError(
                message=f"Invalid page '{page}'. Page must be a positive integer.",
                errors=[{"location": "query", "name": "page", "message": "not an integer"}],
            )
        if number < 1:
            raise ValidationError(
                message=f"Invalid page '{page}'. Page must be a positive integer.",
                errors=[{"location": "query", "name": "page", "message": "must be >= 1"}],
            )
        return number

    async def fetch_page(self, page: Union[int, str, None] = 1) -> List[Dict[str, Any]]:
        """
        Return up to PAGE_SIZE rows of the given 1-based page, ordered by id.

        Query:
            SELECT * FROM sampleData ORDER BY id LIMIT 30 OFFSET (page-1)*30

        Raises:
            ValidationError: page is not an integer >= 1
            SQLAlchemyError: the query failed (propagated unchanged)
        """
        number = self._parse_page(page)
        offset = (number - 1) * PAGE_SIZE
        query = (
            select(sample_data)
            .order_by(sample_data.c.id)
            .limit(PAGE_SIZE)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error("Error running page query (page=%d): %s", number, str(e))
            raise

    async def insert_row(self, row: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """
        Insert one row, swallowing database failures.

        Returns:
            [row] when the insert committed, [] when it failed. Failures are
            logged at WARNING and never raised.
        """
        values = {column: row.get(column) for column in COLUMNS}
        try:
            async with self._session_factory() as session:
                await session.execute(insert(sample_data).values(**values))
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("Insert of sample row id=%s failed: %s", values.get("id"), str(e))
            return []
        return [values]

    async def seed_all(self) -> Dict[str, int]:
        """
        Fetch the seed collection and insert every record concurrently.

        Flow:
            1. GET seed_url (no timeout, no retry)
            2. Parse each record into a SampleRecord
            3. Fire one insert_row() per record and wait for all to settle

        Returns:
            {"fetched": n, "inserted": k, "failed": n - k}

        Raises:
            httpx.HTTPError: the fetch failed at transport or HTTP level
            ValueError: the payload is not a JSON list of records
        """
        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            response = await client.get(self.seed_url)
            response.raise_for_status()
            payload = response.json()

        if not isinstance(payload, list):
            raise ValueError(
                f"Seed endpoint returned {type(payload).__name__}, expected a list of records"
            )

        records = [SampleRecord.model_validate(item) for item in payload]
        results = await asyncio.gather(
            *(self.insert_row(record.to_row()) for record in records),
            return_exceptions=True,
        )
        inserted = sum(1 for result in results if isinstance(result, list) and result)
        summary = SeedSummary(
            fetched=len(records),
            inserted=inserted,
            failed=len(records) - inserted,
        )
        logger.info(
            "Seeded sampleData from %s: %d fetched, %d inserted, %d failed",
            self.seed_url,
            summary.fetched,
            summary.inserted,
            summary.failed,
        )
        return summary.model_dump()


# ── Singleton Instance ────────────────────────────────────────────────────
data_store = DataStore()
