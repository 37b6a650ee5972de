"""
Data Services — Test Configuration (conftest.py)
==================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── seed_records:    45 fake comment records (ids 1..45)
    ├── seed_transport:  httpx.MockTransport serving seed_records
    ├── db_engine:       temporary SQLite database with sampleData created
    ├── data_store:      DataStore bound to db_engine and seed_transport
    ├── write_component: writes component modules into a temp directory
    ├── api_server:      ApiServer with the stock InsertData service
    └── test_client:     HTTPX AsyncClient talking to api_server.app
"""

import os
import tempfile
import textwrap

# Override settings for testing BEFORE any data_services imports
os.environ["DATABASE_URL"] = (
    "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="data_services_test_"), "test.db")
)
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SEED_ON_STARTUP"] = "false"
os.environ["SEED_URL"] = "https://seed.test/comments"

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from data_services.database import init_models
from data_services.server import ApiServer, ServerOptions
from data_services.utils.data_store import DataStore

SEED_URL = "https://seed.test/comments"


def make_records(count: int, start: int = 1):
    """Records shaped like the remote comments collection."""
    return [
        {
            "id": i,
            "postId": (i - 1) // 5 + 1,
            "name": f"comment {i}",
            "email": f"user{i}@example.com",
            "body": f"body of comment {i}",
        }
        for i in range(start, start + count)
    ]


# ══════════════════════════════════════════════════════════════════════════
# Seed Endpoint
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def seed_records():
    return make_records(45)


@pytest.fixture
def seed_transport(seed_records):
    """
    Mock transport for the seed endpoint.

    `transport.requests` collects every request made through it; set
    `transport.status_code` to make the endpoint fail.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        transport.requests.append(request)
        if transport.status_code != 200:
            return httpx.Response(transport.status_code, json={"error": "unavailable"})
        return httpx.Response(200, json=seed_records)

    transport = httpx.MockTransport(handler)
    transport.requests = []
    transport.status_code = 200
    return transport


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh SQLite file with the sampleData table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jsondb.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def data_store(db_engine, seed_transport):
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    return DataStore(
        session_factory=session_factory,
        seed_url=SEED_URL,
        transport=seed_transport,
    )


# ══════════════════════════════════════════════════════════════════════════
# Components & Server
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def component_dir(tmp_path):
    path = tmp_path / "components"
    path.mkdir()
    return path


@pytest.fixture
def write_component(component_dir):
    """
    Write a component module into component_dir.

    Usage:
        path = write_component("echo_service.py", '''
            class Echo: ...
        ''')
    """
    def _write(filename: str, source: str) -> str:
        target = component_dir / filename
        target.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
        return str(target)

    return _write


@pytest.fixture
def api_server(data_store):
    """ApiServer with the stock InsertData service and the test DataStore."""
    return ApiServer(
        ServerOptions(
            provided={"DataStore": data_store},
            cors=True,
            host="127.0.0.1",
            port=0,
        )
    )


@pytest_asyncio.fixture
async def test_client(api_server):
    """
    HTTPX AsyncClient routed straight into the ASGI app (no socket, no lifespan).

    Usage:
        async def test_page(test_client):
            response = await test_client.get("/data")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=api_server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
