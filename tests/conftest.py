"""
TESTING GUIDE: Using this `conftest.py`
---------------------------------------

Global fixtures for API, storage and service tests. Async tests run with
`pytest-asyncio`; dependencies are isolated with `unittest.mock`.

Key Fixtures:

1. `client` (AsyncClient):
   - HTTP client bound to the FastAPI app (no lifespan, no real DB).
   - Example: `response = await client.get("/health")`

2. `db_pool_mock`, `mock_db_connection`, `mock_db_cursor`:
   - Patch the psycopg pool everywhere it is imported.
   - Use `mock_db_cursor` to define what the DB returns:
     ```python
     mock_db_cursor.fetchone.return_value = ("single_row",)
     ```
   - Inspect writes:
     ```python
     args, _ = mock_db_cursor.execute.call_args
     expect(args[0]).to(contain("INSERT INTO"))
     ```

3. `mock_async_session`:
   - The SQLModel session handed out by `async_session_maker`.
   - `mock_async_session.exec.return_value.first.return_value = ...`

4. `chat_service`:
   - A ChatService wired to mocks (ledger, model, store, title summarizer,
     task registry) and patched into the `/chat` endpoint.
   - Set `chat_service.model.stream_reply = streaming("Hel", "lo")` (the
     `streaming` fixture) to script the provider.

Common Patterns:

- **Patching Imports**:
  Modules import `pool` directly (`from core.database import pool`), so it
  is patched in each importing module. If you hit `psycopg_pool.PoolClosed`,
  add the module to the `patch` list in `db_pool_mock`.
"""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

# Settings are read at import time
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("POSTGRES_DB", "test")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")
os.environ.setdefault("SYSTEM_PROMPT", "You are Javier.")
os.environ["ENV"] = "dev"
os.environ["AUTH_VERIFY_ENABLED"] = "false"
os.environ["LANGFUSE_PUBLIC_KEY"] = ""
os.environ["LANGFUSE_SECRET_KEY"] = ""

from api.main import app as original_app  # noqa: E402
from models.quota import AdmissionResult  # noqa: E402
from services.chat_service import ChatService  # noqa: E402


def _streaming(*fragments, error: Exception = None):
    """Build a fake `stream_reply` yielding `fragments`, then raising `error` if given."""

    async def _stream(*args, **kwargs):
        for fragment in fragments:
            yield fragment
        if error is not None:
            raise error

    return _stream


@pytest_asyncio.fixture
def streaming():
    return _streaming


@pytest_asyncio.fixture
def mock_db_cursor():
    """
    Returns a mock cursor that allows configuring return values for queries.
    """
    cursor = AsyncMock()
    cursor.fetchall.return_value = []
    cursor.fetchone.return_value = None
    return cursor


@pytest_asyncio.fixture
def mock_db_connection(mock_db_cursor):
    """
    Returns a mock connection that yields the mock cursor.
    """
    connection = AsyncMock()
    # psycopg cursor() is sync and returns an async context manager
    connection.cursor = MagicMock(return_value=mock_db_cursor)

    mock_db_cursor.__aenter__.return_value = mock_db_cursor
    mock_db_cursor.__aexit__.return_value = None

    return connection


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_pool_mock(mock_db_connection):
    """
    Patch the `pool` object wherever it is imported to prevent real DB connections.
    """
    mock_pool = MagicMock()

    # Pool yields connection: 'async with pool.connection() as conn'
    mock_pool.connection.return_value.__aenter__.return_value = mock_db_connection
    mock_pool.open = AsyncMock()
    mock_pool.close = AsyncMock()

    with (
        patch("core.database.pool", new=mock_pool),
        patch("core.lifespan.pool", new=mock_pool),
        patch("services.quota.pool", new=mock_pool),
        patch("services.conversation_store.pool", new=mock_pool),
    ):
        yield mock_pool


@pytest_asyncio.fixture(scope="function", autouse=True)
async def mock_async_session():
    """
    Patch `async_session_maker` so `async with async_session_maker() as session` yields a mock.
    """
    mock_session = AsyncMock()
    mock_session.exec = AsyncMock()

    # exec returns a Result object which has .all(), .first()
    mock_result = MagicMock()
    mock_result.all.return_value = []
    mock_result.first.return_value = None
    mock_session.exec.return_value = mock_result

    mock_maker = MagicMock()
    mock_maker.return_value.__aenter__.return_value = mock_session
    mock_maker.return_value.__aexit__.return_value = None

    with (
        patch("core.database.async_session_maker", new=mock_maker),
        patch("services.conversation_store.async_session_maker", new=mock_maker),
    ):
        yield mock_session


@pytest_asyncio.fixture(scope="function")
async def app(db_pool_mock) -> FastAPI:
    """Return the FastAPI app with mocked dependencies."""
    return original_app


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Return an async HTTP client for the app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
def chat_service():
    """ChatService with every collaborator mocked, patched into the /chat endpoint."""
    ledger = MagicMock()
    ledger.check_admission = AsyncMock(return_value=AdmissionResult(allowed=True))
    ledger.record_request = AsyncMock()

    model = MagicMock()
    model.model_name = "test-chat-model"
    model.stream_reply = _streaming("Hello")

    store = MagicMock()
    store.append_turn = AsyncMock(return_value=MagicMock(sequence=1))
    store.set_provisional_title = AsyncMock(return_value=False)

    summarizer = MagicMock()
    tasks = MagicMock()

    service = ChatService(ledger=ledger, model=model, store=store, summarizer=summarizer, tasks=tasks)
    with patch("api.v1.endpoints.chat.chat_service", new=service):
        yield service
