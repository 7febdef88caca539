from __future__ import annotations

import os
import tempfile

os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'likecounter-tests.db')}",
)
os.environ.setdefault("ENVIRONMENT", "test")

import httpx  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import delete  # noqa: E402

import likecounter.main as main_module  # noqa: E402
from likecounter.database import AsyncSessionLocal, close_engine, init_schema  # noqa: E402
from likecounter.main import app  # noqa: E402
from likecounter.models import UrlLike  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def clean_state() -> None:
    await init_schema()
    async with AsyncSessionLocal() as session:
        await session.execute(delete(UrlLike))
        await session.commit()

    main_module.request_metrics.clear()
    yield
    await close_engine()


@pytest_asyncio.fixture
async def client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
