import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from main import app
import models  # noqa: F401
from services.storage.blobs import FilesystemBlobStore
from services.storage.factory import build_local_storage, build_sql_storage, get_storage


@pytest_asyncio.fixture(params=["sql", "local"])
async def storage(request, tmp_path):
    """Storage handle for each driver; the sql driver runs against a temporary SQLite file."""
    if request.param == "sql":
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield build_sql_storage(settings, session_maker, blobs=FilesystemBlobStore(tmp_path / "blobs"))
        await engine.dispose()
    else:
        yield build_local_storage(settings, tmp_path / "data")


@pytest_asyncio.fixture
async def api_client(storage):
    app.dependency_overrides[get_storage] = lambda: storage
    app.state.storage = storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as client:
        yield client
    app.dependency_overrides.pop(get_storage, None)
    app.state.storage = None
