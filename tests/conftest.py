import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatbot.client.resilient import ResilientRequestClient
from chatbot.client.store import HttpConversationStore
from chatbot.core.database import Base
from tests.mocks import fake_openai


async def _no_sleep(delay: float) -> None:
    return None


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def reset_fake_openai():
    fake_openai.controls.reset()
    yield
    fake_openai.controls.reset()


@pytest_asyncio.fixture
async def app_with_db(db_engine, session_factory):
    """FastAPI app wired to the in-memory test database and the fake provider."""
    import chatbot.core.database as db_module

    original_engine = db_module.engine
    original_session = db_module.async_session
    db_module.engine = db_engine
    db_module.async_session = session_factory

    from chatbot.main import app
    from chatbot.services.completion.openai_client import OpenAICompletionProvider

    fake_transport = ASGITransport(app=fake_openai.app)
    fake_http_client = AsyncClient(transport=fake_transport, base_url="http://fake-openai")
    provider = OpenAICompletionProvider(
        base_url="http://fake-openai/v1",
        api_key="test-key",
        http_client=fake_http_client,
    )
    app.state.completion_provider = provider

    yield app

    await fake_http_client.aclose()
    db_module.engine = original_engine
    db_module.async_session = original_session


@pytest_asyncio.fixture
async def api_client(app_with_db):
    """Async HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app_with_db)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def http_store(api_client):
    """Store client over the in-process app, retrying without delays."""
    return HttpConversationStore(
        base_url="http://test",
        http_client=api_client,
        requester=ResilientRequestClient(max_retries=1, sleep=_no_sleep, online_probe=lambda: True),
    )
