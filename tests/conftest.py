"""pytest fixtures for the generation backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine / session: Function-scoped SQLite database (aiosqlite) with all tables created
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings (APP_ENV=test)
- Fakes for the external seams: synthesizer, object storage, message sender
- deps / dispatcher: Pipelines wired to the fakes
"""

import asyncio
import io
import os
from typing import AsyncGenerator

# Settings are read from the environment; set it before any application import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import brandforge.models  # noqa: F401  (registers every table on SQLModel.metadata)
from brandforge.core.config import Settings
from brandforge.pipelines.base import PipelineDeps
from brandforge.pipelines.dispatcher import PipelineDispatcher
from brandforge.services.exceptions import StorageValidationError
from brandforge.services.ledger import BalanceLedger
from brandforge.services.progress import ResourceRegistry
from brandforge.services.retry import RetryPolicy
from brandforge.uow import create_uow_factory


def png_bytes(width: int = 64, height: int = 64, color=None) -> bytes:
    """Encode a test PNG.

    Without ``color`` the pixels are random noise, which keeps the encoded file
    comfortably above the minimum asset size.
    """
    if color is None:
        image = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        image = Image.new("RGBA", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


async def no_sleep(_seconds: float) -> None:
    """Backoff sleep that returns immediately (still yields to the loop)."""
    await asyncio.sleep(0)


class FakeSynthesizer:
    """Scripted Synthesizer.

    Each call returns one PNG unless a failure rule matches the prompt. Rules
    map a prompt substring to an exception raised on every matching call.
    """

    name = "fake"

    def __init__(self, image: bytes | None = None, delay: float = 0.0):
        self.image = image or png_bytes()
        self.delay = delay
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, dict]] = []

    def fail_when(self, marker: str, error: Exception) -> None:
        self.failures[marker] = error

    async def synthesize(self, prompt: str, params: dict | None = None) -> list[bytes]:
        self.calls.append((prompt, dict(params or {})))
        if self.delay:
            await asyncio.sleep(self.delay)
        for marker, error in self.failures.items():
            if marker in prompt:
                raise error
        return [self.image]


class FakeStorage:
    """In-memory ObjectStorage. Uploads return ``memory://<key>`` URLs."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_keys: list[str] = []

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        if any(marker in key for marker in self.fail_keys):
            raise StorageValidationError(f"upload rejected for {key}")
        url = f"memory://{key}"
        self.objects[url] = data
        return url

    async def download(self, url: str) -> bytes:
        try:
            return self.objects[url]
        except KeyError:
            raise StorageValidationError(f"not found: {url}") from None


class FakeSender:
    """Records every message instead of calling the front end."""

    def __init__(self):
        self.sent: list[tuple[int, object]] = []

    async def send_message(self, chat_id: int, content, options=None) -> None:
        self.sent.append((chat_id, content))

    def kinds(self, chat_id: int | None = None) -> list[str]:
        return [m.kind for c, m in self.sent if chat_id is None or c == chat_id]

    def texts(self, kind: str | None = None) -> list[str]:
        return [m.text for _, m in self.sent if kind is None or m.kind == kind]


class SpyRegistry(ResourceRegistry):
    """ResourceRegistry that counts stop calls."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.stop_calls: list[tuple[int, str | None]] = []

    def stop(self, user_id: int, job_key: str | None = None) -> int:
        self.stop_calls.append((user_id, job_key))
        return super().stop(user_id, job_key)


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    This prevents timezone-dependent behavior and ensures reproducible tests.
    """
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Provide a fresh SQLite database file with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(engine):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances on the test database.
    """
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


@pytest.fixture
def ledger(uow_factory) -> BalanceLedger:
    return BalanceLedger(uow_factory, referral_reward=20)


@pytest_asyncio.fixture
async def make_user(uow_factory):
    """Create a user with a given balance and free-grant state."""

    async def _make_user(
        user_id: int, balance: int = 0, free_used: bool = False, referred_by: int | None = None
    ):
        async with await uow_factory() as uow:
            await uow.users.get_or_create(user_id, referred_by=referred_by)
            if balance:
                await uow.users.credit(user_id, balance)
            if free_used:
                await uow.users.consume_free_generation(user_id)
        async with await uow_factory() as uow:
            return await uow.users.get(user_id)

    return _make_user


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def registry() -> SpyRegistry:
    return SpyRegistry(max_timers_per_user=10)


@pytest.fixture
def deps(uow_factory, ledger, synthesizer, storage, sender, settings) -> PipelineDeps:
    fast = RetryPolicy(max_retries=2, base_delay=0.0, max_delay=0.0, multiplier=1.0)
    return PipelineDeps(
        uow_factory=uow_factory,
        ledger=ledger,
        synthesizer=synthesizer,
        storage=storage,
        sender=sender,
        settings=settings,
        provider_policy=fast,
        io_policy=fast,
        sleep=no_sleep,
    )


@pytest.fixture
def dispatcher(deps, registry) -> PipelineDispatcher:
    return PipelineDispatcher(deps, registry)
