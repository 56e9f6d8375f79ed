"""
Shared fixtures: an in-memory store and a Meta client wired to a fake upstream.
"""

from typing import Callable, List

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from pacer.connectors.meta.client import FetcherConfig, MetaClient, RetryPolicy
from pacer.database import init_db


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep():
    return SleepRecorder()


@pytest.fixture
def make_client(fake_sleep) -> Callable[..., MetaClient]:
    """Build a MetaClient whose HTTP traffic goes to `handler`."""

    def factory(handler, max_retries: int = 3, max_pages: int = 50) -> MetaClient:
        config = FetcherConfig(
            access_token="test-token",
            api_version="v21.0",
            min_interval=0,
            max_pages=max_pages,
            retry=RetryPolicy(base_delay=1.0, multiplier=2.0, max_retries=max_retries),
        )
        return MetaClient(
            config, transport=httpx.MockTransport(handler), sleep=fake_sleep
        )

    return factory
