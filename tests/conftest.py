import dataclasses

import fakeredis
import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis

from quantum_pass.config import Settings
from quantum_pass.db import init_db, make_engine, make_session_factory
from quantum_pass.main import create_app

@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'quantum_pass.db'}",
        auth_rate_limit_per_min=1000,
        base_url="http://test",
        log_level="WARNING",
    )

@pytest.fixture
def sessions(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()

@pytest_asyncio.fixture(scope="function")
async def redis():
    r = aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    try:
        yield r
    finally:
        await r.aclose()

@pytest.fixture
def make_app(settings, redis, sessions):
    def _make(**overrides):
        return create_app(dataclasses.replace(settings, **overrides), redis=redis, session_factory=sessions)
    return _make

@pytest_asyncio.fixture(scope="function")
async def client(make_app):
    transport = httpx.ASGITransport(app=make_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
        yield c
