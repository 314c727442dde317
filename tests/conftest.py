import pytest

import main
from helpers import FakeClock, FakeResources
from tosync.config import Settings


@pytest.fixture(autouse=True)
def reset_rate_limits():
    main.rate_limit_store.clear()
    yield
    main.rate_limit_store.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resources():
    return FakeResources()


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path, sync_throttle=0.0)


@pytest.fixture
async def client(aiohttp_client, settings, resources):
    return await aiohttp_client(main.create_app(settings, resources=resources))
