import pytest
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport

from src.main import app
from src.modules.foods.repository import InMemoryFoodRepository
from src.pipeline.container import build_services
from tests.helpers import FakeClock, ScriptedInferenceClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryFoodRepository:
    return InMemoryFoodRepository()


@pytest.fixture
def inference_client() -> ScriptedInferenceClient:
    return ScriptedInferenceClient()


@pytest.fixture
def services(clock, repository, inference_client):
    return build_services(
        redis_client=None,
        repository=repository,
        client=inference_client,
        clock=clock
    )


@pytest.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    # Installed before startup so the lifespan keeps our container
    app.state.services = services
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.state.services = None
