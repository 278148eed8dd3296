import httpx
import pytest
import pytest_asyncio

from auth.models import ClientCredentials


@pytest.fixture
def credentials() -> ClientCredentials:
    return ClientCredentials(client_id="cu-client", client_secret="cu-secret")


@pytest_asyncio.fixture
async def gateway_client_factory():
    clients: list[httpx.AsyncClient] = []

    def factory(app) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="https://proxy.example.com",
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
