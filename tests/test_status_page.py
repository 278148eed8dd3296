import asyncio

from starlette.testclient import TestClient

import server
from auth.models import TokenSet
from auth.token_store import MemoryTokenStore
from tests.gateway_helpers import build_gateway, make_settings


def test_status_page_not_configured() -> None:
    app, _, _, _ = build_gateway(tokens=None)

    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "OAuth not configured" in response.text
    assert "https://proxy.example.com/oauth/callback" in response.text


def test_status_page_configured() -> None:
    app, _, _, _ = build_gateway(tokens=TokenSet("secret-access-value", "secret-refresh-value"))

    response = TestClient(app).get("/")

    assert "OAuth configured" in response.text
    assert "X-API-Key" in response.text
    assert "secret-access-value" not in response.text


def test_status_page_escapes_public_url() -> None:
    app, _, _, _ = build_gateway(tokens=None, public_url="https://proxy.example.com/<b>")

    response = TestClient(app).get("/")

    assert "<b>" not in response.text
    assert "&lt;b&gt;" in response.text


def test_lifespan_seeds_empty_store() -> None:
    store = MemoryTokenStore()
    app, _, _, _ = build_gateway(store=store, seed_tokens=TokenSet("seed-access", "seed-refresh"))

    with TestClient(app):
        pass

    assert asyncio.run(store.current()) == TokenSet("seed-access", "seed-refresh")


def test_seed_does_not_overwrite_existing_tokens() -> None:
    store = MemoryTokenStore(TokenSet("rotated-access", "rotated-refresh"))
    settings = make_settings(seed_tokens=TokenSet("seed-access", "seed-refresh"))

    seeded = asyncio.run(server.seed_token_store(store, settings))

    assert seeded is False
    assert asyncio.run(store.current()) == TokenSet("rotated-access", "rotated-refresh")
