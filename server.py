from __future__ import annotations

import functools
import os
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from auth import oauth2
from auth.cors import apply_cors_response
from auth.flow import AuthorizationFlowManager
from auth.refresh import RefreshCoordinator
from auth.token_store import FileTokenStore, TokenStore
from cuproxy import pages
from cuproxy.constants import APP_VERSION, LOGGER
from cuproxy.env import GatewaySettings, load_env, load_settings, setup_logging, validate_env
from cuproxy.http import build_upstream_client
from cuproxy.proxy import ProxyGateway

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def seed_token_store(store: TokenStore, settings: GatewaySettings) -> bool:
    if settings.seed_tokens is None:
        return False
    seeded = await store.compare_and_swap(None, settings.seed_tokens)
    if seeded:
        LOGGER.info("Token store seeded from CLICKUP_ACCESS_TOKEN")
    return seeded


def build_app(
    settings: GatewaySettings,
    *,
    token_store: TokenStore | None = None,
    client: httpx.AsyncClient | None = None,
    debug_enabled: bool = True,
    exchange_code_fn=None,
    refresh_token_fn=None,
) -> Starlette:
    token_store = token_store or FileTokenStore(settings.token_store_path)
    client = client or build_upstream_client(timeout=settings.timeout, debug_enabled=debug_enabled)

    coordinator = RefreshCoordinator(
        token_store,
        lease_ttl_seconds=settings.refresh_lease_seconds,
        refresh_token_fn=refresh_token_fn
        or functools.partial(oauth2.refresh_token, token_url=settings.token_url, client=client),
    )
    flow = AuthorizationFlowManager(
        credentials=settings.credentials,
        token_store=token_store,
        public_url=settings.public_url,
        authorize_url=settings.authorize_url,
        use_pkce=settings.use_pkce,
        exchange_code_fn=exchange_code_fn
        or functools.partial(oauth2.exchange_code, token_url=settings.token_url, client=client),
    )
    gateway = ProxyGateway(
        api_key=settings.api_key,
        credentials=settings.credentials,
        token_store=token_store,
        refresh_coordinator=coordinator,
        client=client,
        mcp_url=settings.mcp_url,
    )

    async def status_route(request: Request) -> Response:
        configured = await token_store.current() is not None and bool(
            settings.credentials.client_id
        )
        proxy_url = settings.public_url or str(request.base_url).rstrip("/")
        return apply_cors_response(
            HTMLResponse(pages.render_status_page(configured=configured, proxy_url=proxy_url))
        )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        await seed_token_store(token_store, settings)
        LOGGER.info("ClickUp MCP proxy %s forwarding to %s", APP_VERSION, settings.mcp_url)
        try:
            yield
        finally:
            await client.aclose()

    routes = [
        Route("/", status_route, methods=["GET"]),
        *flow.routes(),
        Route("/{path:path}", gateway.handle, methods=PROXY_METHODS),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.token_store = token_store
    app.state.flow = flow
    app.state.gateway = gateway
    app.state.refresh_coordinator = coordinator
    return app


def create_app() -> Starlette:
    load_env()
    debug_enabled = setup_logging()
    validate_env()
    return build_app(load_settings(), debug_enabled=debug_enabled)


def main() -> None:
    host = os.getenv("MCP_HOST", "127.0.0.1")
    port = int(os.getenv("MCP_PORT", "8000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
