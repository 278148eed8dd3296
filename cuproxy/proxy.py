from __future__ import annotations

import hmac

import httpx
from starlette.requests import Request
from starlette.responses import Response

from auth.cors import apply_cors_response, cors_error_response, cors_preflight_response
from auth.models import ClientCredentials
from auth.oauth2 import RefreshError
from auth.refresh import RefreshCoordinator
from auth.token_store import TokenStore

from .constants import API_KEY_HEADER, CLICKUP_MCP_URL, FORWARDED_REQUEST_HEADERS, LOGGER


def api_key_matches(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def forwarded_headers(request: Request, access_token: str) -> dict[str, str]:
    headers = {
        name: request.headers[name]
        for name in FORWARDED_REQUEST_HEADERS
        if name in request.headers
    }
    headers.setdefault("content-type", "application/json")
    headers["authorization"] = f"Bearer {access_token}"
    return headers


def passthrough_response(upstream: httpx.Response) -> Response:
    # Content-Type is copied as a raw header so Starlette does not append a charset.
    headers = {"Content-Type": upstream.headers.get("content-type", "application/json")}
    session_id = upstream.headers.get("mcp-session-id")
    if session_id:
        headers["Mcp-Session-Id"] = session_id
    response = Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=headers,
    )
    return apply_cors_response(response)


class ProxyGateway:
    def __init__(
        self,
        *,
        api_key: str,
        credentials: ClientCredentials,
        token_store: TokenStore,
        refresh_coordinator: RefreshCoordinator,
        client: httpx.AsyncClient,
        mcp_url: str = CLICKUP_MCP_URL,
    ) -> None:
        self.api_key = api_key
        self.credentials = credentials
        self.token_store = token_store
        self.refresh_coordinator = refresh_coordinator
        self.client = client
        self.mcp_url = mcp_url

    async def handle(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return cors_preflight_response()

        if not api_key_matches(request.headers.get(API_KEY_HEADER), self.api_key):
            return cors_error_response("Unauthorized: Invalid or missing API key", 401)

        record = await self.token_store.snapshot()
        if record is None:
            return cors_error_response(
                "OAuth not configured",
                503,
                message="Visit /oauth/start to configure OAuth tokens",
            )

        body = await request.body()
        try:
            upstream = await self._forward(request, body, record.tokens.access_token)

            if upstream.status_code == 401 and record.tokens.refresh_token:
                LOGGER.info("Upstream rejected access token; refreshing")
                try:
                    tokens = await self.refresh_coordinator.refresh(
                        self.credentials,
                        observed_version=record.version,
                    )
                except RefreshError as error:
                    LOGGER.warning("Token refresh failed; returning upstream 401: %s", error)
                    return passthrough_response(upstream)

                upstream = await self._forward(request, body, tokens.access_token)
        except httpx.HTTPError as error:
            LOGGER.error("Forwarding to %s failed: %s", self.mcp_url, error)
            return cors_error_response("Internal server error", 500, message=str(error))

        return passthrough_response(upstream)

    async def _forward(self, request: Request, body: bytes, access_token: str) -> httpx.Response:
        return await self.client.request(
            request.method,
            self.mcp_url,
            headers=forwarded_headers(request, access_token),
            content=body or None,
        )
