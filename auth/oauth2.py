from __future__ import annotations

import base64
import hashlib
import secrets
import urllib.parse

import httpx

from auth.models import ClientCredentials, TokenSet
from cuproxy.constants import CLICKUP_AUTH_URL, CLICKUP_TOKEN_URL


class TokenRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchangeError(TokenRequestError):
    pass


class RefreshError(TokenRequestError):
    pass


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def generate_code_verifier() -> str:
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("utf-8")).digest())


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    code_challenge: str | None = None,
    state: str | None = None,
    *,
    authorize_url: str = CLICKUP_AUTH_URL,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
    }
    if code_challenge:
        query["code_challenge"] = code_challenge
        query["code_challenge_method"] = "S256"
    if state:
        query["state"] = state
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    error_cls: type[TokenRequestError],
    token_url: str,
    client: httpx.AsyncClient | None = None,
) -> TokenSet:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(token_url, json=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise error_cls(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
            body=detail,
        ) from error
    except httpx.HTTPError as error:
        raise error_cls(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        return TokenSet.from_payload(response.json())
    except ValueError as error:
        raise error_cls(
            f"Invalid token response: {error}",
            status_code=response.status_code,
            body=response.text,
        ) from error


async def exchange_code(
    code: str,
    credentials: ClientCredentials,
    code_verifier: str | None = None,
    *,
    token_url: str = CLICKUP_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenSet:
    payload = {
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "code": code,
    }
    if code_verifier:
        payload["code_verifier"] = code_verifier
    return await _token_request(
        payload,
        error_cls=TokenExchangeError,
        token_url=token_url,
        client=client,
    )


async def refresh_token(
    refresh_token: str,
    credentials: ClientCredentials,
    *,
    token_url: str = CLICKUP_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenSet:
    return await _token_request(
        {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        error_cls=RefreshError,
        token_url=token_url,
        client=client,
    )
