from __future__ import annotations

import secrets
import time

from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import oauth2
from auth.cors import apply_cors_response
from auth.models import AuthorizationState, ClientCredentials, TokenSet
from auth.oauth2 import TokenExchangeError
from auth.token_store import TokenStore
from cuproxy import pages
from cuproxy.constants import CLICKUP_AUTH_URL, LOGGER

CALLBACK_PATH = "/oauth/callback"


class InvalidAuthorizationState(RuntimeError):
    def __init__(self, message: str = "Unknown or expired state.") -> None:
        super().__init__(message)
        self.status_code = 400


class AuthorizationFlowManager:
    def __init__(
        self,
        *,
        credentials: ClientCredentials,
        token_store: TokenStore,
        public_url: str | None = None,
        authorize_url: str = CLICKUP_AUTH_URL,
        use_pkce: bool = False,
        pending_ttl_seconds: int = 600,
        exchange_code_fn=oauth2.exchange_code,
    ) -> None:
        self.credentials = credentials
        self.token_store = token_store
        self.public_url = public_url.rstrip("/") if public_url else None
        self.authorize_url = authorize_url
        self.use_pkce = use_pkce
        self.pending_ttl_seconds = pending_ttl_seconds

        self.pending: dict[str, AuthorizationState] = {}
        self._exchange_code_fn = exchange_code_fn

    # -- flow ------------------------------------------------------------------

    def redirect_uri_for(self, request: Request) -> str:
        base = self.public_url or str(request.base_url).rstrip("/")
        return f"{base}{CALLBACK_PATH}"

    def start(self, redirect_uri: str) -> tuple[AuthorizationState, str]:
        self._cleanup_pending()

        verifier = challenge = None
        if self.use_pkce:
            verifier = oauth2.generate_code_verifier()
            challenge = oauth2.generate_code_challenge(verifier)

        state = AuthorizationState(
            state=secrets.token_urlsafe(24),
            redirect_uri=redirect_uri,
            pkce_verifier=verifier,
            pkce_challenge=challenge,
        )
        self.pending[state.state] = state

        url = oauth2.build_authorization_url(
            client_id=self.credentials.client_id,
            redirect_uri=redirect_uri,
            code_challenge=challenge,
            state=state.state,
            authorize_url=self.authorize_url,
        )
        return state, url

    async def complete(self, code: str, state: str | None) -> TokenSet:
        """Exchange ``code`` and store the resulting token set.

        Providers that do not echo ``state`` are accepted only when PKCE is
        off, since the verifier is looked up by state.
        """
        self._cleanup_pending()

        pending = self.pending.pop(state, None) if state else None
        if pending is None and (state or self.use_pkce):
            raise InvalidAuthorizationState()

        verifier = pending.pkce_verifier if pending else None
        tokens = await self._exchange_code_fn(code, self.credentials, verifier)
        await self.token_store.replace(tokens)
        LOGGER.info("Authorization code exchanged; token set stored")
        return tokens

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        return [
            Route("/oauth/start", self._handle_start, methods=["GET"]),
            Route(CALLBACK_PATH, self._handle_callback, methods=["GET"]),
        ]

    async def _handle_start(self, request: Request) -> Response:
        if not self.credentials.client_id:
            return self._text("CLICKUP_CLIENT_ID is not configured.", 400)

        _, url = self.start(self.redirect_uri_for(request))
        return apply_cors_response(RedirectResponse(url=url, status_code=302))

    async def _handle_callback(self, request: Request) -> Response:
        error = request.query_params.get("error")
        if error:
            self.pending.pop(request.query_params.get("state", ""), None)
            return self._text(f"OAuth error: {error}", 400)

        code = request.query_params.get("code")
        if not code:
            return self._text("Authorization code missing", 400)

        try:
            tokens = await self.complete(code, request.query_params.get("state"))
        except InvalidAuthorizationState as error:
            return self._text(str(error), error.status_code)
        except TokenExchangeError as error:
            LOGGER.warning("Token exchange failed: status=%s", error.status_code)
            return self._text(f"Token exchange failed: {error.body or error}", 500)

        return apply_cors_response(HTMLResponse(pages.render_tokens_page(tokens)))

    # -- helpers ---------------------------------------------------------------

    def _cleanup_pending(self) -> None:
        cutoff = time.time() - self.pending_ttl_seconds
        expired_states = [
            state for state, pending in self.pending.items() if pending.created_at < cutoff
        ]
        for state in expired_states:
            del self.pending[state]

    def _text(self, message: str, status_code: int) -> Response:
        return apply_cors_response(PlainTextResponse(message, status_code=status_code))
