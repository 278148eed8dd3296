from __future__ import annotations

import asyncio
import time
import uuid

from auth import oauth2
from auth.models import ClientCredentials, StoredTokens, TokenSet
from auth.oauth2 import RefreshError
from auth.token_store import TokenStore
from cuproxy.constants import LOGGER


class RefreshCoordinator:
    """Refreshes the shared token set, at most once per version.

    Callers inside this process share one task per version. Separate
    processes compete for the store's refresh lease; the losers wait for the
    winner's write instead of calling the token endpoint themselves.
    """

    def __init__(
        self,
        store: TokenStore,
        *,
        lease_ttl_seconds: float = 30,
        poll_interval_seconds: float = 0.2,
        refresh_token_fn=oauth2.refresh_token,
        sleep=asyncio.sleep,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._lease_ttl_seconds = lease_ttl_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._refresh_token_fn = refresh_token_fn
        self._sleep = sleep
        self.owner = owner or uuid.uuid4().hex
        self._inflight: dict[int, asyncio.Task[TokenSet]] = {}

    async def refresh(
        self,
        credentials: ClientCredentials,
        observed_version: int | None = None,
    ) -> TokenSet:
        record = await self._store.snapshot()
        if record is None:
            raise RefreshError("No token set stored; visit /oauth/start first.")
        if observed_version is not None and record.version != observed_version:
            LOGGER.info(
                "Token already rotated (version %s -> %s); reusing it",
                observed_version,
                record.version,
            )
            return record.tokens
        if not record.tokens.refresh_token:
            raise RefreshError("No refresh token stored.")

        task = self._inflight.get(record.version)
        if task is None:
            task = asyncio.create_task(self._refresh_version(credentials, record.version))
            self._inflight[record.version] = task
            task.add_done_callback(lambda done, version=record.version: self._forget(version, done))
        else:
            LOGGER.info("Joining in-flight token refresh for version %s", record.version)

        # Shielded: a disconnecting caller must not cancel the shared refresh.
        return await asyncio.shield(task)

    def _forget(self, version: int, task: asyncio.Task[TokenSet]) -> None:
        if self._inflight.get(version) is task:
            del self._inflight[version]
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning("Token refresh for version %s failed: %s", version, task.exception())

    async def _refresh_version(self, credentials: ClientCredentials, version: int) -> TokenSet:
        deadline = time.monotonic() + self._lease_ttl_seconds * 2

        while True:
            record = await self._store.snapshot()
            if record is None:
                raise RefreshError("Token set was removed during refresh.")
            if record.version != version:
                LOGGER.info("Token refreshed by another instance (version %s)", record.version)
                return record.tokens

            if await self._store.acquire_refresh_lease(version, self.owner, self._lease_ttl_seconds):
                return await self._refresh_as_leader(credentials, record)

            if time.monotonic() >= deadline:
                raise RefreshError("Timed out waiting for another instance to refresh the token.")
            await self._sleep(self._poll_interval_seconds)

    async def _refresh_as_leader(
        self,
        credentials: ClientCredentials,
        record: StoredTokens,
    ) -> TokenSet:
        previous = record.tokens
        if not previous.refresh_token:
            await self._store.release_refresh_lease(record.version, self.owner)
            raise RefreshError("No refresh token stored.")

        LOGGER.info("Refreshing access token (version %s)", record.version)
        try:
            refreshed = await self._refresh_token_fn(previous.refresh_token, credentials)
        except Exception:
            await self._store.release_refresh_lease(record.version, self.owner)
            raise

        tokens = refreshed.rotated(previous.refresh_token)
        if await self._store.compare_and_swap(record.version, tokens):
            LOGGER.info("Access token refreshed (version %s)", record.version + 1)
            return tokens

        # Our lease expired and another instance already wrote a newer set.
        current = await self._store.snapshot()
        LOGGER.warning("Discarding refresh result; token store moved on during refresh")
        if current is None:
            raise RefreshError("Token set was removed during refresh.")
        return current.tokens
