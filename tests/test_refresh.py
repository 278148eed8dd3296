import asyncio

import pytest

from auth.models import TokenSet
from auth.oauth2 import RefreshError
from auth.refresh import RefreshCoordinator
from auth.token_store import FileTokenStore, MemoryTokenStore
from tests.gateway_helpers import RefreshRecorder


@pytest.mark.asyncio
async def test_refresh_persists_new_token(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    refresh = RefreshRecorder(access_token="fresh-access", refresh_token="refresh-2")
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    tokens = await coordinator.refresh(credentials)

    assert tokens == TokenSet("fresh-access", "refresh-2")
    assert refresh.calls == ["refresh-1"]
    record = await store.snapshot()
    assert record.tokens == tokens
    assert record.version == 2
    assert record.refresh_owner is None


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    coordinator = RefreshCoordinator(store, refresh_token_fn=RefreshRecorder(refresh_token=None))

    tokens = await coordinator.refresh(credentials)

    assert tokens == TokenSet("fresh-access", "refresh-1")
    assert await store.current() == tokens


@pytest.mark.asyncio
async def test_refresh_without_token_set(credentials) -> None:
    refresh = RefreshRecorder()
    coordinator = RefreshCoordinator(MemoryTokenStore(), refresh_token_fn=refresh)

    with pytest.raises(RefreshError, match="No token set"):
        await coordinator.refresh(credentials)

    assert refresh.calls == []


@pytest.mark.asyncio
async def test_refresh_without_refresh_token(credentials) -> None:
    refresh = RefreshRecorder()
    coordinator = RefreshCoordinator(
        MemoryTokenStore(TokenSet("stale-access")),
        refresh_token_fn=refresh,
    )

    with pytest.raises(RefreshError, match="No refresh token"):
        await coordinator.refresh(credentials)

    assert refresh.calls == []


@pytest.mark.asyncio
async def test_failed_refresh_leaves_store_untouched(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    before = await store.snapshot()
    coordinator = RefreshCoordinator(
        store,
        refresh_token_fn=RefreshRecorder(error=RefreshError("revoked", status_code=400)),
    )

    with pytest.raises(RefreshError, match="revoked"):
        await coordinator.refresh(credentials)

    after = await store.snapshot()
    assert after.tokens == before.tokens
    assert after.version == before.version
    assert after.refresh_owner is None


@pytest.mark.asyncio
async def test_stale_observed_version_skips_upstream_call(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    await store.replace(TokenSet("rotated-access", "refresh-2"))
    refresh = RefreshRecorder()
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    tokens = await coordinator.refresh(credentials, observed_version=1)

    assert tokens == TokenSet("rotated-access", "refresh-2")
    assert refresh.calls == []


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_call(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    refresh = RefreshRecorder(delay=0.05)
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    results = await asyncio.gather(
        *(coordinator.refresh(credentials, observed_version=1) for _ in range(10))
    )

    assert refresh.calls == ["refresh-1"]
    assert {tokens.access_token for tokens in results} == {"fresh-access"}


@pytest.mark.asyncio
async def test_concurrent_failures_share_one_call(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    refresh = RefreshRecorder(delay=0.05, error=RefreshError("revoked"))
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    results = await asyncio.gather(
        *(coordinator.refresh(credentials) for _ in range(5)),
        return_exceptions=True,
    )

    assert refresh.calls == ["refresh-1"]
    assert all(isinstance(result, RefreshError) for result in results)


@pytest.mark.asyncio
async def test_separate_instances_share_one_call(credentials, tmp_path) -> None:
    path = tmp_path / "tokens.json"
    await FileTokenStore(path).replace(TokenSet("stale-access", "refresh-1"))
    refresh = RefreshRecorder(delay=0.1)
    first = RefreshCoordinator(
        FileTokenStore(path),
        refresh_token_fn=refresh,
        poll_interval_seconds=0.01,
    )
    second = RefreshCoordinator(
        FileTokenStore(path),
        refresh_token_fn=refresh,
        poll_interval_seconds=0.01,
    )

    results = await asyncio.gather(
        first.refresh(credentials, observed_version=1),
        second.refresh(credentials, observed_version=1),
    )

    assert refresh.calls == ["refresh-1"]
    assert results[0] == results[1] == TokenSet("fresh-access", "refresh-1")
    assert (await FileTokenStore(path).snapshot()).version == 2


@pytest.mark.asyncio
async def test_waiting_instance_times_out(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    await store.acquire_refresh_lease(1, "other-instance", 60)
    refresh = RefreshRecorder()
    coordinator = RefreshCoordinator(
        store,
        refresh_token_fn=refresh,
        lease_ttl_seconds=0.05,
        poll_interval_seconds=0.01,
    )

    with pytest.raises(RefreshError, match="Timed out"):
        await coordinator.refresh(credentials)

    assert refresh.calls == []


@pytest.mark.asyncio
async def test_expired_lease_is_taken_over(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    await store.acquire_refresh_lease(1, "crashed-instance", -1)
    refresh = RefreshRecorder()
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    tokens = await coordinator.refresh(credentials)

    assert tokens.access_token == "fresh-access"
    assert refresh.calls == ["refresh-1"]


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_refresh(credentials) -> None:
    store = MemoryTokenStore(TokenSet("stale-access", "refresh-1"))
    refresh = RefreshRecorder(delay=0.05)
    coordinator = RefreshCoordinator(store, refresh_token_fn=refresh)

    cancelled = asyncio.create_task(coordinator.refresh(credentials))
    survivor = asyncio.create_task(coordinator.refresh(credentials))
    await asyncio.sleep(0.01)
    cancelled.cancel()

    tokens = await survivor

    assert cancelled.cancelled()
    assert tokens.access_token == "fresh-access"
    assert refresh.calls == ["refresh-1"]
    assert await store.current() == tokens
