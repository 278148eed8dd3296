from __future__ import annotations

import asyncio
import fcntl
import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import TypeVar

from auth.models import StoredTokens, TokenSet

T = TypeVar("T")

# A mutation receives the current record and returns (record to write, result).
# Returning the record unchanged (same object) skips the write.
Mutation = Callable[[StoredTokens | None], tuple[StoredTokens | None, T]]


class TokenStore(ABC):
    """Single token set shared by every gateway instance.

    All writes go through ``_mutate``, which must apply the mutation atomically
    with respect to every other reader and writer of the same backing record.
    """

    @abstractmethod
    async def snapshot(self) -> StoredTokens | None:
        raise NotImplementedError

    @abstractmethod
    async def _mutate(self, mutation: Mutation[T]) -> T:
        raise NotImplementedError

    async def current(self) -> TokenSet | None:
        record = await self.snapshot()
        if record is None:
            return None
        return record.tokens

    async def replace(self, new: TokenSet) -> StoredTokens:
        def mutation(record: StoredTokens | None) -> tuple[StoredTokens, StoredTokens]:
            version = 0 if record is None else record.version
            updated = StoredTokens(tokens=new, version=version + 1)
            return updated, updated

        return await self._mutate(mutation)

    async def compare_and_swap(self, expected_version: int | None, new: TokenSet) -> bool:
        def mutation(record: StoredTokens | None) -> tuple[StoredTokens | None, bool]:
            current_version = None if record is None else record.version
            if current_version != expected_version:
                return record, False
            version = 0 if record is None else record.version
            return StoredTokens(tokens=new, version=version + 1), True

        return await self._mutate(mutation)

    async def acquire_refresh_lease(self, version: int, owner: str, ttl_seconds: float) -> bool:
        now = time.time()

        def mutation(record: StoredTokens | None) -> tuple[StoredTokens | None, bool]:
            if record is None or record.version != version:
                return record, False
            if record.refresh_in_progress(now) and record.refresh_owner != owner:
                return record, False
            leased = replace(record, refresh_owner=owner, refresh_expires_at=now + ttl_seconds)
            return leased, True

        return await self._mutate(mutation)

    async def release_refresh_lease(self, version: int, owner: str) -> None:
        def mutation(record: StoredTokens | None) -> tuple[StoredTokens | None, None]:
            if record is None or record.version != version or record.refresh_owner != owner:
                return record, None
            return replace(record, refresh_owner=None, refresh_expires_at=None), None

        await self._mutate(mutation)


class MemoryTokenStore(TokenStore):
    def __init__(self, initial: TokenSet | None = None) -> None:
        self._record: StoredTokens | None = None
        if initial is not None:
            self._record = StoredTokens(tokens=initial, version=1)

    async def snapshot(self) -> StoredTokens | None:
        return self._record

    async def _mutate(self, mutation: Mutation[T]) -> T:
        # Mutations are synchronous, so nothing else runs on the loop in between.
        record, result = mutation(self._record)
        self._record = record
        return result


class FileTokenStore(TokenStore):
    """JSON record on a filesystem shared by all instances.

    Mutations hold an exclusive ``flock`` on ``<path>.lock`` for the whole
    read-modify-write, so concurrent processes observe compare-and-swap
    semantics. Locking and file I/O run in a worker thread so a lock held by
    another instance never blocks the event loop.
    """

    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(f"{self._path.name}.lock")

    async def snapshot(self) -> StoredTokens | None:
        return await asyncio.to_thread(self._snapshot_locked)

    async def _mutate(self, mutation: Mutation[T]) -> T:
        return await asyncio.to_thread(self._mutate_locked, mutation)

    def _snapshot_locked(self) -> StoredTokens | None:
        with self._locked(fcntl.LOCK_SH):
            return self._read()

    def _mutate_locked(self, mutation: Mutation[T]) -> T:
        with self._locked(fcntl.LOCK_EX):
            record = self._read()
            updated, result = mutation(record)
            if updated is not record and updated is not None:
                self._write(updated)
            return result

    @contextmanager
    def _locked(self, operation: int) -> Iterator[None]:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._lock_path, "a+") as handle:
            fcntl.flock(handle.fileno(), operation)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read(self) -> StoredTokens | None:
        if not self._path.exists():
            return None

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return StoredTokens.from_payload(raw)

    def _write(self, record: StoredTokens) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(record.to_payload(), handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
