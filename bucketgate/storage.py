"""Bucket state storage: the store contract and the in-process reference store."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Protocol

from .clock import Clock, now_ms
from .errors import ConfigurationError
from .metrics import SWEPT
from .types import BucketState, StoredEntry

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_MS = 60_000


class StorageAdapter(Protocol):
    """
    Contract for bucket state stores.

    Any implementation (in-process table, shared cache, external key-value
    service) can back a limiter. Errors from the underlying medium are raised
    as-is; the engine never retries.
    """

    async def get(self, key: str) -> Optional[BucketState]:
        """
        Return the stored state for ``key``.

        Returns:
            The state, or None for unknown or expired keys
        """
        ...

    async def set(self, key: str, state: BucketState, ttl_ms: int) -> None:
        """
        Upsert ``state`` for ``key``.

        Args:
            key: Bucket key
            state: State to persist
            ttl_ms: Milliseconds after which the entry must read as absent,
                replacing any earlier TTL for the key
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""
        ...


class Sweeper:
    """Runs a callback every ``interval_ms`` on a daemon thread until stopped."""

    def __init__(self, callback, interval_ms: int) -> None:
        self.callback = callback
        self.interval_ms = interval_ms
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        # per-thread event: a thread that outlived an earlier stop() stays stopped
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop,),
            name="bucketgate-sweeper",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)

    def _loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval_ms / 1000):
            try:
                self.callback()
            except Exception:  # noqa: BLE001
                logger.exception("storage sweep failed")


class MemoryStorage:
    """
    In-process store backed by a dict.

    - Entries expire lazily on read once their TTL has elapsed
    - A background sweeper removes expired entries every ``cleanup_interval`` ms
      so keys that are never read again do not linger
    - Each instance owns its own sweeper; ``destroy()`` stops it and clears
      the table
    """

    def __init__(
        self,
        cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Clock = now_ms,
        autostart: bool = True,
    ) -> None:
        if (
            isinstance(cleanup_interval, bool)
            or not isinstance(cleanup_interval, int)
            or cleanup_interval < 1
        ):
            raise ConfigurationError(
                f"cleanup_interval must be a positive integer of ms, got {cleanup_interval!r}"
            )
        self._clock = clock
        self._entries: Dict[str, StoredEntry] = {}
        self._lock = threading.Lock()
        self._sweeper = Sweeper(self.sweep, cleanup_interval)
        if autostart:
            self.start()

    @property
    def cleanup_interval(self) -> int:
        return self._sweeper.interval_ms

    @property
    def sweeping(self) -> bool:
        return self._sweeper.running

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()

    async def get(self, key: str) -> Optional[BucketState]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.state

    async def set(self, key: str, state: BucketState, ttl_ms: int) -> None:
        entry = StoredEntry(state=state, expires_at=self._clock() + ttl_ms)
        with self._lock:
            self._entries[key] = entry

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
            live = len(self._entries)
        if expired:
            logger.debug("swept %d expired bucket(s), %d live", len(expired), live)
        SWEPT.inc(len(expired))
        return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def destroy(self) -> None:
        self.stop()
        with self._lock:
            self._entries.clear()

    def __enter__(self) -> "MemoryStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.destroy()
