"""Process-wide query cache with stale-while-revalidate reads.

Entries are keyed by tuples such as ``("cart", "list", user_id)``. Bulk
operations (invalidate, snapshot, patch, remove) select entries by tuple
prefix, so ``("products", "list")`` addresses every cached product page.

Every fetch and every direct write takes the next sequence number of its
entry. A fetch result is stored only if its number is still the latest one,
which keeps a slow response from overwriting a newer optimistic patch or a
newer fetch.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from storefront.config import QUERY_GC_TIME, QUERY_RETRY_DELAY, QUERY_STALE_TIME
from storefront.monitoring import (
    cache_discarded_results_counter,
    cache_evictions_counter,
    cache_fetch_failures_counter,
    cache_reads_counter,
)

logger = logging.getLogger(__name__)

QueryKey = Tuple[Hashable, ...]
Fetcher = Callable[[], Awaitable[Any]]
Updater = Callable[[Any], Any]


def matches(key: QueryKey, prefix: QueryKey) -> bool:
    """True if ``key`` starts with ``prefix``."""
    return key[:len(prefix)] == tuple(prefix)


@dataclass
class QueryEntry:
    """Cached state of one key."""
    key: QueryKey
    data: Any = None
    has_data: bool = False
    error: Optional[BaseException] = None
    updated_at: Optional[float] = None
    last_accessed: float = 0.0
    invalidated: bool = False
    sequence: int = 0
    fetcher: Optional[Fetcher] = None
    in_flight: Optional[asyncio.Task] = field(default=None, repr=False)


@dataclass(frozen=True)
class QuerySnapshot:
    """Copy of an entry's value taken before an optimistic patch."""
    key: QueryKey
    data: Any
    has_data: bool
    updated_at: Optional[float]
    invalidated: bool


class QueryClient:
    """Keyed cache of fetched collections."""

    def __init__(
        self,
        stale_time: float = QUERY_STALE_TIME,
        gc_time: Optional[float] = QUERY_GC_TIME,
        retry: int = 1,
        retry_delay: float = QUERY_RETRY_DELAY,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            stale_time: Seconds a fetched value is served without refetching
            gc_time: Seconds an unread entry is kept; defaults to 5 x stale_time
            retry: Automatic retries of a failed fetch
            retry_delay: Seconds to wait before a retry
            clock: Monotonic time source
        """
        self.stale_time = stale_time
        self.gc_time = gc_time if gc_time is not None else stale_time * 5
        self.retry = retry
        self.retry_delay = retry_delay
        self.clock = clock
        self._entries: Dict[QueryKey, QueryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _entry(self, key: QueryKey) -> QueryEntry:
        key = tuple(key)
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key, last_accessed=self.clock())
            self._entries[key] = entry
        return entry

    def _matching(self, prefix: QueryKey) -> List[QueryEntry]:
        return [entry for key, entry in self._entries.items() if matches(key, prefix)]

    def _is_live(self, entry: QueryEntry) -> bool:
        return self._entries.get(entry.key) is entry

    def is_stale(self, entry: QueryEntry) -> bool:
        if entry.invalidated or entry.updated_at is None:
            return True
        return self.clock() - entry.updated_at >= self.stale_time

    def get_query_state(self, key: QueryKey) -> Optional[QueryEntry]:
        return self._entries.get(tuple(key))

    # ----- Reads -----

    async def fetch_query(self, key: QueryKey, fetcher: Fetcher, force: bool = False) -> Any:
        """
        Read ``key`` through the cache.

        A fresh value is returned as is. A stale value is returned right away
        while a background refetch runs. Without a value, or with
        ``force=True``, the caller waits for the fetch.

        Raises:
            Exception: whatever the fetcher raised, after the retry failed
        """
        entry = self._entry(key)
        entry.fetcher = fetcher
        entry.last_accessed = self.clock()
        entity = str(entry.key[0]) if entry.key else ""

        if entry.has_data and not force:
            if not self.is_stale(entry):
                cache_reads_counter.add(1, {"result": "hit", "entity": entity})
                return entry.data
            cache_reads_counter.add(1, {"result": "stale", "entity": entity})
            self._start_fetch(entry)
            return entry.data

        cache_reads_counter.add(1, {"result": "miss", "entity": entity})
        task = self._start_fetch(entry, force=force)
        return await asyncio.shield(task)

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(tuple(key))
        return entry.data if entry is not None else None

    def get_queries_data(self, prefix: QueryKey) -> List[Tuple[QueryKey, Any]]:
        return [(entry.key, entry.data) for entry in self._matching(prefix) if entry.has_data]

    # ----- Fetching -----

    def _start_fetch(self, entry: QueryEntry, force: bool = False) -> asyncio.Task:
        if entry.in_flight is not None and not entry.in_flight.done() and not force:
            return entry.in_flight

        entry.sequence += 1
        task = asyncio.ensure_future(self._run_fetch(entry, entry.fetcher, entry.sequence))
        entry.in_flight = task
        task.add_done_callback(lambda t: self._fetch_done(entry, t))
        return task

    def _fetch_done(self, entry: QueryEntry, task: asyncio.Task) -> None:
        if entry.in_flight is task:
            entry.in_flight = None
        if not task.cancelled():
            # Background failures are logged in _run_fetch
            task.exception()

    async def _run_fetch(self, entry: QueryEntry, fetcher: Fetcher, sequence: int) -> Any:
        attempt = 0
        while True:
            try:
                data = await fetcher()
                break
            except Exception as e:
                if attempt < self.retry:
                    attempt += 1
                    logger.warning("Query fetch failed, retrying", extra={
                        "query_key": repr(entry.key),
                        "attempt": attempt,
                        "error": str(e)
                    })
                    await asyncio.sleep(self.retry_delay)
                    continue
                if entry.sequence == sequence:
                    entry.error = e
                cache_fetch_failures_counter.add(1, {"entity": str(entry.key[0])})
                logger.error("Query fetch failed", extra={
                    "query_key": repr(entry.key),
                    "attempts": attempt + 1,
                    "error": str(e)
                })
                raise

        if entry.sequence != sequence or not self._is_live(entry):
            cache_discarded_results_counter.add(1, {"entity": str(entry.key[0])})
            logger.debug("Discarded superseded fetch result", extra={
                "query_key": repr(entry.key),
                "sequence": sequence,
                "latest_sequence": entry.sequence
            })
            newer = entry.in_flight
            if newer is not None and newer is not asyncio.current_task() and not newer.done():
                return await asyncio.shield(newer)
            return entry.data if entry.has_data else data

        entry.data = data
        entry.has_data = True
        entry.updated_at = self.clock()
        entry.invalidated = False
        entry.error = None
        return data

    # ----- Writes -----

    def set_query_data(self, key: QueryKey, value: Any) -> Any:
        """
        Write a value directly; a callable is applied to the current value.

        The write supersedes any fetch already in flight for the key.
        """
        entry = self._entry(key)
        new_value = value(entry.data) if callable(value) else value
        entry.sequence += 1
        entry.data = new_value
        entry.has_data = True
        entry.updated_at = self.clock()
        entry.error = None
        return new_value

    def set_queries_data(self, prefix: QueryKey, updater: Updater) -> None:
        """Apply ``updater`` to every cached value under ``prefix``."""
        for entry in self._matching(prefix):
            if entry.has_data:
                self.set_query_data(entry.key, updater)

    def snapshot(self, prefix: QueryKey) -> List[QuerySnapshot]:
        return [
            QuerySnapshot(
                key=entry.key,
                data=entry.data,
                has_data=entry.has_data,
                updated_at=entry.updated_at,
                invalidated=entry.invalidated,
            )
            for entry in self._matching(prefix)
            if entry.has_data
        ]

    def restore(self, snapshots: List[QuerySnapshot]) -> None:
        """Put entries back exactly as snapshotted; later snapshots are undone first."""
        for snap in reversed(snapshots):
            entry = self._entries.get(snap.key)
            if entry is None:
                continue
            entry.sequence += 1
            entry.data = snap.data
            entry.has_data = snap.has_data
            entry.updated_at = snap.updated_at
            entry.invalidated = snap.invalidated

    async def invalidate_queries(self, prefix: QueryKey, refetch: bool = True) -> None:
        """
        Mark entries under ``prefix`` stale and refetch those with a fetcher.

        Refetch failures are recorded on the entry and logged; they are not
        raised to the caller.
        """
        matched = self._matching(prefix)
        for entry in matched:
            entry.invalidated = True
        if not refetch:
            return

        tasks = [self._start_fetch(entry, force=True) for entry in matched if entry.fetcher is not None]
        if tasks:
            await asyncio.gather(*(asyncio.shield(task) for task in tasks), return_exceptions=True)

    def remove_queries(self, prefix: QueryKey) -> int:
        removed = [entry.key for entry in self._matching(prefix)]
        for key in removed:
            del self._entries[key]
        return len(removed)

    def gc(self) -> int:
        """Evict entries not read for ``gc_time`` that have no fetch in flight."""
        now = self.clock()
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.last_accessed >= self.gc_time
            and (entry.in_flight is None or entry.in_flight.done())
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            cache_evictions_counter.add(len(expired))
            logger.debug("Evicted inactive queries", extra={"count": len(expired)})
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
