import asyncio

import pytest

from storefront.sync.query_client import QueryClient, matches


class Source:
    """Fetcher returning successive values, optionally failing first."""

    def __init__(self, *values, failures=0):
        self.values = list(values)
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("backend down")
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]


class TestKeyMatching:

    def test_prefix_matches_longer_keys(self):
        assert matches(("products", "list", "u1", 1, "All", 12), ("products", "list"))
        assert matches(("products", "list"), ("products", "list"))
        assert not matches(("products", "detail", "p1"), ("products", "list"))
        assert not matches(("cart",), ("cart", "list"))


class TestReads:

    def test_fresh_value_served_from_cache(self, query_client):
        source = Source("a", "b")

        async def run():
            first = await query_client.fetch_query(("cart", "list", "u1"), source)
            second = await query_client.fetch_query(("cart", "list", "u1"), source)
            return first, second

        assert asyncio.run(run()) == ("a", "a")
        assert source.calls == 1

    def test_stale_value_returned_while_refetching(self, query_client, clock):
        source = Source("old", "new")
        key = ("cart", "list", "u1")

        async def run():
            await query_client.fetch_query(key, source)
            clock.advance(61)
            stale = await query_client.fetch_query(key, source)
            in_flight = query_client.get_query_state(key).in_flight
            assert in_flight is not None
            await in_flight
            return stale, query_client.get_query_data(key)

        stale, refreshed = asyncio.run(run())
        assert stale == "old"
        assert refreshed == "new"
        assert source.calls == 2

    def test_concurrent_misses_share_one_fetch(self, query_client):
        source = Source("rows")

        async def run():
            return await asyncio.gather(
                query_client.fetch_query(("cart", "list", "u1"), source),
                query_client.fetch_query(("cart", "list", "u1"), source),
            )

        assert asyncio.run(run()) == ["rows", "rows"]
        assert source.calls == 1

    def test_failed_fetch_is_retried_once(self, query_client):
        source = Source("rows", failures=1)

        result = asyncio.run(query_client.fetch_query(("cart", "list", "u1"), source))

        assert result == "rows"
        assert source.calls == 2

    def test_error_recorded_after_retry_fails(self, query_client):
        source = Source("rows", failures=2)
        key = ("cart", "list", "u1")

        with pytest.raises(RuntimeError):
            asyncio.run(query_client.fetch_query(key, source))

        assert source.calls == 2
        assert isinstance(query_client.get_query_state(key).error, RuntimeError)
        assert query_client.get_query_data(key) is None

    def test_background_failure_keeps_stale_data(self, query_client, clock):
        key = ("cart", "list", "u1")

        async def run():
            await query_client.fetch_query(key, Source("rows"))
            clock.advance(61)
            failing = Source("unused", failures=2)
            stale = await query_client.fetch_query(key, failing)
            in_flight = query_client.get_query_state(key).in_flight
            with pytest.raises(RuntimeError):
                await in_flight
            return stale

        assert asyncio.run(run()) == "rows"
        assert query_client.get_query_data(key) == "rows"

    def test_distinct_keys_are_independent(self, query_client):
        async def run():
            await query_client.fetch_query(("cart", "list", "u1"), Source("u1 rows"))
            await query_client.fetch_query(("cart", "list", "u2"), Source("u2 rows"))

        asyncio.run(run())
        assert query_client.get_query_data(("cart", "list", "u1")) == "u1 rows"
        assert query_client.get_query_data(("cart", "list", "u2")) == "u2 rows"


class TestSequencing:

    def test_direct_write_supersedes_in_flight_fetch(self, query_client):
        key = ("cart", "list", "u1")
        release = None

        async def slow_fetch():
            await release.wait()
            return "server rows"

        async def run():
            nonlocal release
            release = asyncio.Event()
            reader = asyncio.ensure_future(query_client.fetch_query(key, slow_fetch))
            await asyncio.sleep(0)
            query_client.set_query_data(key, "local rows")
            release.set()
            return await reader

        assert asyncio.run(run()) == "local rows"
        assert query_client.get_query_data(key) == "local rows"

    def test_writes_advance_sequence(self, query_client):
        key = ("products", "detail", "p1")
        query_client.set_query_data(key, 1)
        first = query_client.get_query_state(key).sequence
        query_client.set_query_data(key, lambda value: value + 1)

        assert query_client.get_query_data(key) == 2
        assert query_client.get_query_state(key).sequence == first + 1


class TestBulkOperations:

    def test_set_queries_data_skips_entries_without_data(self, query_client):
        async def run():
            with pytest.raises(RuntimeError):
                await query_client.fetch_query(("products", "list", "u1", 2, "All", 12), Source("x", failures=2))

        asyncio.run(run())
        query_client.set_query_data(("products", "list", "u1", 1, "All", 12), [1, 2])

        query_client.set_queries_data(("products", "list", "u1"), lambda items: items + [3])

        assert query_client.get_query_data(("products", "list", "u1", 1, "All", 12)) == [1, 2, 3]
        assert query_client.get_query_data(("products", "list", "u1", 2, "All", 12)) is None

    def test_snapshot_restore_undoes_patches(self, query_client):
        query_client.set_query_data(("cart", "list", "u1"), ["a", "b"])
        query_client.set_query_data(("cart", "list", "u2"), ["c"])

        snapshots = query_client.snapshot(("cart",))
        query_client.set_queries_data(("cart",), lambda items: [])
        assert query_client.get_query_data(("cart", "list", "u1")) == []

        query_client.restore(snapshots)

        assert query_client.get_query_data(("cart", "list", "u1")) == ["a", "b"]
        assert query_client.get_query_data(("cart", "list", "u2")) == ["c"]

    def test_restore_skips_removed_entries(self, query_client):
        query_client.set_query_data(("cart", "list", "u1"), ["a"])
        snapshots = query_client.snapshot(("cart",))
        query_client.remove_queries(("cart",))

        query_client.restore(snapshots)

        assert query_client.get_query_state(("cart", "list", "u1")) is None

    def test_invalidate_refetches_matching_entries(self, query_client):
        lists = Source("page v1", "page v2")
        detail = Source("detail")

        async def run():
            await query_client.fetch_query(("products", "list", "u1", 1, "All", 12), lists)
            await query_client.fetch_query(("products", "detail", "p1"), detail)
            await query_client.invalidate_queries(("products", "list"))

        asyncio.run(run())

        assert query_client.get_query_data(("products", "list", "u1", 1, "All", 12)) == "page v2"
        assert lists.calls == 2
        assert detail.calls == 1

    def test_invalidate_without_refetch_marks_stale(self, query_client):
        key = ("cart", "list", "u1")
        query_client.set_query_data(key, ["a"])

        asyncio.run(query_client.invalidate_queries(("cart",), refetch=False))

        entry = query_client.get_query_state(key)
        assert entry.invalidated is True
        assert query_client.is_stale(entry) is True

    def test_remove_queries_returns_count(self, query_client):
        query_client.set_query_data(("cart", "list", "u1"), [])
        query_client.set_query_data(("cart", "list", "u2"), [])
        query_client.set_query_data(("products", "detail", "p1"), None)

        assert query_client.remove_queries(("cart",)) == 2
        assert len(query_client) == 1


class TestGarbageCollection:

    def test_inactive_entries_evicted(self, query_client, clock):
        query_client.set_query_data(("cart", "list", "u1"), ["a"])
        clock.advance(299)
        asyncio.run(query_client.fetch_query(("cart", "list", "u2"), Source(["b"])))
        clock.advance(1)

        assert query_client.gc() == 1
        assert query_client.get_query_state(("cart", "list", "u1")) is None
        assert query_client.get_query_data(("cart", "list", "u2")) == ["b"]

    def test_gc_time_defaults_to_five_times_stale_time(self):
        client = QueryClient(stale_time=10, gc_time=None)
        assert client.gc_time == 50
