"""Write protocol shared by every cache-backed mutation."""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from opentelemetry import trace

from storefront.exceptions import StoreError
from storefront.monitoring import optimistic_rollbacks_counter
from storefront.services.store import StoreResult
from storefront.sync.query_client import QueryClient, QueryKey, Updater

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimisticPatch:
    """Expected effect of a mutation on the entries under ``prefix``."""
    prefix: QueryKey
    updater: Updater


class Mutation:
    """
    A named write against the store.

    ``run`` applies optimistic patches (snapshotting first), awaits the store
    call, and then either invalidates the affected keys or restores every
    snapshot and re-raises. Mutations are never retried.
    """

    def __init__(self, client: QueryClient, name: str):
        self.client = client
        self.name = name
        self.tracer = trace.get_tracer(__name__)

    async def run(
        self,
        call: Callable[[], Awaitable[Any]],
        patches: Iterable[OptimisticPatch] = (),
        invalidate: Iterable[QueryKey] = ()
    ) -> Any:
        """
        Execute the mutation.

        Args:
            call: Awaitable store call; a StoreResult carrying an error fails the mutation
            patches: Optimistic patches applied before the call is issued
            invalidate: Key prefixes refetched after success

        Returns:
            The call's data

        Raises:
            StoreError: If the store call reported an error
        """
        with self.tracer.start_as_current_span(f"mutation.{self.name}") as span:
            snapshots = []
            for patch in patches:
                snapshots.extend(self.client.snapshot(patch.prefix))
                self.client.set_queries_data(patch.prefix, patch.updater)
            span.set_attribute("mutation.optimistic_keys", len(snapshots))

            try:
                result = await call()
                if isinstance(result, StoreResult):
                    if not result.ok:
                        raise StoreError(result.error, self.name)
                    result = result.data
            except Exception as e:
                if snapshots:
                    self.client.restore(snapshots)
                    optimistic_rollbacks_counter.add(1, {"mutation": self.name})
                    logger.warning("Rolled back optimistic update", extra={
                        "mutation": self.name,
                        "keys": len(snapshots),
                        "error": str(e)
                    })
                span.record_exception(e)
                raise

            for prefix in invalidate:
                await self.client.invalidate_queries(prefix)
            return result
