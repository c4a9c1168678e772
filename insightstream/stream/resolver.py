"""InsightStream: Entity Resolver.

Turns the configured id list into ``Entity`` records with one metadata
request per id, at most ``concurrency`` requests in flight. Skipped ids
are dropped; the survivors keep their original relative order.
"""

import asyncio
import inspect
from typing import Callable, List, Optional, Sequence

from insightstream.config import Settings, settings as default_settings
from insightstream.connectors.graph.client import GraphClient
from insightstream.connectors.graph.urls import metadata_url
from insightstream.core.errors import StreamCancelledError, classify, is_skipped
from insightstream.core.logging import LoggingRequestObserver, RequestObserver, get_logger
from insightstream.models.entities import Entity
from insightstream.models.options import InsightOptions
from insightstream.stream.retry import RetryPolicy

logger = get_logger("stream.resolver")


async def produce_items(options: InsightOptions) -> List[str]:
    """Materialize the id list: literal, callable, or async callable."""
    items = options.item_list
    if callable(items):
        items = items()
        if inspect.isawaitable(items):
            items = await items
    return [str(item) for item in items]


class EntityResolver:
    """Resolve raw ids into entities with bounded concurrency."""

    def __init__(
        self,
        options: InsightOptions,
        client: GraphClient,
        retry_policy: Optional[RetryPolicy] = None,
        observer: Optional[RequestObserver] = None,
        settings: Optional[Settings] = None,
        is_cancelled: Callable[[], bool] = lambda: False,
    ):
        self.options = options
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.observer = observer or LoggingRequestObserver()
        self.settings = settings or default_settings
        self.is_cancelled = is_cancelled

    async def resolve(self) -> List[Entity]:
        items = await produce_items(self.options)
        return await self.resolve_items(items)

    async def resolve_items(self, items: Sequence[str]) -> List[Entity]:
        semaphore = asyncio.Semaphore(max(1, self.settings.resolve_concurrency))

        async def bounded(item: str) -> Optional[Entity]:
            async with semaphore:
                return await self.retry_policy.call(lambda: self._resolve_one(item))

        # Let every lookup settle before surfacing the first failure
        results = await asyncio.gather(
            *(bounded(item) for item in items), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        entities = [entity for entity in results if entity is not None]
        logger.info(f"Resolved {len(entities)} of {len(items)} {self.options.entity_kind.value}s")
        return entities

    async def _resolve_one(self, item: str) -> Optional[Entity]:
        if self.is_cancelled():
            raise StreamCancelledError("Stream closed before metadata lookup")

        url = metadata_url(item, self.options.access_token, self.settings)
        self.observer.on_request(self.options.entity_kind.value, url)

        try:
            data = classify(await self.client.get_json(url), self.options)
        except Exception as e:
            if not is_skipped(e):
                raise
            logger.warning(
                f"Skipped {self.options.entity_kind.value} {item}: {e}",
                extra={"entity_id": item, "code": getattr(e, "code", None)},
            )
            return None

        created_time = None
        if self.options.policy.carries_created_time:
            created_time = data.get("created_time")
        return Entity(
            id=item,
            name=data.get("name") or data.get("message") or data.get("story"),
            created_time=created_time,
        )
