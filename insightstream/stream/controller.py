"""InsightStream: Stream Controller.

Pull-based stream of insight rows. Nothing happens until the consumer
asks for data: the first demand resolves the entity list, and every
demand after that drains exactly one entity (all of its metric requests)
and hands over that entity's rows as one contiguous group.

    async with InsightStream(options) as stream:
        stream.on_progress(print)
        async for row in stream:
            writer.writerow(row)
"""

import asyncio
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Union

from insightstream.config import Settings, settings as default_settings
from insightstream.connectors.graph.client import GraphClient
from insightstream.connectors.graph.urls import utcnow, insights_url_pattern
from insightstream.core.errors import StreamCancelledError
from insightstream.core.logging import LoggingRequestObserver, RequestObserver, get_logger
from insightstream.models.entities import Entity, Progress, Row
from insightstream.models.options import InsightOptions
from insightstream.stream.accumulator import MetricAccumulator
from insightstream.stream.materializer import ProgressListener, ProgressTracker
from insightstream.stream.resolver import EntityResolver
from insightstream.stream.retry import RetryPolicy

logger = get_logger("stream.controller")


class StreamState(str, Enum):
    """Lifecycle of a stream."""

    UNINITIALIZED = "uninitialized"  # Entities not resolved yet
    ACTIVE = "active"  # Entities pending
    DRAINING = "draining"  # All entities done, last rows not yet consumed
    ENDED = "ended"
    FAILED = "failed"


class InsightStream:
    """Async stream of flat insight rows, one group per entity."""

    def __init__(
        self,
        options: Union[InsightOptions, Dict[str, Any]],
        client: Optional[GraphClient] = None,
        *,
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        observer: Optional[RequestObserver] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        if not isinstance(options, InsightOptions):
            options = InsightOptions.model_validate(options)
        self.options = options
        self.settings = settings or default_settings
        self.client = client or GraphClient(timeout=self.settings.request_timeout)
        self._owns_client = client is None
        self.retry_policy = retry_policy or RetryPolicy(
            limit=self.settings.retry_limit, delay=self.settings.retry_delay
        )
        self.observer = observer or LoggingRequestObserver()
        self.now = now

        self.state = StreamState.UNINITIALIZED
        self.error: Optional[BaseException] = None
        self.pending: List[Entity] = []
        self._rows: Deque[Row] = deque()
        self._progress = ProgressTracker(options.entity_kind.value)
        self._accumulator: Optional[MetricAccumulator] = None
        self._closed = False
        # One entity at a time, even with concurrent readers
        self._lock = asyncio.Lock()

    # ── Progress Side Channel ──

    def on_progress(self, listener: ProgressListener) -> None:
        """Register a callback invoked once per completed entity."""
        self._progress.subscribe(listener)

    @property
    def progress(self) -> Optional[Progress]:
        return self._progress.last

    @property
    def total(self) -> int:
        return self._progress.total

    @property
    def loaded(self) -> int:
        return self._progress.loaded

    def is_cancelled(self) -> bool:
        return self._closed

    # ── Initialization ──

    async def _init(self) -> None:
        url_pattern = insights_url_pattern(self.options, self.settings, self.now)
        resolver = EntityResolver(
            self.options,
            self.client,
            retry_policy=self.retry_policy,
            observer=self.observer,
            settings=self.settings,
            is_cancelled=self.is_cancelled,
        )
        entities = await self.retry_policy.call(resolver.resolve)

        self.pending = list(entities)
        self._progress.start(len(self.pending))
        self._accumulator = MetricAccumulator(
            self.options,
            self.client,
            url_pattern,
            retry_policy=self.retry_policy,
            observer=self.observer,
            progress=self._progress,
            is_cancelled=self.is_cancelled,
        )
        self.state = StreamState.ACTIVE
        logger.info(f"Stream initialized with {len(self.pending)} entities")

    # ── Pull Protocol ──

    async def read(self) -> Optional[List[Row]]:
        """Produce the rows of the next entity, or ``None`` at end of stream.

        Any unrecovered error fails the stream and is raised once; reads
        after that return ``None``.
        """
        async with self._lock:
            if self._closed or self.state in (StreamState.ENDED, StreamState.FAILED):
                return None
            try:
                return await self._read_next()
            except StreamCancelledError:
                logger.info("Stream closed by consumer")
                self.state = StreamState.ENDED
                return None
            except Exception as e:
                self.state = StreamState.FAILED
                self.error = e
                logger.error(f"Stream failed: {e}")
                raise

    async def _read_next(self) -> Optional[List[Row]]:
        if self.state == StreamState.UNINITIALIZED:
            await self._init()

        if not self.pending:
            self.state = StreamState.ENDED
            return None

        # Most recently resolved entity first
        entity = self.pending[-1]
        rows = await self._accumulator.accumulate(entity)
        self.pending.pop()

        if not self.pending:
            self.state = StreamState.DRAINING
        return rows

    async def batches(self) -> AsyncIterator[List[Row]]:
        """Yield one list of rows per entity."""
        while True:
            batch = await self.read()
            if batch is None:
                return
            yield batch

    async def collect(self) -> List[Row]:
        """Read the whole stream into a list."""
        rows: List[Row] = []
        async for batch in self.batches():
            rows.extend(batch)
        return rows

    def __aiter__(self) -> "InsightStream":
        return self

    async def __anext__(self) -> Row:
        while not self._rows:
            batch = await self.read()
            if batch is None:
                raise StopAsyncIteration
            self._rows.extend(batch)
        return self._rows.popleft()

    # ── Cancellation ──

    async def aclose(self) -> None:
        """Stop issuing requests; an in-flight entity is abandoned."""
        self._closed = True
        self._rows.clear()
        async with self._lock:
            if self.state != StreamState.FAILED:
                self.state = StreamState.ENDED
            if self._owns_client:
                await self.client.close()

    async def __aenter__(self) -> "InsightStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
