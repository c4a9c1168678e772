"""InsightStream: Metric Accumulator.

The insights API answers one request per metric (or per event in event
mode) with a list of values, one per day. To build one wide table per
entity, every response is folded into a buffer keyed by date (plus the
breakdown values, when the run uses breakdowns) and one row is emitted
per key once all metrics are in.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from insightstream.connectors.graph.client import GraphClient
from insightstream.core.errors import (
    NoDataError,
    StreamCancelledError,
    classify,
    is_skipped,
)
from insightstream.core.logging import LoggingRequestObserver, RequestObserver, get_logger
from insightstream.core.templates import render
from insightstream.models.entities import Buffer, Entity, Row
from insightstream.models.options import InsightOptions
from insightstream.stream.materializer import KEY_SEPARATOR, ProgressTracker, materialize
from insightstream.stream.retry import RetryPolicy

logger = get_logger("stream.accumulator")

# Ad network events are counted, every other app event is summed
COUNT_EVENTS = frozenset({"fb_ad_network_imp", "fb_ad_network_click"})
LIFETIME_KEY = "lifetime"


def aggregation_type(event: Optional[str]) -> str:
    return "COUNT" if event in COUNT_EVENTS else "SUM"


@dataclass(frozen=True)
class WorkItem:
    """One request's worth of work: a metric and, in event mode, an event."""

    metric: str
    event: Optional[str] = None

    @property
    def column(self) -> str:
        return self.event or self.metric

    @property
    def aggregation(self) -> Optional[str]:
        return aggregation_type(self.event) if self.event else None


@dataclass(frozen=True)
class WorkQueue:
    """Metric and event queues of one entity, consumed last-to-first.

    Both queues are immutable snapshots; ``cursor`` counts the steps taken.
    Each step consumes one element of each queue, so metric *i* from the
    end is paired with event *i* from the end even when the lengths differ.
    """

    metrics: Tuple[str, ...]
    events: Tuple[str, ...] = ()
    fallback_metric: Optional[str] = None
    cursor: int = 0

    @classmethod
    def from_options(cls, options: InsightOptions) -> "WorkQueue":
        return cls(
            metrics=tuple(options.metrics),
            events=tuple(options.events),
            fallback_metric=options.metrics[0],
        )

    @property
    def remaining_metrics(self) -> int:
        return max(len(self.metrics) - self.cursor, 0)

    @property
    def remaining_events(self) -> int:
        return max(len(self.events) - self.cursor, 0)

    @property
    def exhausted(self) -> bool:
        return not self.remaining_metrics and not self.remaining_events

    def current(self) -> WorkItem:
        # Event-only ("audience") queries reuse the first configured metric
        if self.remaining_metrics:
            metric = self.metrics[self.remaining_metrics - 1]
        else:
            metric = self.fallback_metric
        event = self.events[self.remaining_events - 1] if self.remaining_events else None
        return WorkItem(metric=metric, event=event)

    def advance(self) -> "WorkQueue":
        return WorkQueue(
            metrics=self.metrics,
            events=self.events,
            fallback_metric=self.fallback_metric,
            cursor=self.cursor + 1,
        )


def extract_values(data: List[Any]) -> List[Dict[str, Any]]:
    """Page and post insights nest the values; app insights return them flat.

    A nested ``values`` list is returned even when empty.
    """
    first = data[0]
    if isinstance(first, dict) and first.get("values") is not None:
        return first["values"]
    return data


def bucket_key(value: Dict[str, Any]) -> str:
    key = value.get("end_time") or value.get("time") or LIFETIME_KEY
    # Several rows share a date when breakdowns are used; the breakdown
    # values make the key unique and the date stays before the first "__"
    for breakdown_value in (value.get("breakdowns") or {}).values():
        key += f"{KEY_SEPARATOR}{breakdown_value}"
    return key


def fold_value(
    buffer: Buffer,
    value: Dict[str, Any],
    column: str,
    breakdowns: Tuple[str, ...] = (),
) -> str:
    """Write one value entry into the buffer and return its bucket key."""
    key = bucket_key(value)
    row = buffer.setdefault(key, {})

    metric_value = value.get("value")
    if isinstance(metric_value, dict):
        for sub_metric, sub_value in metric_value.items():
            row[f"{column}_{sub_metric}"] = sub_value
    else:
        row[column] = metric_value

    present = value.get("breakdowns") or {}
    for name in breakdowns:
        if present.get(name):
            row[name] = present[name]
    return key


class MetricAccumulator:
    """Drain one entity's work queue into a buffer, then materialize rows."""

    def __init__(
        self,
        options: InsightOptions,
        client: GraphClient,
        url_pattern: str,
        retry_policy: Optional[RetryPolicy] = None,
        observer: Optional[RequestObserver] = None,
        progress: Optional[ProgressTracker] = None,
        is_cancelled: Callable[[], bool] = lambda: False,
    ):
        self.options = options
        self.client = client
        self.url_pattern = url_pattern
        self.progress = progress
        self.retry_policy = retry_policy or RetryPolicy()
        self.observer = observer or LoggingRequestObserver()
        self.is_cancelled = is_cancelled

    async def accumulate(
        self,
        entity: Entity,
        queue: Optional[WorkQueue] = None,
        buffer: Optional[Buffer] = None,
    ) -> List[Row]:
        queue = queue if queue is not None else WorkQueue.from_options(self.options)
        buffer = buffer if buffer is not None else {}

        while not queue.exhausted:
            item = queue.current()
            await self.retry_policy.call(
                lambda: self.collect(entity, item, buffer)
            )
            queue = queue.advance()

        rows = materialize(buffer, entity, self.options.policy)
        if self.progress is not None:
            self.progress.advance()
        return rows

    def request_url(self, entity: Entity, item: WorkItem) -> str:
        model = {"id": entity.id, "metric": item.metric}
        if item.event:
            model.update({"ev": item.event, "agg": item.aggregation})
        return render(self.url_pattern, model)

    async def collect(self, entity: Entity, item: WorkItem, buffer: Buffer) -> None:
        """Fetch one metric (or event) and fold it into ``buffer``.

        Skipped responses leave the buffer untouched.
        """
        if self.is_cancelled():
            raise StreamCancelledError("Stream closed before insights request")

        url = self.request_url(entity, item)
        self.observer.on_request(self.options.entity_kind.value, url)

        try:
            body = classify(await self.client.get_json(url), self.options)
            data = body.get("data") or []
            if not data:
                raise NoDataError(item.metric)
        except Exception as e:
            if not is_skipped(e):
                raise
            logger.warning(
                f"Skipped {item.column} for {entity.id}: {e}",
                extra={"entity_id": entity.id, "metric": item.metric, "event": item.event},
            )
            return

        # Discard results of a request that finished after close()
        if self.is_cancelled():
            raise StreamCancelledError("Stream closed during insights request")

        for value in extract_values(data):
            fold_value(buffer, value, item.column, self.options.breakdowns)
