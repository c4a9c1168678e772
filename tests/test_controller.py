"""Tests for the stream controller: pull protocol, ordering, failure, cancel."""

import asyncio

import pytest

from graph_fakes import graph_error, insights
from insightstream.core.errors import GraphAPIError, RetryableError
from insightstream.models.entities import Progress
from insightstream.stream.controller import InsightStream, StreamState

DAY1 = "2020-01-01T08:00:00+0000"
DAY2 = "2020-01-02T08:00:00+0000"


def make_stream(graph_client, test_settings, retry_policy, observer, fixed_now, **overrides):
    options = {
        "entity_kind": "page",
        "item_list": ["p1", "p2", "p3"],
        "access_token": "tok",
        "metrics": ["page_views"],
    }
    options.update(overrides)
    return InsightStream(
        options,
        graph_client,
        settings=test_settings,
        retry_policy=retry_policy,
        observer=observer,
        now=fixed_now,
    )


def add_page(fake_graph, page_id, *values):
    fake_graph.add(f"/{page_id}", {"id": page_id, "name": f"Page {page_id}"})
    fake_graph.add(f"/{page_id}/insights/page_views", insights(*values))


@pytest.fixture
def stream(graph_client, test_settings, retry_policy, observer, fixed_now):
    return make_stream(graph_client, test_settings, retry_policy, observer, fixed_now)


@pytest.mark.asyncio
class TestInsightStream:
    async def test_nothing_happens_before_first_read(self, fake_graph, stream):
        assert stream.state is StreamState.UNINITIALIZED
        assert fake_graph.requests == []

    async def test_entities_are_processed_last_first(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})

        batches = [batch async for batch in stream.batches()]

        assert [batch[0]["pageId"] for batch in batches] == ["p3", "p2", "p1"]
        assert stream.state is StreamState.ENDED

    async def test_rows_of_one_entity_are_contiguous(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1}, {"end_time": DAY2, "value": 2})

        rows = [row async for row in stream]

        assert [row["pageId"] for row in rows] == ["p3", "p3", "p2", "p2", "p1", "p1"]
        assert [row["date"] for row in rows[:2]] == ["2020-01-01", "2020-01-02"]

    async def test_entity_leaves_queue_only_after_its_rows(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})

        first = await stream.read()

        assert first[0]["pageId"] == "p3"
        assert [entity.id for entity in stream.pending] == ["p1", "p2"]
        assert stream.state is StreamState.ACTIVE

    async def test_state_machine(self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now):
        add_page(fake_graph, "p1", {"end_time": DAY1, "value": 1})
        stream = make_stream(graph_client, test_settings, retry_policy, observer, fixed_now, item_list=["p1"])

        assert stream.state is StreamState.UNINITIALIZED
        assert await stream.read() is not None
        assert stream.state is StreamState.DRAINING
        assert await stream.read() is None
        assert stream.state is StreamState.ENDED
        assert await stream.read() is None

    async def test_progress_is_reported_per_entity(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})
        seen = []
        stream.on_progress(seen.append)

        await stream.collect()

        assert seen == [
            Progress(total=3, loaded=1, message="2 pages remaining"),
            Progress(total=3, loaded=2, message="1 pages remaining"),
            Progress(total=3, loaded=3, message="0 pages remaining"),
        ]
        assert stream.progress == seen[-1]
        assert (stream.total, stream.loaded) == (3, 3)

    async def test_skipped_entities_are_not_counted(self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now):
        add_page(fake_graph, "p1", {"end_time": DAY1, "value": 1})
        fake_graph.add("/p2", graph_error(3001, "Unsupported"))
        stream = make_stream(
            graph_client, test_settings, retry_policy, observer, fixed_now, item_list=["p1", "p2"]
        )

        rows = await stream.collect()

        assert [row["pageId"] for row in rows] == ["p1"]
        assert stream.total == 1

    async def test_missing_metric_fails_the_stream(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})
        fake_graph.add("/p3/insights/page_views", graph_error(100, "Object does not exist"))

        with pytest.raises(GraphAPIError):
            await stream.read()

        assert stream.state is StreamState.FAILED
        assert stream.error.code == 100
        requests_before = len(fake_graph.requests)
        assert await stream.read() is None
        assert len(fake_graph.requests) == requests_before
        assert not any(path.startswith(("/p1/", "/p2/")) for path in fake_graph.paths)

    async def test_failure_surfaces_through_iteration(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})
        fake_graph.add("/p2/insights/page_views", graph_error(190, "Invalid OAuth access token"))
        rows = []

        with pytest.raises(GraphAPIError):
            async for row in stream:
                rows.append(row)

        assert [row["pageId"] for row in rows] == ["p3"]

    async def test_retryable_item_producer_reruns_initialization(
        self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now
    ):
        add_page(fake_graph, "p1", {"end_time": DAY1, "value": 1})
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RetryableError("listing throttled")
            return ["p1"]

        stream = make_stream(graph_client, test_settings, retry_policy, observer, fixed_now, item_list=producer)

        rows = await stream.collect()

        assert calls == 2
        assert [row["pageId"] for row in rows] == ["p1"]

    async def test_empty_item_list_ends_immediately(
        self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now
    ):
        stream = make_stream(graph_client, test_settings, retry_policy, observer, fixed_now, item_list=[])

        assert await stream.read() is None
        assert stream.state is StreamState.ENDED
        assert fake_graph.requests == []

    async def test_post_rows_carry_created_time(
        self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now
    ):
        fake_graph.add("/x1", {"id": "x1", "story": "Shared a link", "created_time": "2019-12-30T10:00:00+0000"})
        fake_graph.add("/x1/insights/post_impressions", insights({"value": 77}))
        stream = make_stream(
            graph_client, test_settings, retry_policy, observer, fixed_now,
            entity_kind="post", item_list=["x1"], metrics=["post_impressions"],
        )

        [row] = await stream.collect()

        assert row == {
            "date": "lifetime",
            "postId": "x1",
            "postName": "Shared a link",
            "created_time": "2019-12-30T10:00:00+0000",
            "post_impressions": 77,
        }

    async def test_close_stops_new_requests(self, fake_graph, stream):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})

        assert await stream.read() is not None
        await stream.aclose()
        requests_before = len(fake_graph.requests)

        assert await stream.read() is None
        assert stream.state is StreamState.ENDED
        assert len(fake_graph.requests) == requests_before

    async def test_close_during_read_discards_in_flight_results(
        self, fake_graph, graph_client, test_settings, retry_policy, observer, fixed_now
    ):
        fake_graph.delay = 0.05
        add_page(fake_graph, "p1", {"end_time": DAY1, "value": 1})
        stream = make_stream(
            graph_client, test_settings, retry_policy, observer, fixed_now,
            item_list=["p1"], metrics=["page_views", "page_fans"],
        )
        fake_graph.add("/p1/insights/page_fans", insights({"end_time": DAY1, "value": 2}))

        reader = asyncio.create_task(stream.read())
        await asyncio.sleep(0.01)
        await stream.aclose()

        assert await reader is None
        assert stream.state is StreamState.ENDED
        assert len(fake_graph.requests) == 1

    async def test_context_manager_closes(self, fake_graph, stream):
        add_page(fake_graph, "p3", {"end_time": DAY1, "value": 1})
        async with stream:
            pass
        assert stream.state is StreamState.ENDED
        assert fake_graph.requests == []

    async def test_request_observer_sees_every_request(self, fake_graph, stream, observer):
        for page_id in ("p1", "p2", "p3"):
            add_page(fake_graph, page_id, {"end_time": DAY1, "value": 1})

        await stream.collect()

        assert len(observer.calls) == len(fake_graph.requests) == 6
        assert all(kind == "page" for kind, _ in observer.calls)
