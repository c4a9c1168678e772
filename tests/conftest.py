"""Pytest configuration and shared fixtures.

The Graph API is faked with ``httpx.MockTransport`` (see graph_fakes.py);
no test touches the network.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import httpx
import pytest

from graph_fakes import API_VERSION, FakeGraph, RecordingObserver
from insightstream.config import Settings
from insightstream.connectors.graph.client import GraphClient
from insightstream.stream.retry import RetryPolicy

FIXED_NOW = datetime(2020, 1, 31, tzinfo=timezone.utc)


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def graph_client(fake_graph: FakeGraph) -> GraphClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_graph.handler))
    return GraphClient(http_client=http_client)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        graph_api_version=API_VERSION,
        graph_access_token="env-token",
        resolve_concurrency=3,
        retry_limit=None,
        retry_delay=0.0,
    )


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(limit=None, delay=0.0)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def fixed_now() -> Callable[[], datetime]:
    return lambda: FIXED_NOW
