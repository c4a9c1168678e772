"""InsightStream: Insight Routes.

Streams rows over HTTP as NDJSON or CSV. The first entity is drained
before the response starts, so resolution errors still map to a 400.
"""

import csv
import io
import json
from typing import AsyncIterator, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from insightstream.connectors.graph.client import GraphClient
from insightstream.core.errors import InsightStreamError
from insightstream.core.logging import get_logger
from insightstream.models.entities import EntityKind, Row
from insightstream.models.options import InsightOptions
from insightstream.stream.controller import InsightStream

logger = get_logger("api.insights")

router = APIRouter(prefix="/insights", tags=["Insights"])


def get_graph_client() -> Optional[GraphClient]:
    """Dependency: the Graph client to use. None lets each stream own one."""
    return None


class InsightRequest(BaseModel):
    """Body of a stream request; the item list must be literal here."""

    entity_kind: EntityKind
    item_list: List[str] = Field(min_length=1)
    access_token: str = ""
    period: str = "day"
    past_days: int = Field(default=30, ge=0)
    metrics: List[str] = Field(min_length=1)
    events: List[str] = []
    breakdowns: List[str] = []
    aggregate: bool = False
    ignore_missing: bool = False

    def to_options(self) -> InsightOptions:
        return InsightOptions(**self.model_dump())


def _ndjson(rows: List[Row]) -> str:
    return "".join(json.dumps(row, default=str) + "\n" for row in rows)


class _CSVEncoder:
    """Encodes row batches as CSV; the header comes from the first batch."""

    def __init__(self):
        self.fieldnames: Optional[List[str]] = None

    def encode(self, rows: List[Row]) -> str:
        if not rows:
            return ""
        out = io.StringIO()
        first_batch = self.fieldnames is None
        if first_batch:
            self.fieldnames = list(dict.fromkeys(key for row in rows for key in row))
        # Columns first seen in later batches are dropped
        writer = csv.DictWriter(out, fieldnames=self.fieldnames, extrasaction="ignore")
        if first_batch:
            writer.writeheader()
        writer.writerows(rows)
        return out.getvalue()


async def _body(
    stream: InsightStream, first: Optional[List[Row]], encode
) -> AsyncIterator[str]:
    try:
        batch = first
        while batch is not None:
            yield encode(batch)
            batch = await stream.read()
    except Exception as e:
        # Headers are already sent; all we can do is stop the body
        logger.error(f"Stream aborted mid-response: {e}")
    finally:
        await stream.aclose()


@router.post("/stream")
async def stream_insights(
    request: InsightRequest,
    format: Literal["ndjson", "csv"] = Query("ndjson"),
    client: Optional[GraphClient] = Depends(get_graph_client),
):
    """Stream insight rows for every requested entity.

    One request is issued per entity for metadata plus one per metric
    (or event). Entities the API reports as unsupported are skipped.
    """
    stream = InsightStream(request.to_options(), client)
    try:
        first = await stream.read()
    except InsightStreamError as e:
        await stream.aclose()
        raise HTTPException(status_code=400, detail=f"Insights request failed: {str(e)}")
    except Exception:
        await stream.aclose()
        raise

    if format == "csv":
        encoder = _CSVEncoder()
        media_type, encode = "text/csv", encoder.encode
    else:
        media_type, encode = "application/x-ndjson", _ndjson

    headers: Dict[str, str] = {"X-Entities-Total": str(stream.total)}
    return StreamingResponse(
        _body(stream, first, encode), media_type=media_type, headers=headers
    )
