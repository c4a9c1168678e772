"""InsightStream: Graph API URL Patterns.

Every insights request of a run shares one URL pattern. The pattern keeps
``{id}``, ``{metric}`` and (in event mode) ``{ev}`` / ``{agg}``
placeholders, which the accumulator fills per request.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from insightstream.config import Settings, settings as default_settings
from insightstream.core.templates import render
from insightstream.models.options import InsightOptions

_TOKEN_RE = re.compile(r"(access_token=)[^&]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def insights_url_pattern(
    options: InsightOptions,
    settings: Optional[Settings] = None,
    now: Callable[[], datetime] = utcnow,
) -> str:
    """Build the URL pattern shared by all insights requests of a run."""
    settings = settings or default_settings

    until_dt = now()
    since_dt = until_dt - timedelta(days=options.past_days)
    # Graph expects unix timestamps in seconds
    until = round(until_dt.timestamp())
    since = round(since_dt.timestamp())

    path = "/".join(
        [settings.graph_root, "{id}", options.policy.edge, "{metric}"]
    )
    query = "&".join(
        [
            f"access_token={options.access_token}",
            f"period={options.period}",
            f"since={since}",
            f"until={until}",
        ]
    )

    if options.has_events:
        query += "&event_name={ev}"
    if options.aggregate:
        query += "&aggregateBy={agg}"
    for index, breakdown in enumerate(options.breakdowns):
        query += f"&breakdowns[{index}]={breakdown}"

    return f"{path}?{query}"


def metadata_url(entity_id: str, token: str, settings: Optional[Settings] = None) -> str:
    """URL of a node's own metadata (name, message, story, created_time)."""
    settings = settings or default_settings
    return render(
        "{base}/{id}?access_token={token}",
        {"base": settings.graph_root, "id": entity_id, "token": token},
    )


def mask_token(url: str) -> str:
    """Mask the access token in a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1****", url)
