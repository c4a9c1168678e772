"""InsightStream: FastAPI Application Entry Point.

Facebook page, app and post insights as a row stream.
"""

from fastapi import FastAPI

from insightstream.api.insight_routes import router as insights_router
from insightstream.config import settings
from insightstream.core.logging import get_logger

logger = get_logger("main")

app = FastAPI(
    title="InsightStream",
    description="Stream Facebook page, app and post insights as flat per-day rows.",
    version="1.0.0",
)

app.include_router(insights_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "insightstream",
        "version": "1.0.0",
        "graph_api_version": settings.graph_api_version,
    }
