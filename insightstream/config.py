"""InsightStream: Central Configuration via Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Graph API ──
    graph_base_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v2.10"
    graph_access_token: str = ""  # Fallback when a run supplies no token
    request_timeout: float = 30.0

    # ── Engine ──
    resolve_concurrency: int = 3  # In-flight metadata lookups
    retry_limit: Optional[int] = None  # None = retry until success
    retry_delay: float = 0.0  # seconds between retries

    # ── App ──
    log_level: str = "INFO"

    @property
    def graph_root(self) -> str:
        """Versioned Graph API root, e.g. https://graph.facebook.com/v2.10."""
        return f"{self.graph_base_url.rstrip('/')}/{self.graph_api_version}"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "INSIGHTSTREAM_",
    }


settings = Settings()
