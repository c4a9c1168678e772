"""InsightStream: Entity Models.

Entities are the tracked Graph API nodes (pages, apps, posts). Every
kind-specific behaviour of the pipeline is read from a ``KindPolicy``
record rather than by comparing kind strings.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class EntityKind(str, Enum):
    """The Graph API node types with an insights edge."""

    PAGE = "page"
    APP = "app"
    POST = "post"


class KindPolicy(BaseModel):
    """Per-kind behaviour of the pipeline."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    edge: str  # Insights edge appended to the node URL
    carries_created_time: bool = False

    @property
    def id_column(self) -> str:
        return f"{self.kind.value}Id"

    @property
    def name_column(self) -> str:
        return f"{self.kind.value}Name"


KIND_POLICIES: Dict[EntityKind, KindPolicy] = {
    EntityKind.PAGE: KindPolicy(kind=EntityKind.PAGE, edge="insights"),
    EntityKind.APP: KindPolicy(kind=EntityKind.APP, edge="app_insights"),
    EntityKind.POST: KindPolicy(
        kind=EntityKind.POST, edge="insights", carries_created_time=True
    ),
}


def policy_for(kind: EntityKind) -> KindPolicy:
    """Look up the policy record of an entity kind."""
    return KIND_POLICIES[EntityKind(kind)]


class Entity(BaseModel):
    """A resolved node: its id plus display metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    created_time: Optional[str] = None


class Progress(BaseModel):
    """Progress notification emitted once per completed entity."""

    model_config = ConfigDict(frozen=True)

    total: int
    loaded: int
    message: str


# A flat output row: date, <kind>Id, <kind>Name, one column per metric
Row = Dict[str, Any]
Buffer = Dict[str, Row]
