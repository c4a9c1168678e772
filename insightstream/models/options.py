"""InsightStream: Run Options.

The immutable configuration of a single stream run. Field aliases accept
camelCase and legacy short option names (``node``, ``token``,
``pastdays``, ``itemList``, ``ignoreMissing``).
"""

from typing import Any, Awaitable, Callable, Sequence, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from insightstream.config import settings
from insightstream.models.entities import EntityKind, KindPolicy, policy_for

ItemSource = Union[
    Sequence[str],
    Callable[[], Union[Sequence[str], Awaitable[Sequence[str]]]],
]


class InsightOptions(BaseModel):
    """Everything one run needs: what to fetch, for whom, over which window."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, arbitrary_types_allowed=True
    )

    entity_kind: EntityKind = Field(
        validation_alias=AliasChoices("entity_kind", "entityKind", "node")
    )
    item_list: Any = Field(
        validation_alias=AliasChoices("item_list", "itemList", "items")
    )
    access_token: str = Field(
        default="",
        validate_default=True,
        validation_alias=AliasChoices("access_token", "accessToken", "token"),
    )
    period: str = "day"
    past_days: int = Field(
        default=30, ge=0, validation_alias=AliasChoices("past_days", "pastDays", "pastdays")
    )
    metrics: Tuple[str, ...] = Field(min_length=1)
    events: Tuple[str, ...] = ()
    breakdowns: Tuple[str, ...] = ()
    aggregate: bool = False
    ignore_missing: bool = Field(
        default=False,
        validation_alias=AliasChoices("ignore_missing", "ignoreMissing"),
    )

    @field_validator("item_list")
    @classmethod
    def _check_item_list(cls, value: Any) -> ItemSource:
        if callable(value):
            return value
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ValueError("item_list must be a list of ids or a callable")
        return tuple(str(item) for item in value)

    @field_validator("access_token")
    @classmethod
    def _default_token(cls, value: str) -> str:
        return value or settings.graph_access_token

    @field_validator("events", "breakdowns", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def policy(self) -> KindPolicy:
        return policy_for(self.entity_kind)

    @property
    def has_events(self) -> bool:
        return bool(self.events)
