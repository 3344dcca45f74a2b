"""Pydantic base classes shared by domain and API models."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class JsonModel(BaseModel):
    """Base model for API communication with camelCase/snake_case conversion.

    - JSON output uses camelCase (for client communication)
    - Internal Python uses snake_case
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def model_dump_json(self, **kwargs) -> str:
        """Override to ensure camelCase in JSON output."""
        kwargs.setdefault("by_alias", True)
        return super().model_dump_json(**kwargs)


class SnapshotModel(JsonModel):
    """Immutable model.

    Updates go through ``model_copy(update=...)`` so a holder of an instance
    never observes a half-applied change.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )
