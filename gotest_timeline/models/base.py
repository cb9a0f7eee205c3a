"""Base model configuration for all data structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Immutable model that can be populated by field name or alias."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)
