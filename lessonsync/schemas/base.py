"""
Base schemas with standardized configuration for consistent boundary models.
"""

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Base model with standardized JSON encoding"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class FrozenModel(BaseModel):
    """Immutable value object parsed once at the system boundary."""

    model_config = ConfigDict(frozen=True, extra="ignore")
