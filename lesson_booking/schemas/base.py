"""
Base schemas shared by snapshots and outbound task payloads.
"""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Forbid extras and validate defaults; used for anything persisted as JSON."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        frozen=True,
    )
