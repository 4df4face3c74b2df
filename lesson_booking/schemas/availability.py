# lesson_booking/schemas/availability.py
"""
Weekly availability input.

Times are wall-clock values in the teacher's timezone; ``day_of_week`` uses
0 = Sunday.
"""

from datetime import time

from pydantic import Field, model_validator

from .base import StrictModel


class WeeklyWindow(StrictModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True

    @model_validator(mode="after")
    def _check_order(self) -> "WeeklyWindow":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def label(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"
