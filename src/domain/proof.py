"""Proof domain model: the immutable record of one completion event."""

from datetime import date

from pydantic import Field, field_validator

from src.domain.record import Record


class Proof(Record):
    """Evidence attached to one task completion."""

    task_id: str = Field(..., description="ID of the task this proof completes")
    date: str = Field(..., description="Completion date (YYYY-MM-DD)")
    remark: str = Field(default="", description="Free-text remark (sensitive)")
    image_url: str | None = Field(default=None, description="Optional uploaded image URL")
    timestamp: str = Field(default="", description="When the proof was recorded (ISO format)")

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        date.fromisoformat(v)
        return v
