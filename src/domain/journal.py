"""Journal entry domain model."""

from pydantic import Field

from src.domain.record import Record


class JournalEntry(Record):
    """Dated journal entry with a mood."""

    user_id: str = Field(default="", description="Owner user ID")
    date: str = Field(..., description="Entry date (ISO format)")
    subject: str = Field(default="", description="Subject line (sensitive)")
    content: str = Field(default="", description="Entry body (sensitive)")
    mood: str = Field(default="", description="Mood emoji")
    images: list[str] = Field(default_factory=list, description="Attached image URLs")
    created_at: str = Field(default="", description="Creation timestamp (ISO format)")
