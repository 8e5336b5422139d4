"""Todo and expense domain models."""

from pydantic import Field

from src.domain.record import Record


class Todo(Record):
    """One-off to-do item."""

    user_id: str = Field(default="", description="Owner user ID")
    text: str = Field(..., description="To-do text (sensitive)")
    completed: bool = Field(default=False, description="Whether the item is done")
    due_date: str = Field(default="", description="Due date (ISO format)")
    created_at: str = Field(default="", description="Creation timestamp (ISO format)")


class Expense(Record):
    """Recorded expense."""

    user_id: str = Field(default="", description="Owner user ID")
    amount: float = Field(..., ge=0, description="Amount spent")
    category: str = Field(default="Other", description="Expense category (Food, Rent, ...)")
    description: str = Field(default="", description="What the money was spent on (sensitive)")
    date: str = Field(..., description="Expense date (ISO format)")
