"""Domain models."""

from src.domain.challenge import Challenge, ChallengeStatus
from src.domain.journal import JournalEntry
from src.domain.proof import Proof
from src.domain.record import Record
from src.domain.session import Session
from src.domain.task import Category, Task, TaskType
from src.domain.todo import Expense, Todo
from src.domain.user import AppSettings, User, UserProfile


__all__ = [
    "AppSettings",
    "Category",
    "Challenge",
    "ChallengeStatus",
    "Expense",
    "JournalEntry",
    "Proof",
    "Record",
    "Session",
    "Task",
    "TaskType",
    "Todo",
    "User",
    "UserProfile",
]
