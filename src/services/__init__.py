from src.services import (
    analytics_service,
    challenge_engine,
    session_service,
    streak_engine,
)


__all__ = [
    "analytics_service",
    "challenge_engine",
    "session_service",
    "streak_engine",
]
