"""Device session domain model."""

from pydantic import Field

from src.domain.record import Record


class Session(Record):
    """A signed-in device. ``id`` is the device ID."""

    device_name: str = Field(default="Web Browser on OS", description="Human-readable device description")
    last_active: str = Field(default="", description="Last authenticated load (ISO format, trusted time)")
    is_current: bool = Field(default=False, description="Derived: whether this is the local device")
