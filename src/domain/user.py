"""User, profile and settings domain models."""

from pydantic import BaseModel, Field

from src.domain.record import ID_PATTERN


class AppSettings(BaseModel):
    """Per-user presentation preferences."""

    sound_enabled: bool = Field(default=True, description="Play sounds on actions")
    dark_mode: bool = Field(default=True, description="Use the dark theme")


class UserProfile(BaseModel):
    """Optional profile fields stored on the user document."""

    bio: str | None = Field(default=None, description="Short bio (sensitive)")
    gender: str | None = Field(default=None, description="Gender")
    dob: str | None = Field(default=None, description="Date of birth (YYYY-MM-DD)")
    secret_key: str | None = Field(
        default=None,
        description="User-chosen passphrase gating destructive operations (sensitive)",
    )


class User(BaseModel):
    """Authenticated user identity with profile."""

    id: str = Field(..., pattern=ID_PATTERN, description="User ID from the identity provider")
    email: str = Field(default="", description="Sign-in email")
    name: str = Field(default="User", description="Display name")
    avatar: str | None = Field(default=None, description="Avatar image URL")
    profile: UserProfile = Field(default_factory=UserProfile, description="Optional profile fields")

    @property
    def secret_key(self) -> str | None:
        return self.profile.secret_key
