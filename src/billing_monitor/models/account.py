"""
Account and credential models.

Accounts are persisted as JSON with camelCase keys so that account files
written by the desktop menu-bar app load without conversion.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_REGION = "us-east-1"


class AccountColor(Enum):
    """Colour tag used to tell dev/qa/prod accounts apart."""

    BLUE = "blue"
    GREEN = "green"
    ORANGE = "orange"
    RED = "red"
    PURPLE = "purple"
    TEAL = "teal"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class Account(BaseModel):
    """A configured AWS account whose costs are monitored."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    account_id: str
    profile_name: str | None = None
    region: str = DEFAULT_REGION
    color: AccountColor = AccountColor.BLUE
    is_enabled: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate and normalize the display name."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Account name cannot be empty")
        return stripped

    @field_validator("profile_name")
    @classmethod
    def validate_profile_name(cls, v: str | None) -> str | None:
        """Blank profile names mean the default profile."""
        if v is not None:
            stripped = v.strip()
            return stripped if stripped else None
        return v

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def profile_key(self) -> str:
        """Credential cache key for this account."""
        return self.profile_name or "default"

    def updated(self, **changes: Any) -> "Account":
        """Return a copy of the account with the given fields replaced."""
        return self.model_validate({**self.model_dump(), **changes})

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON representation."""
        return self.model_dump(mode="json", by_alias=True)


class Credentials(BaseModel):
    """Resolved AWS credentials. Held in memory only, never written to disk."""

    model_config = ConfigDict(frozen=True)

    access_key_id: str = Field(..., min_length=1)
    secret_access_key: str = Field(..., min_length=1, repr=False)
    session_token: str | None = Field(None, repr=False)
    expiration: datetime | None = None

    @field_validator("session_token", mode="before")
    @classmethod
    def normalize_session_token(cls, v: Any) -> Any:
        """An empty session token is the same as no session token."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("expiration")
    @classmethod
    def validate_expiration(cls, v: datetime | None) -> datetime | None:
        """Treat naive expiration timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_temporary(self) -> bool:
        return self.session_token is not None

    def is_expired_at(self, now: datetime) -> bool:
        if self.expiration is None:
            return False
        return now >= self.expiration

    @property
    def is_expired(self) -> bool:
        """True iff an expiration is set and has passed."""
        return self.is_expired_at(datetime.now(timezone.utc))
