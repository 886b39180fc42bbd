"""
Pydantic v2 schemas for self-service API key management.

The raw key appears in exactly one schema (ApiKeyCreated) and is
returned exactly once, at creation or rotation.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from workout_api.core.constants import DEFAULT_KEY_NAME


class ApiKeyCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default=DEFAULT_KEY_NAME, min_length=1, max_length=50)


class ApiKeyOut(BaseModel):
    """Listing view — prefix only, never the hash."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    key_prefix: str
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None


class ApiKeyCreated(BaseModel):
    id: uuid.UUID
    name: str
    key_prefix: str
    api_key: str = Field(..., description="Shown once. Store it securely.")
    created_at: datetime
