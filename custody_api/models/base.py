# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and validation.
"""

from datetime import datetime, timezone
from typing import Any, Dict
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class BaseEntity(BaseModel):
    """Base entity with common fields for all stored documents."""

    model_config = ConfigDict(
        # Stored documents use camelCase keys
        alias_generator=to_camel,
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        # Validate assignment
        validate_assignment=True,
        # Arbitrary types allowed
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, min_length=1, max_length=128, description="Unique identifier")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update timestamp")
    revision: int = Field(default=0, ge=0, description="Optimistic concurrency counter")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def evolve(self, **changes: Any) -> "BaseEntity":
        """
        Return a validated copy with the given fields replaced.

        The copy is re-validated as a whole so that model-level invariants
        hold for the new state, not only for the individual fields.
        """
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a storage document with camelCase keys."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build an entity from a storage document."""
        return cls.model_validate(document)
