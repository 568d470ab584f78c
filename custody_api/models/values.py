# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tagged value types carried by agreement change proposals.

An agreement section can hold text, a number (minutes for screen time and
bedtime), a toggle, a structured map of settings, or a list of strings such
as app names. Each variant records its kind explicitly so stored documents
are unambiguous.
"""

from typing import Annotated, Any, Dict, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, TypeAdapter, field_validator

from ..config import FIELD_LIMITS, LIST_ITEM_MAX_LENGTH


class _ValueBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class StringValue(_ValueBase):
    """Free text value (terms, consequences, rewards)."""
    kind: Literal["string"] = "string"
    value: str = Field(..., max_length=FIELD_LIMITS["proposed_value"])


class NumberValue(_ValueBase):
    """Numeric value; minutes for screen time and bedtime schedules."""
    kind: Literal["number"] = "number"
    value: Union[StrictInt, StrictFloat]


class BooleanValue(_ValueBase):
    """On/off value."""
    kind: Literal["boolean"] = "boolean"
    value: StrictBool


class MapValue(_ValueBase):
    """Structured settings map."""
    kind: Literal["map"] = "map"
    value: Dict[str, Any]


class ListValue(_ValueBase):
    """List of strings such as allowed or blocked apps."""
    kind: Literal["list"] = "list"
    value: List[str]

    @field_validator("value")
    @classmethod
    def validate_items(cls, v):
        """Validate list entry lengths."""
        for item in v:
            if len(item) > LIST_ITEM_MAX_LENGTH:
                raise ValueError(f"List entries cannot exceed {LIST_ITEM_MAX_LENGTH} characters")
        return v


AgreementChangeValue = Annotated[
    Union[StringValue, NumberValue, BooleanValue, MapValue, ListValue],
    Field(discriminator="kind"),
]

_VALUE_ADAPTER = TypeAdapter(AgreementChangeValue)
_VALUE_TYPES = (StringValue, NumberValue, BooleanValue, MapValue, ListValue)


def change_value(raw: Any):
    """
    Wrap a plain Python value in its tagged variant.

    Args:
        raw: str, int, float, bool, dict, list of str, or an existing value

    Returns:
        The matching AgreementChangeValue variant

    Raises:
        ValueError: If the value has no matching variant
    """
    if isinstance(raw, _VALUE_TYPES):
        return raw
    # bool is a subclass of int, so it must be checked first
    if isinstance(raw, bool):
        return BooleanValue(value=raw)
    if isinstance(raw, (int, float)):
        return NumberValue(value=raw)
    if isinstance(raw, str):
        return StringValue(value=raw)
    if isinstance(raw, (list, tuple)):
        if not all(isinstance(item, str) for item in raw):
            raise ValueError("List values may only contain strings")
        return ListValue(value=list(raw))
    if isinstance(raw, dict):
        return MapValue(value=raw)
    raise ValueError(f"Unsupported agreement value type: {type(raw).__name__}")


def parse_change_value(document: Dict[str, Any]):
    """Parse a stored tagged value document ({"kind": ..., "value": ...})."""
    return _VALUE_ADAPTER.validate_python(document)
