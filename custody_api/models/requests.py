# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for workflow operations.

Inputs are validated here before any store read or write happens.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from ..config import FIELD_LIMITS
from .enums import AgreementChangeType, ResponseAction, SignerType
from .values import AgreementChangeValue, change_value


class _RequestBase(BaseModel):
    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True,
        str_strip_whitespace=True
    )


def _wrap_value(v):
    """Accept plain Python values as well as tagged value objects."""
    if v is None or isinstance(v, dict) and set(v.keys()) == {"kind", "value"}:
        return v
    return change_value(v)


class CreateProposalRequest(_RequestBase):
    """Request to propose an agreement change."""

    child_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["child_id"], description="Child ID")
    change_type: AgreementChangeType = Field(..., description="Agreement section to change")
    proposed_value: AgreementChangeValue = Field(..., description="Proposed new value")
    proposer_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["proposed_by"], description="Proposing guardian")
    justification: Optional[str] = Field(None, max_length=FIELD_LIMITS["change_description"], description="Why the change is wanted")
    modifies_proposal_id: Optional[str] = Field(None, max_length=FIELD_LIMITS["id"], description="Proposal this one re-proposes")

    @field_validator('proposed_value', mode='before')
    @classmethod
    def wrap_proposed_value(cls, v):
        """Wrap plain values in their tagged variant."""
        return _wrap_value(v)

    @field_validator('justification', 'modifies_proposal_id')
    @classmethod
    def blank_to_none(cls, v):
        """Treat blank optional strings as absent."""
        if v is not None and not v:
            return None
        return v


class RespondToProposalRequest(_RequestBase):
    """Request to approve, decline, or counter-propose a pending proposal."""

    proposal_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["id"], description="Proposal ID")
    responder_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["responded_by"], description="Responding guardian")
    action: ResponseAction = Field(..., description="Response action")
    decline_message: Optional[str] = Field(None, max_length=FIELD_LIMITS["decline_message"], description="Optional decline message")
    modified_value: Optional[AgreementChangeValue] = Field(None, description="Counter-proposal value")
    modification_note: Optional[str] = Field(None, max_length=FIELD_LIMITS["modification_note"], description="Why the value was modified")

    @field_validator('modified_value', mode='before')
    @classmethod
    def wrap_modified_value(cls, v):
        """Wrap plain values in their tagged variant."""
        return _wrap_value(v)

    @field_validator('decline_message', 'modification_note')
    @classmethod
    def blank_to_none(cls, v):
        """Treat blank messages as absent."""
        if v is not None and not v:
            return None
        return v


class SignAgreementChangeRequest(_RequestBase):
    """Request to sign an approved agreement change."""

    proposal_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["id"], description="Proposal ID")
    signer_id: str = Field(..., min_length=1, max_length=128, description="Guardian or child ID")
    signer_type: SignerType = Field(..., description="Type of signer")

