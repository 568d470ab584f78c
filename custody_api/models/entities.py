# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the agreement change workflow.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from pydantic.alias_generators import to_camel

from ..config import FIELD_LIMITS
from .base import BaseEntity, generate_object_id, utc_now
from .enums import (
    AgreementChangeType,
    ProposalStatus,
    SignatureStatus,
    SignerType,
    CustodyType,
    AuditAction,
)
from .values import AgreementChangeValue


PROPOSAL_ENTITY = "agreement_change_proposal"
AGREEMENT_ENTITY = "agreement"

SIGNATURE_STATUSES = (
    ProposalStatus.AWAITING_SIGNATURES,
    ProposalStatus.ACTIVE,
    ProposalStatus.SIGNATURE_EXPIRED,
    ProposalStatus.SUPERSEDED,
)


class AgreementSignature(BaseModel):
    """A required signature on an approved agreement change."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True
    )

    signer_id: str = Field(..., min_length=1, max_length=128, description="Guardian or child ID")
    signer_type: SignerType = Field(..., description="Type of signer")
    status: SignatureStatus = Field(default=SignatureStatus.PENDING, description="Signature status")
    signed_at: Optional[datetime] = Field(None, description="When signed (None while pending)")

    @model_validator(mode='after')
    def validate_signed_at(self):
        """A signed record carries its timestamp."""
        if self.status == SignatureStatus.SIGNED and self.signed_at is None:
            raise ValueError('signed_at is required when signature status is signed')
        return self

    def is_signed(self) -> bool:
        """Check if this record has been signed."""
        return self.status == SignatureStatus.SIGNED


class AgreementChangeProposal(BaseEntity):
    """A proposed change to one section of a child's active agreement."""

    child_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["child_id"], description="Child whose agreement changes")
    agreement_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["agreement_id"], description="Agreement being amended")
    proposed_by: str = Field(..., min_length=1, max_length=FIELD_LIMITS["proposed_by"], description="Guardian who proposed")
    change_type: AgreementChangeType = Field(..., description="Agreement section being changed")
    change_description: str = Field(..., min_length=1, max_length=FIELD_LIMITS["change_description"], description="Human-readable description")
    original_value: Optional[AgreementChangeValue] = Field(None, description="Current value of the section")
    proposed_value: AgreementChangeValue = Field(..., description="Proposed new value")
    status: ProposalStatus = Field(default=ProposalStatus.PENDING, description="Workflow status")
    expires_at: datetime = Field(..., description="End of the response window")
    responded_by: Optional[str] = Field(None, max_length=FIELD_LIMITS["responded_by"], description="Guardian who responded")
    responded_at: Optional[datetime] = Field(None, description="Response timestamp")
    decline_message: Optional[str] = Field(None, max_length=FIELD_LIMITS["decline_message"], description="Message from declining guardian")
    original_proposal_id: Optional[str] = Field(None, max_length=FIELD_LIMITS["original_proposal_id"], description="Proposal this one modifies")
    modification_note: Optional[str] = Field(None, max_length=FIELD_LIMITS["modification_note"], description="Note explaining a modification")
    superseded_by_proposal_id: Optional[str] = Field(None, max_length=FIELD_LIMITS["id"], description="Proposal that replaced this one")
    signatures: Optional[List[AgreementSignature]] = Field(None, description="Required signatures, set after approval")
    signature_deadline: Optional[datetime] = Field(None, description="End of the signature window")
    activated_at: Optional[datetime] = Field(None, description="When the change became active")
    new_agreement_version: Optional[int] = Field(None, ge=1, description="Agreement version created on activation")
    schema_version: int = Field(default=1, description="Schema version")

    @field_validator('change_description')
    @classmethod
    def validate_change_description(cls, v):
        """Validate change description."""
        if not v.strip():
            raise ValueError('Change description cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_lifecycle_fields(self):
        """Validate status-dependent fields."""
        if self.expires_at <= self.created_at:
            raise ValueError('expires_at must be after created_at')

        if self.signature_deadline is not None and self.status not in SIGNATURE_STATUSES:
            raise ValueError('signature_deadline is only set once signatures are collected')

        if self.status == ProposalStatus.AWAITING_SIGNATURES:
            if not self.signatures:
                raise ValueError('signatures are required when awaiting signatures')
            if self.signature_deadline is None:
                raise ValueError('signature_deadline is required when awaiting signatures')

        if self.new_agreement_version is not None and self.status not in (
            ProposalStatus.ACTIVE, ProposalStatus.SUPERSEDED
        ):
            raise ValueError('new_agreement_version is only set on active proposals')

        if self.status == ProposalStatus.ACTIVE:
            if self.activated_at is None or self.new_agreement_version is None:
                raise ValueError('activated_at and new_agreement_version are required when active')

        if self.status in (ProposalStatus.DECLINED, ProposalStatus.MODIFIED):
            if not self.responded_by or self.responded_at is None:
                raise ValueError('responded_by and responded_at are required after a response')

        if self.original_proposal_id is not None and self.original_proposal_id == self.id:
            raise ValueError('A proposal cannot modify itself')

        return self

    def is_modification(self) -> bool:
        """Check if this proposal is a counter-proposal or re-proposal of another."""
        return self.original_proposal_id is not None

    def field_key(self) -> tuple:
        """The (child, section) pair this proposal changes."""
        return (self.child_id, self.change_type)


class Agreement(BaseEntity):
    """The active family agreement for a child."""

    child_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["child_id"], description="Child this agreement covers")
    version: int = Field(default=1, ge=1, description="Agreement version, incremented on each activated change")
    terms: Dict[str, AgreementChangeValue] = Field(default_factory=dict, description="Current value per agreement section")
    last_proposal_id: Optional[str] = Field(None, max_length=FIELD_LIMITS["id"], description="Proposal that produced this version")
    schema_version: int = Field(default=1, description="Schema version")

    @field_validator('terms')
    @classmethod
    def validate_terms(cls, v):
        """Terms are keyed by agreement change type."""
        valid = {change_type.value for change_type in AgreementChangeType}
        for key in v:
            if key not in valid:
                raise ValueError(f'Invalid agreement section: {key}')
        return v

    def current_value(self, change_type: str):
        """Current value of an agreement section, or None if never set."""
        return self.terms.get(AgreementChangeType(change_type).value)


class ChildCustody(BaseModel):
    """Custody arrangement and guardians of a child."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True
    )

    child_id: str = Field(..., min_length=1, max_length=FIELD_LIMITS["child_id"], description="Child identifier")
    guardian_ids: List[str] = Field(default_factory=list, description="Guardians with rights over the child")
    custody_type: CustodyType = Field(default=CustodyType.SHARED, description="Custody arrangement")

    @field_validator('guardian_ids')
    @classmethod
    def validate_guardians(cls, v):
        """Guardian IDs must be unique."""
        if len(set(v)) != len(v):
            raise ValueError('Guardian IDs must be unique')
        return v

    def is_guardian(self, user_id: str) -> bool:
        """Check if a user is a guardian of the child."""
        return user_id in self.guardian_ids

    def is_shared_custody(self) -> bool:
        """Check if both parents must approve changes."""
        return self.custody_type == CustodyType.SHARED and len(self.guardian_ids) >= 2


class AuditLog(BaseModel):
    """Audit log entry for the proposal trail."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Action timestamp")
    actor_id: str = Field(..., description="Guardian, child, or system actor")
    child_id: str = Field(..., description="Child scope")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: AuditAction = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = [PROPOSAL_ENTITY, AGREEMENT_ENTITY]
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v
