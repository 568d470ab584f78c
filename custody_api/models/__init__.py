# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the agreement change workflow.
"""

# Base models
from .base import BaseEntity

# Enumerations
from .enums import (
    AgreementChangeType,
    ProposalStatus,
    SignatureStatus,
    SignerType,
    ResponseAction,
    CustodyType,
    AuditAction
)

# Values
from .values import (
    AgreementChangeValue,
    StringValue,
    NumberValue,
    BooleanValue,
    MapValue,
    ListValue,
    change_value,
    parse_change_value
)

# Core entities
from .entities import (
    AgreementChangeProposal,
    AgreementSignature,
    Agreement,
    ChildCustody,
    AuditLog
)

# Request models
from .requests import (
    CreateProposalRequest,
    RespondToProposalRequest,
    SignAgreementChangeRequest
)

__all__ = [
    # Base models
    "BaseEntity",

    # Enumerations
    "AgreementChangeType",
    "ProposalStatus",
    "SignatureStatus",
    "SignerType",
    "ResponseAction",
    "CustodyType",
    "AuditAction",

    # Values
    "AgreementChangeValue",
    "StringValue",
    "NumberValue",
    "BooleanValue",
    "MapValue",
    "ListValue",
    "change_value",
    "parse_change_value",

    # Core entities
    "AgreementChangeProposal",
    "AgreementSignature",
    "Agreement",
    "ChildCustody",
    "AuditLog",

    # Request models
    "CreateProposalRequest",
    "RespondToProposalRequest",
    "SignAgreementChangeRequest"
]
