# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the agreement change workflow.
"""

from enum import Enum


class AgreementChangeType(str, Enum):
    """Sections of a family agreement that require dual approval to change."""
    TERMS = "terms"
    MONITORING_RULES = "monitoring_rules"
    SCREEN_TIME = "screen_time"
    BEDTIME_SCHEDULE = "bedtime_schedule"
    APP_RESTRICTIONS = "app_restrictions"
    CONTENT_FILTERS = "content_filters"
    CONSEQUENCES = "consequences"
    REWARDS = "rewards"


class ProposalStatus(str, Enum):
    """Agreement change proposal workflow status."""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    MODIFIED = "modified"
    AWAITING_SIGNATURES = "awaiting_signatures"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    SIGNATURE_EXPIRED = "signature_expired"


class SignatureStatus(str, Enum):
    """Status of a single signature record."""
    PENDING = "pending"
    SIGNED = "signed"


class SignerType(str, Enum):
    """Who is signing an approved change."""
    PARENT = "parent"
    CHILD = "child"


class ResponseAction(str, Enum):
    """Actions the co-parent can take on a pending proposal."""
    APPROVE = "approve"
    DECLINE = "decline"
    MODIFY = "modify"


class CustodyType(str, Enum):
    """Custody arrangement of a child."""
    SHARED = "shared"
    SOLE = "sole"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""
    CREATE = "create"
    APPROVE = "approve"
    DECLINE = "decline"
    MODIFY = "modify"
    SIGN = "sign"
    ACTIVATE = "activate"
    EXPIRE = "expire"
    SIGNATURE_EXPIRE = "signature_expire"
    SUPERSEDE = "supersede"
