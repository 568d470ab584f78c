# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy and result objects for the agreement change workflow.

Business-rule rejections are returned as results carrying a stable error
code and a fixed message. They are never raised. Infrastructure failures
are raised by the store adapters and are not represented here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """How a caller can recover from an error."""
    VALIDATION = "validation"
    PRECONDITION = "precondition"
    CONCURRENCY = "concurrency"


class ErrorCode(str, Enum):
    """Stable error codes for proposal and signature operations."""
    VALIDATION_ERROR = "validation-error"
    NOT_FOUND = "not-found"
    NOT_GUARDIAN = "not-guardian"
    NOT_SHARED_CUSTODY = "not-shared-custody"
    NO_ACTIVE_AGREEMENT = "no-active-agreement"
    PROPOSAL_EXPIRED = "proposal-expired"
    ALREADY_RESPONDED = "already-responded"
    CANNOT_RESPOND_OWN = "cannot-respond-own"
    COOLDOWN_ACTIVE = "cooldown-active"
    RATE_LIMITED = "rate-limit"
    PENDING_EXISTS = "pending-proposal-exists"
    INVALID_ORIGINAL_PROPOSAL = "invalid-original-proposal"
    MODIFY_REQUIRES_VALUE = "modify-requires-value"
    INVALID_TRANSITION = "invalid-transition"
    NOT_AWAITING_SIGNATURES = "not-awaiting-signatures"
    NO_SIGNATURE_DEADLINE = "no-signature-deadline"
    DEADLINE_PASSED = "signature-deadline-passed"
    SIGNER_NOT_IN_LIST = "not-in-signer-list"
    SIGNER_TYPE_MISMATCH = "signer-type-mismatch"
    ALREADY_SIGNED = "already-signed"
    PARENTS_MUST_SIGN_FIRST = "parents-must-sign-first"
    CONCURRENT_MODIFICATION = "concurrent-modification"

    @property
    def category(self) -> ErrorCategory:
        if self in (ErrorCode.VALIDATION_ERROR, ErrorCode.SIGNER_TYPE_MISMATCH):
            return ErrorCategory.VALIDATION
        if self == ErrorCode.CONCURRENT_MODIFICATION:
            return ErrorCategory.CONCURRENCY
        return ErrorCategory.PRECONDITION

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "The request is not valid.",
    ErrorCode.NOT_FOUND: "Could not find the proposal.",
    ErrorCode.NOT_GUARDIAN: "You must be a guardian of this child to make this change.",
    ErrorCode.NOT_SHARED_CUSTODY: "This child is not in shared custody. Changes apply immediately.",
    ErrorCode.NO_ACTIVE_AGREEMENT: "There is no active agreement to change.",
    ErrorCode.PROPOSAL_EXPIRED: "This proposal has expired. You can create a new one.",
    ErrorCode.ALREADY_RESPONDED: "Someone already responded to this proposal.",
    ErrorCode.CANNOT_RESPOND_OWN: "You cannot approve or decline your own proposal.",
    ErrorCode.COOLDOWN_ACTIVE: "This change was recently declined. Please wait 7 days before proposing again.",
    ErrorCode.RATE_LIMITED: "You have made too many proposals. Please wait an hour.",
    ErrorCode.PENDING_EXISTS: "There is already a pending proposal for this type of change.",
    ErrorCode.INVALID_ORIGINAL_PROPOSAL: "Only a declined or modified proposal for the same change can be re-proposed.",
    ErrorCode.MODIFY_REQUIRES_VALUE: "You must provide a modified value when proposing changes.",
    ErrorCode.INVALID_TRANSITION: "This proposal cannot move to that state.",
    ErrorCode.NOT_AWAITING_SIGNATURES: "This proposal is not ready for signatures yet.",
    ErrorCode.NO_SIGNATURE_DEADLINE: "No signature deadline is set for this proposal.",
    ErrorCode.DEADLINE_PASSED: "The deadline for signatures has passed.",
    ErrorCode.SIGNER_NOT_IN_LIST: "You are not in the list of required signers.",
    ErrorCode.SIGNER_TYPE_MISMATCH: "You cannot sign as a different type of signer.",
    ErrorCode.ALREADY_SIGNED: "You have already signed this agreement change.",
    ErrorCode.PARENTS_MUST_SIGN_FIRST: "Both parents must sign before the child can sign.",
    ErrorCode.CONCURRENT_MODIFICATION: "This proposal was changed by someone else. Please try again.",
}

UNKNOWN_ERROR_MESSAGE = "Something went wrong. Please try again."


def get_error_message(code: Any) -> str:
    """Get the fixed message for an error code, falling back to a generic one."""
    try:
        return ERROR_MESSAGES[ErrorCode(code)]
    except ValueError:
        return UNKNOWN_ERROR_MESSAGE


@dataclass
class ValidationResult:
    """Result of a validation or precondition check."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, code: ErrorCode) -> "ValidationResult":
        return cls(is_valid=False, errors=[code.message], error_code=code)


@dataclass
class WorkflowResult:
    """Result of a workflow operation."""
    success: bool
    proposal: Optional[Any] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    validation_errors: List[Dict[str, Any]] = field(default_factory=list)
    related: List[Any] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        """Concurrency conflicts can be retried after re-reading."""
        return self.error_code == ErrorCode.CONCURRENT_MODIFICATION

    @classmethod
    def ok(cls, proposal: Any, related: Optional[List[Any]] = None) -> "WorkflowResult":
        return cls(success=True, proposal=proposal, related=related or [])

    @classmethod
    def fail(cls, code: ErrorCode, validation_errors: Optional[List[Dict[str, Any]]] = None) -> "WorkflowResult":
        return cls(
            success=False,
            error_code=code,
            error_message=code.message,
            validation_errors=validation_errors or []
        )

    @classmethod
    def from_check(cls, check: ValidationResult) -> "WorkflowResult":
        return cls.fail(check.error_code)


def format_validation_errors(validation_error) -> List[Dict[str, Any]]:
    """
    Format pydantic validation errors as field-level entries.

    Args:
        validation_error: pydantic ValidationError

    Returns:
        List of {field, message, type} dictionaries
    """
    errors = []

    for error in validation_error.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"]
        })

    return errors
