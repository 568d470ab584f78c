# SPDX-License-Identifier: Apache-2.0

"""
Proposal lifecycle domain logic.

This module contains pure functions for the agreement change proposal state
machine: deadline maths, response and re-proposal checks, and the builders
that produce the next version of a proposal for each transition. Nothing
here reads the clock or touches storage; callers pass `now` explicitly.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from ..config import DEFAULT_POLICY, ProposalPolicy
from ..models.entities import Agreement, AgreementChangeProposal, AgreementSignature
from ..models.enums import AgreementChangeType, ProposalStatus
from .errors import ErrorCode, ValidationResult
from .formatting import describe_change


VALID_TRANSITIONS = {
    ProposalStatus.PENDING: [
        ProposalStatus.APPROVED,
        ProposalStatus.DECLINED,
        ProposalStatus.MODIFIED,
        ProposalStatus.EXPIRED,
    ],
    ProposalStatus.APPROVED: [ProposalStatus.AWAITING_SIGNATURES],
    ProposalStatus.AWAITING_SIGNATURES: [ProposalStatus.ACTIVE, ProposalStatus.SIGNATURE_EXPIRED],
    ProposalStatus.ACTIVE: [ProposalStatus.SUPERSEDED],
    ProposalStatus.DECLINED: [],  # Terminal state
    ProposalStatus.EXPIRED: [],  # Terminal state
    ProposalStatus.MODIFIED: [],  # Terminal state
    ProposalStatus.SUPERSEDED: [],  # Terminal state
    ProposalStatus.SIGNATURE_EXPIRED: [],  # Terminal state
}


def validate_status_transition(current_status: str, new_status: str) -> ValidationResult:
    """
    Validate a proposal status transition.

    Args:
        current_status: Current proposal status
        new_status: Desired new status

    Returns:
        ValidationResult with validation status and errors
    """
    allowed = VALID_TRANSITIONS.get(ProposalStatus(current_status), [])
    if ProposalStatus(new_status) not in allowed:
        result = ValidationResult.fail(ErrorCode.INVALID_TRANSITION)
        result.errors.append(f"Invalid status transition from {current_status} to {new_status}")
        return result
    return ValidationResult.ok()


def is_modification(proposal: AgreementChangeProposal) -> bool:
    """Check if a proposal counter-proposes or re-proposes another one."""
    return proposal.is_modification()


def calculate_expiry(created_at: datetime, policy: ProposalPolicy = DEFAULT_POLICY) -> datetime:
    """End of the response window for a proposal created at `created_at`."""
    return created_at + policy.response_window


def check_expiry(proposal: AgreementChangeProposal, now: datetime) -> bool:
    """
    Check whether the response window has elapsed.

    Expiry is derived from the clock, so this is true once `now >= expires_at`
    whatever status is stored.
    """
    return now >= proposal.expires_at


def time_until_expiry(proposal: AgreementChangeProposal, now: datetime) -> timedelta:
    """Time left to respond, never negative."""
    remaining = proposal.expires_at - now
    return max(remaining, timedelta(0))


def calculate_reproposal_date(responded_at: datetime, policy: ProposalPolicy = DEFAULT_POLICY) -> datetime:
    """Earliest time the same change may be proposed again after a decline."""
    return responded_at + policy.reproposal_cooldown


def calculate_signature_deadline(approved_at: datetime, policy: ProposalPolicy = DEFAULT_POLICY) -> datetime:
    """End of the signature window for a proposal approved at `approved_at`."""
    return approved_at + policy.signature_window


def check_signature_deadline(proposal: AgreementChangeProposal, now: datetime) -> bool:
    """Check whether the signature deadline has passed. False when no deadline is set."""
    if proposal.signature_deadline is None:
        return False
    return now >= proposal.signature_deadline


def find_latest_decline(
    change_type: str,
    child_id: str,
    history: Iterable[AgreementChangeProposal]
) -> Optional[AgreementChangeProposal]:
    """Most recently responded declined proposal for a (child, section) pair."""
    change_type = AgreementChangeType(change_type)
    latest = None

    for proposal in history:
        if proposal.child_id != child_id or proposal.change_type != change_type:
            continue
        if proposal.status != ProposalStatus.DECLINED or proposal.responded_at is None:
            continue
        if latest is None or proposal.responded_at > latest.responded_at:
            latest = proposal

    return latest


def can_repropose(
    change_type: str,
    child_id: str,
    history: Iterable[AgreementChangeProposal],
    now: datetime,
    policy: ProposalPolicy = DEFAULT_POLICY
) -> bool:
    """
    Check whether a change may be proposed again after a decline.

    Args:
        change_type: Agreement section
        child_id: Child whose agreement would change
        history: Previous proposals (any child or section; others are ignored)
        now: Current time
        policy: Time windows

    Returns:
        True if there is no decline, or the cooldown has elapsed
    """
    latest = find_latest_decline(change_type, child_id, history)
    if latest is None:
        return True
    return now >= calculate_reproposal_date(latest.responded_at, policy)


def has_open_pending(
    change_type: str,
    child_id: str,
    history: Iterable[AgreementChangeProposal],
    now: datetime
) -> bool:
    """Check for an unexpired pending proposal on the same section."""
    change_type = AgreementChangeType(change_type)
    return any(
        proposal.child_id == child_id
        and proposal.change_type == change_type
        and proposal.status == ProposalStatus.PENDING
        and not check_expiry(proposal, now)
        for proposal in history
    )


def can_respond(proposal: AgreementChangeProposal, responder_id: str, now: datetime) -> ValidationResult:
    """
    Validate that a guardian can respond to a proposal.

    Guardianship is checked by the caller against the custody directory.
    """
    if proposal.status == ProposalStatus.EXPIRED:
        return ValidationResult.fail(ErrorCode.PROPOSAL_EXPIRED)

    if proposal.status != ProposalStatus.PENDING:
        return ValidationResult.fail(ErrorCode.ALREADY_RESPONDED)

    if check_expiry(proposal, now):
        return ValidationResult.fail(ErrorCode.PROPOSAL_EXPIRED)

    if responder_id == proposal.proposed_by:
        return ValidationResult.fail(ErrorCode.CANNOT_RESPOND_OWN)

    return ValidationResult.ok()


def validate_original_proposal(
    original: AgreementChangeProposal,
    child_id: str,
    change_type: str
) -> ValidationResult:
    """A re-proposal may only follow a declined or modified proposal for the same section."""
    if original.status not in (ProposalStatus.DECLINED, ProposalStatus.MODIFIED):
        return ValidationResult.fail(ErrorCode.INVALID_ORIGINAL_PROPOSAL)

    if original.child_id != child_id or original.change_type != AgreementChangeType(change_type):
        return ValidationResult.fail(ErrorCode.INVALID_ORIGINAL_PROPOSAL)

    return ValidationResult.ok()


def build_proposal(
    agreement: Agreement,
    change_type: str,
    proposed_value,
    proposer_id: str,
    now: datetime,
    justification: Optional[str] = None,
    original_proposal_id: Optional[str] = None,
    modification_note: Optional[str] = None,
    policy: ProposalPolicy = DEFAULT_POLICY
) -> AgreementChangeProposal:
    """
    Build a new pending proposal against an agreement.

    The original value is copied from the agreement so the proposal keeps
    the diff it was approved on, even if the agreement changes later.
    """
    original_value = agreement.current_value(change_type)
    description = justification or describe_change(change_type, original_value, proposed_value)

    return AgreementChangeProposal(
        child_id=agreement.child_id,
        agreement_id=agreement.id,
        proposed_by=proposer_id,
        change_type=change_type,
        change_description=description,
        original_value=original_value,
        proposed_value=proposed_value,
        status=ProposalStatus.PENDING,
        created_at=now,
        updated_at=now,
        expires_at=calculate_expiry(now, policy),
        original_proposal_id=original_proposal_id,
        modification_note=modification_note,
    )


def _transition(proposal: AgreementChangeProposal, new_status: str, now: datetime, **changes):
    """Next revision of a proposal in a new status."""
    validation = validate_status_transition(proposal.status, new_status)
    if not validation.is_valid:
        raise ValueError(validation.errors[-1])

    return proposal.evolve(
        status=new_status,
        updated_at=now,
        revision=proposal.revision + 1,
        **changes
    )


def approve_proposal(
    proposal: AgreementChangeProposal,
    responder_id: str,
    signatures: List[AgreementSignature],
    now: datetime,
    policy: ProposalPolicy = DEFAULT_POLICY
) -> AgreementChangeProposal:
    """
    Approve a pending proposal and open it for signatures.

    Approval and signature initialization are a single write: the stored
    proposal goes straight from pending to awaiting_signatures.
    """
    validation = validate_status_transition(proposal.status, ProposalStatus.APPROVED)
    if not validation.is_valid:
        raise ValueError(validation.errors[-1])

    return _transition(
        proposal.model_copy(update={"status": ProposalStatus.APPROVED.value}),
        ProposalStatus.AWAITING_SIGNATURES,
        now,
        responded_by=responder_id,
        responded_at=now,
        signatures=[signature.model_dump() for signature in signatures],
        signature_deadline=calculate_signature_deadline(now, policy),
    )


def decline_proposal(
    proposal: AgreementChangeProposal,
    responder_id: str,
    now: datetime,
    decline_message: Optional[str] = None
) -> AgreementChangeProposal:
    """Decline a pending proposal."""
    return _transition(
        proposal,
        ProposalStatus.DECLINED,
        now,
        responded_by=responder_id,
        responded_at=now,
        decline_message=decline_message,
    )


def modify_proposal(
    proposal: AgreementChangeProposal,
    responder_id: str,
    modified_value,
    now: datetime,
    modification_note: Optional[str] = None,
    policy: ProposalPolicy = DEFAULT_POLICY
) -> Tuple[AgreementChangeProposal, AgreementChangeProposal]:
    """
    Counter-propose a different value for a pending proposal.

    Returns:
        Tuple of (source marked modified, new pending counter-proposal)
    """
    counter = AgreementChangeProposal(
        child_id=proposal.child_id,
        agreement_id=proposal.agreement_id,
        proposed_by=responder_id,
        change_type=proposal.change_type,
        change_description=modification_note or describe_change(
            proposal.change_type, proposal.original_value, modified_value
        ),
        original_value=proposal.original_value,
        proposed_value=modified_value,
        status=ProposalStatus.PENDING,
        created_at=now,
        updated_at=now,
        expires_at=calculate_expiry(now, policy),
        original_proposal_id=proposal.id,
        modification_note=modification_note,
    )

    source = _transition(
        proposal,
        ProposalStatus.MODIFIED,
        now,
        responded_by=responder_id,
        responded_at=now,
        modification_note=modification_note,
        superseded_by_proposal_id=counter.id,
    )

    return source, counter


def expire_proposal(proposal: AgreementChangeProposal, now: datetime) -> AgreementChangeProposal:
    """Expire a pending proposal whose response window elapsed."""
    return _transition(proposal, ProposalStatus.EXPIRED, now)


def expire_signatures(proposal: AgreementChangeProposal, now: datetime) -> AgreementChangeProposal:
    """Close a proposal whose signature deadline elapsed before everyone signed."""
    return _transition(proposal, ProposalStatus.SIGNATURE_EXPIRED, now)


def activate_proposal(
    proposal: AgreementChangeProposal,
    new_agreement_version: int,
    now: datetime
) -> AgreementChangeProposal:
    """Make a fully signed proposal the active value of its section."""
    return _transition(
        proposal,
        ProposalStatus.ACTIVE,
        now,
        activated_at=now,
        new_agreement_version=new_agreement_version,
    )


def supersede_proposal(
    proposal: AgreementChangeProposal,
    superseded_by_id: str,
    now: datetime
) -> AgreementChangeProposal:
    """Retire an active proposal replaced by a newer one on the same section."""
    return _transition(
        proposal,
        ProposalStatus.SUPERSEDED,
        now,
        superseded_by_proposal_id=superseded_by_id,
    )


def apply_to_agreement(
    agreement: Agreement,
    proposal: AgreementChangeProposal,
    now: datetime
) -> Agreement:
    """Next agreement version carrying the proposal's value."""
    terms = {key: value.model_dump() for key, value in agreement.terms.items()}
    terms[AgreementChangeType(proposal.change_type).value] = proposal.proposed_value.model_dump()

    return agreement.evolve(
        version=agreement.version + 1,
        terms=terms,
        last_proposal_id=proposal.id,
        updated_at=now,
        revision=agreement.revision + 1,
    )
