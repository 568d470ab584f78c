# SPDX-License-Identifier: Apache-2.0

"""
Signature collection domain logic.

Pure checks and transitions for proposals in awaiting_signatures. Both
parents sign in any order; the child signs last.
"""

from datetime import datetime
from typing import List

from ..models.entities import AgreementChangeProposal, AgreementSignature, ChildCustody
from ..models.enums import ProposalStatus, SignatureStatus, SignerType
from .errors import ErrorCode, ValidationResult
from .proposals import check_signature_deadline


def build_signatures(custody: ChildCustody) -> List[AgreementSignature]:
    """
    Build the pending signature records for an approved change.

    One record per guardian followed by one for the child.
    """
    signatures = [
        AgreementSignature(signer_id=guardian_id, signer_type=SignerType.PARENT)
        for guardian_id in custody.guardian_ids
    ]
    signatures.append(AgreementSignature(signer_id=custody.child_id, signer_type=SignerType.CHILD))
    return signatures


def _find_signature(proposal: AgreementChangeProposal, signer_id: str):
    for signature in proposal.signatures or []:
        if signature.signer_id == signer_id:
            return signature
    return None


def can_sign(
    proposal: AgreementChangeProposal,
    signer_id: str,
    signer_type: str,
    now: datetime
) -> ValidationResult:
    """
    Validate that a signer can sign a proposal now.

    Args:
        proposal: Proposal being signed
        signer_id: Guardian or child ID
        signer_type: parent or child
        now: Current time

    Returns:
        ValidationResult with the first failing check
    """
    if proposal.status != ProposalStatus.AWAITING_SIGNATURES:
        return ValidationResult.fail(ErrorCode.NOT_AWAITING_SIGNATURES)

    if proposal.signature_deadline is None:
        return ValidationResult.fail(ErrorCode.NO_SIGNATURE_DEADLINE)

    if check_signature_deadline(proposal, now):
        return ValidationResult.fail(ErrorCode.DEADLINE_PASSED)

    signature = _find_signature(proposal, signer_id)
    if signature is None:
        return ValidationResult.fail(ErrorCode.SIGNER_NOT_IN_LIST)

    if signature.signer_type != signer_type:
        return ValidationResult.fail(ErrorCode.SIGNER_TYPE_MISMATCH)

    if signature.is_signed():
        return ValidationResult.fail(ErrorCode.ALREADY_SIGNED)

    if signature.signer_type == SignerType.CHILD:
        parents = [s for s in proposal.signatures if s.signer_type == SignerType.PARENT]
        if not all(parent.is_signed() for parent in parents):
            return ValidationResult.fail(ErrorCode.PARENTS_MUST_SIGN_FIRST)

    return ValidationResult.ok()


def sign(proposal: AgreementChangeProposal, signer_id: str, now: datetime) -> AgreementChangeProposal:
    """
    Record a signature.

    Callers validate with can_sign first.

    Returns:
        Next revision of the proposal with the signer's record signed
    """
    if _find_signature(proposal, signer_id) is None:
        raise ValueError(f"Signer {signer_id} is not in the signature list")

    signatures = []
    for signature in proposal.signatures:
        record = signature.model_dump()
        if signature.signer_id == signer_id:
            record.update(status=SignatureStatus.SIGNED.value, signed_at=now)
        signatures.append(record)

    return proposal.evolve(
        signatures=signatures,
        updated_at=now,
        revision=proposal.revision + 1,
    )


def all_signatures_collected(proposal: AgreementChangeProposal) -> bool:
    """True iff there is at least one signature record and all are signed."""
    if not proposal.signatures:
        return False
    return all(signature.is_signed() for signature in proposal.signatures)


def pending_signers(proposal: AgreementChangeProposal) -> List[AgreementSignature]:
    """Signature records still waiting to be signed."""
    return [signature for signature in proposal.signatures or [] if not signature.is_signed()]


def pending_signature_count(proposal: AgreementChangeProposal) -> int:
    """Number of signatures still missing."""
    return len(pending_signers(proposal))
