# SPDX-License-Identifier: Apache-2.0

"""
Signature collection service.

Records signatures on approved proposals and hands the proposal to the
lifecycle manager for activation when the last signature lands.
"""

import logging
from typing import List

from opentelemetry import trace
from pydantic import ValidationError

from ..domain import signatures as signing
from ..domain.errors import ErrorCode, WorkflowResult, format_validation_errors
from ..models.entities import AgreementSignature
from ..models.enums import AuditAction
from ..models.requests import SignAgreementChangeRequest
from .lifecycle import ProposalLifecycleManager
from .store import DocumentNotFound

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SignatureCollectionEngine:
    """Collects parent and child signatures on approved agreement changes."""

    def __init__(self, lifecycle_manager: ProposalLifecycleManager):
        self.lifecycle = lifecycle_manager
        self.proposal_store = lifecycle_manager.proposal_store
        self.clock = lifecycle_manager.clock

    def sign(self, proposal_id: str, signer_id: str, signer_type: str) -> WorkflowResult:
        """
        Sign an approved proposal.

        Args:
            proposal_id: Proposal awaiting signatures
            signer_id: Guardian or child ID
            signer_type: parent or child

        Returns:
            WorkflowResult with the updated proposal; when this was the last
            signature the proposal is active and `related` lists the
            proposals it superseded. If activation fails nothing is stored,
            not even this signature, and the signer signs again
        """
        with tracer.start_as_current_span("proposal.sign") as span:
            try:
                request = SignAgreementChangeRequest(
                    proposal_id=proposal_id,
                    signer_id=signer_id,
                    signer_type=signer_type
                )
            except ValidationError as e:
                return WorkflowResult.fail(ErrorCode.VALIDATION_ERROR, format_validation_errors(e))

            span.set_attributes({
                "proposal.id": request.proposal_id,
                "signature.signer_id": request.signer_id,
                "signature.signer_type": request.signer_type
            })
            now = self.clock.now()

            try:
                proposal = self.proposal_store.get(request.proposal_id)
            except DocumentNotFound:
                return WorkflowResult.fail(ErrorCode.NOT_FOUND)

            check = signing.can_sign(proposal, request.signer_id, request.signer_type, now)
            if not check.is_valid:
                span.set_attribute("proposal.error_code", check.error_code.value)
                logger.info(
                    f"Signature rejected on proposal {proposal.id}: {check.error_code.value}",
                    extra={
                        "proposal_id": proposal.id,
                        "signer_id": request.signer_id,
                        "error_code": check.error_code.value
                    }
                )
                return WorkflowResult.from_check(check)

            signed = signing.sign(proposal, request.signer_id, now)
            remaining = signing.pending_signature_count(signed)
            span.set_attribute("signature.remaining", remaining)

            if signing.all_signatures_collected(signed):
                result = self.lifecycle.activate(proposal, signed)
                if not result.success:
                    logger.warning(
                        f"Final signature on proposal {proposal.id} not recorded: {result.error_code.value}",
                        extra={
                            "proposal_id": proposal.id,
                            "signer_id": request.signer_id,
                            "error_code": result.error_code.value
                        }
                    )
                    return result

                self.lifecycle.record_audit(request.signer_id, result.proposal, AuditAction.SIGN, proposal, signed)
                return result

            if not self.proposal_store.compare_and_set(proposal.id, proposal.revision, signed):
                return self.lifecycle.conflict(span, proposal)

            logger.info(
                f"Proposal {proposal.id} signed by {request.signer_id}",
                extra={
                    "proposal_id": proposal.id,
                    "signer_id": request.signer_id,
                    "signer_type": request.signer_type,
                    "remaining_signatures": remaining
                }
            )
            self.lifecycle.record_audit(request.signer_id, signed, AuditAction.SIGN, proposal, signed)

            return WorkflowResult.ok(signed)

    def pending_signers(self, proposal_id: str) -> List[AgreementSignature]:
        """Signature records still missing on a proposal."""
        return signing.pending_signers(self.proposal_store.get(proposal_id))
