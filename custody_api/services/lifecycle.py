# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Proposal lifecycle service.

Orchestrates the agreement change workflow against the injected stores:
creating proposals, co-parent responses, activation of fully signed
proposals, supersession and the time-based sweeps. Every write to an
existing proposal or agreement goes through compare_and_set against the
revision that was read, so each logical event moves a proposal at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from opentelemetry import trace
from pydantic import ValidationError

from ..config import DEFAULT_POLICY, ProposalPolicy
from ..domain import proposals as lifecycle
from ..domain.errors import ErrorCode, WorkflowResult, format_validation_errors
from ..domain.signatures import build_signatures
from ..models.entities import AGREEMENT_ENTITY, PROPOSAL_ENTITY, AgreementChangeProposal
from ..models.enums import AuditAction, ProposalStatus, ResponseAction
from ..models.requests import CreateProposalRequest, RespondToProposalRequest
from .clock import Clock, SystemClock
from .rate_limit import RateLimiter
from .store import (
    AgreementStore,
    CustodyDirectory,
    DocumentNotFound,
    InfrastructureError,
    PendingProposalConflict,
    ProposalStore
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"
MAX_CHAIN_LENGTH = 100


@dataclass
class SweepResult:
    """Outcome of a time-based sweep."""
    examined: int = 0
    transitioned: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)


class ProposalLifecycleManager:
    """Creates, responds to, activates and expires agreement change proposals."""

    def __init__(
        self,
        proposal_store: ProposalStore,
        agreement_store: AgreementStore,
        custody_directory: CustodyDirectory,
        rate_limiter: RateLimiter,
        clock: Optional[Clock] = None,
        audit_service=None,
        policy: ProposalPolicy = DEFAULT_POLICY
    ):
        self.proposal_store = proposal_store
        self.agreement_store = agreement_store
        self.custody_directory = custody_directory
        self.rate_limiter = rate_limiter
        self.clock = clock or SystemClock()
        self.audit_service = audit_service
        self.policy = policy

    # Queries

    def get_proposal(self, proposal_id: str) -> WorkflowResult:
        """Load a proposal by ID."""
        try:
            return WorkflowResult.ok(self.proposal_store.get(proposal_id))
        except DocumentNotFound:
            return WorkflowResult.fail(ErrorCode.NOT_FOUND)

    def check_expiry(self, proposal: AgreementChangeProposal) -> bool:
        """Whether the response window has elapsed at the current time."""
        return lifecycle.check_expiry(proposal, self.clock.now())

    def can_repropose(self, child_id: str, change_type: str) -> bool:
        """Whether a change may be proposed again at the current time."""
        history = self.proposal_store.query(
            child_id=child_id,
            change_type=change_type,
            status_in=[ProposalStatus.DECLINED]
        )
        return lifecycle.can_repropose(change_type, child_id, history, self.clock.now(), self.policy)

    def get_proposal_chain(self, proposal_id: str) -> WorkflowResult:
        """
        Follow original_proposal_id references back to the first proposal.

        Returns:
            WorkflowResult with the requested proposal and, in `related`,
            the whole chain oldest first (ending with the requested proposal)
        """
        with tracer.start_as_current_span("proposal.chain") as span:
            span.set_attribute("proposal.id", proposal_id)

            try:
                proposal = self.proposal_store.get(proposal_id)
            except DocumentNotFound:
                return WorkflowResult.fail(ErrorCode.NOT_FOUND)

            chain = [proposal]
            seen = {proposal.id}
            current = proposal

            while current.original_proposal_id and len(chain) < MAX_CHAIN_LENGTH:
                if current.original_proposal_id in seen:
                    logger.warning(f"Proposal chain loops back to {current.original_proposal_id}",
                                   extra={"proposal_id": proposal_id})
                    break
                try:
                    current = self.proposal_store.get(current.original_proposal_id)
                except DocumentNotFound:
                    logger.warning(f"Proposal chain broken at {current.original_proposal_id}",
                                   extra={"proposal_id": proposal_id})
                    break
                seen.add(current.id)
                chain.append(current)

            chain.reverse()
            span.set_attribute("proposal.chain_length", len(chain))
            return WorkflowResult.ok(proposal, related=chain)

    # Commands

    def create_proposal(
        self,
        child_id: str,
        change_type: str,
        proposed_value,
        proposer_id: str,
        justification: Optional[str] = None,
        modifies_proposal_id: Optional[str] = None
    ) -> WorkflowResult:
        """
        Propose a change to a child's active agreement.

        Args:
            child_id: Child whose agreement changes
            change_type: Agreement section
            proposed_value: New value (plain Python value or tagged value)
            proposer_id: Proposing guardian
            justification: Optional reason, used as the description
            modifies_proposal_id: Declined or modified proposal this one re-proposes

        Returns:
            WorkflowResult with the pending proposal or an error code
        """
        with tracer.start_as_current_span("proposal.create") as span:
            try:
                request = CreateProposalRequest(
                    child_id=child_id,
                    change_type=change_type,
                    proposed_value=proposed_value,
                    proposer_id=proposer_id,
                    justification=justification,
                    modifies_proposal_id=modifies_proposal_id
                )
            except ValidationError as e:
                return self._rejected(span, WorkflowResult.fail(
                    ErrorCode.VALIDATION_ERROR, format_validation_errors(e)
                ))

            span.set_attributes({
                "proposal.child_id": request.child_id,
                "proposal.change_type": request.change_type,
                "proposal.proposed_by": request.proposer_id
            })
            now = self.clock.now()

            custody = self.custody_directory.get_custody(request.child_id)
            if custody is None or not custody.is_shared_custody():
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NOT_SHARED_CUSTODY))

            if not custody.is_guardian(request.proposer_id):
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NOT_GUARDIAN))

            agreement = self.agreement_store.get_active_agreement(request.child_id)
            if agreement is None:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NO_ACTIVE_AGREEMENT))

            recent = self.rate_limiter.count_recent_proposals(
                request.proposer_id, self.policy.rate_limit_window, now
            )
            if recent >= self.policy.max_proposals_per_window:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.RATE_LIMITED))

            history = self.proposal_store.query(
                child_id=request.child_id,
                change_type=request.change_type,
                status_in=[ProposalStatus.DECLINED, ProposalStatus.PENDING]
            )
            if not lifecycle.can_repropose(request.change_type, request.child_id, history, now, self.policy):
                return self._rejected(span, WorkflowResult.fail(ErrorCode.COOLDOWN_ACTIVE))

            if lifecycle.has_open_pending(request.change_type, request.child_id, history, now):
                return self._rejected(span, WorkflowResult.fail(ErrorCode.PENDING_EXISTS))

            if request.modifies_proposal_id:
                try:
                    original = self.proposal_store.get(request.modifies_proposal_id)
                except DocumentNotFound:
                    return self._rejected(span, WorkflowResult.fail(ErrorCode.NOT_FOUND))

                check = lifecycle.validate_original_proposal(original, request.child_id, request.change_type)
                if not check.is_valid:
                    return self._rejected(span, WorkflowResult.from_check(check))

            self._expire_lapsed(history, now)

            proposal = lifecycle.build_proposal(
                agreement,
                request.change_type,
                request.proposed_value,
                request.proposer_id,
                now,
                justification=request.justification,
                original_proposal_id=request.modifies_proposal_id,
                policy=self.policy
            )
            token = self.rate_limiter.acquire(
                request.proposer_id,
                self.policy.rate_limit_window,
                self.policy.max_proposals_per_window,
                now
            )
            if token is None:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.RATE_LIMITED))

            try:
                self.proposal_store.create(proposal)
            except PendingProposalConflict:
                self.rate_limiter.release(request.proposer_id, token)
                return self._rejected(span, WorkflowResult.fail(ErrorCode.PENDING_EXISTS))
            except InfrastructureError:
                self.rate_limiter.release(request.proposer_id, token)
                raise

            span.set_attributes({
                "proposal.id": proposal.id,
                "proposal.status": proposal.status
            })
            logger.info(
                f"Proposal {proposal.id} created",
                extra={
                    "proposal_id": proposal.id,
                    "child_id": proposal.child_id,
                    "change_type": proposal.change_type,
                    "proposed_by": proposal.proposed_by,
                    "original_proposal_id": proposal.original_proposal_id
                }
            )
            self.record_audit(proposal.proposed_by, proposal, AuditAction.CREATE, None, proposal)

            return WorkflowResult.ok(proposal)

    def respond(
        self,
        proposal_id: str,
        responder_id: str,
        action: str,
        decline_message: Optional[str] = None,
        modified_value=None,
        modification_note: Optional[str] = None
    ) -> WorkflowResult:
        """
        Approve, decline or counter-propose a pending proposal.

        Approval opens the proposal for signatures. A counter-proposal marks
        this proposal modified and returns the new pending proposal in
        `related`.
        """
        with tracer.start_as_current_span("proposal.respond") as span:
            try:
                request = RespondToProposalRequest(
                    proposal_id=proposal_id,
                    responder_id=responder_id,
                    action=action,
                    decline_message=decline_message,
                    modified_value=modified_value,
                    modification_note=modification_note
                )
            except ValidationError as e:
                return self._rejected(span, WorkflowResult.fail(
                    ErrorCode.VALIDATION_ERROR, format_validation_errors(e)
                ))

            span.set_attributes({
                "proposal.id": request.proposal_id,
                "proposal.action": request.action,
                "proposal.responded_by": request.responder_id
            })

            if request.action == ResponseAction.MODIFY and request.modified_value is None:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.MODIFY_REQUIRES_VALUE))

            now = self.clock.now()

            try:
                proposal = self.proposal_store.get(request.proposal_id)
            except DocumentNotFound:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NOT_FOUND))

            check = lifecycle.can_respond(proposal, request.responder_id, now)
            if not check.is_valid:
                return self._rejected(span, WorkflowResult.from_check(check))

            custody = self.custody_directory.get_custody(proposal.child_id)
            if custody is None or not custody.is_guardian(request.responder_id):
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NOT_GUARDIAN))

            related = []
            if request.action == ResponseAction.APPROVE:
                updated = lifecycle.approve_proposal(
                    proposal, request.responder_id, build_signatures(custody), now, self.policy
                )
                audit_action = AuditAction.APPROVE
            elif request.action == ResponseAction.DECLINE:
                updated = lifecycle.decline_proposal(
                    proposal, request.responder_id, now, request.decline_message
                )
                audit_action = AuditAction.DECLINE
            else:
                updated, counter = lifecycle.modify_proposal(
                    proposal,
                    request.responder_id,
                    request.modified_value,
                    now,
                    request.modification_note,
                    self.policy
                )
                related.append(counter)
                audit_action = AuditAction.MODIFY

            if not self.proposal_store.compare_and_set(proposal.id, proposal.revision, updated):
                return self.conflict(span, proposal)

            for counter in related:
                try:
                    self.proposal_store.create(counter)
                except PendingProposalConflict:
                    self._restore(proposal, updated, now)
                    return self._rejected(span, WorkflowResult.fail(ErrorCode.PENDING_EXISTS))
                except InfrastructureError:
                    self._restore(proposal, updated, now)
                    raise
                self.record_audit(counter.proposed_by, counter, AuditAction.CREATE, None, counter)

            span.set_attribute("proposal.status", updated.status)
            logger.info(
                f"Response {request.action} recorded on proposal {updated.id}",
                extra={
                    "proposal_id": updated.id,
                    "child_id": updated.child_id,
                    "change_type": updated.change_type,
                    "status": updated.status,
                    "counter_proposal_id": related[0].id if related else None
                }
            )
            self.record_audit(request.responder_id, updated, audit_action, proposal, updated)

            return WorkflowResult.ok(updated, related=related)

    def activate(self, proposal: AgreementChangeProposal, signed: AgreementChangeProposal) -> WorkflowResult:
        """
        Activate a proposal whose last signature was just recorded.

        The agreement is written first; if the proposal write then loses its
        race the agreement is restored, so a failed activation leaves
        neither document changed.

        Args:
            proposal: Proposal as read from the store
            signed: Proposal with every signature recorded, not yet stored

        Returns:
            WorkflowResult with the active proposal and, in `related`, the
            proposals it superseded
        """
        with tracer.start_as_current_span("proposal.activate") as span:
            span.set_attribute("proposal.id", proposal.id)
            now = self.clock.now()

            agreement = self.agreement_store.get_active_agreement(proposal.child_id)
            if agreement is None:
                return self._rejected(span, WorkflowResult.fail(ErrorCode.NO_ACTIVE_AGREEMENT))

            updated_agreement = lifecycle.apply_to_agreement(agreement, signed, now)
            if not self.agreement_store.compare_and_set(agreement.id, agreement.revision, updated_agreement):
                return self.conflict(span, proposal)

            active = lifecycle.activate_proposal(signed, updated_agreement.version, now)
            if not self.proposal_store.compare_and_set(proposal.id, proposal.revision, active):
                restored = agreement.evolve(updated_at=now, revision=updated_agreement.revision + 1)
                if not self.agreement_store.compare_and_set(agreement.id, updated_agreement.revision, restored):
                    logger.error(
                        f"Could not restore agreement {agreement.id} after failed activation",
                        extra={"proposal_id": proposal.id, "agreement_id": agreement.id}
                    )
                return self.conflict(span, proposal)

            span.set_attributes({
                "proposal.status": active.status,
                "agreement.version": updated_agreement.version
            })
            logger.info(
                f"Proposal {active.id} activated as agreement version {updated_agreement.version}",
                extra={
                    "proposal_id": active.id,
                    "child_id": active.child_id,
                    "change_type": active.change_type,
                    "agreement_id": agreement.id,
                    "agreement_version": updated_agreement.version
                }
            )
            self.record_audit(SYSTEM_ACTOR, active, AuditAction.ACTIVATE, proposal, active)
            self._audit_agreement(active, agreement, updated_agreement)

            superseded = self.supersede_active(active)
            return WorkflowResult.ok(active, related=superseded)

    def supersede_active(self, activated: AgreementChangeProposal) -> List[AgreementChangeProposal]:
        """
        Retire other active proposals on the same (child, section).

        Conflicts are logged and skipped; the newer proposal is already the
        authoritative value.
        """
        now = self.clock.now()
        superseded = []

        candidates = self.proposal_store.query(
            child_id=activated.child_id,
            change_type=activated.change_type,
            status_in=[ProposalStatus.ACTIVE]
        )
        for candidate in candidates:
            if candidate.id == activated.id:
                continue

            updated = lifecycle.supersede_proposal(candidate, activated.id, now)
            if not self.proposal_store.compare_and_set(candidate.id, candidate.revision, updated):
                logger.warning(
                    f"Could not supersede proposal {candidate.id}",
                    extra={"proposal_id": candidate.id, "superseded_by": activated.id}
                )
                continue

            superseded.append(updated)
            self.record_audit(SYSTEM_ACTOR, updated, AuditAction.SUPERSEDE, candidate, updated)

        if superseded:
            logger.info(
                f"Proposal {activated.id} superseded {len(superseded)} proposal(s)",
                extra={"proposal_id": activated.id, "superseded": [p.id for p in superseded]}
            )
        return superseded

    # Sweeps

    def expire_stale_proposals(self, now: Optional[datetime] = None) -> SweepResult:
        """Move pending proposals past their response window to expired."""
        return self._sweep(
            "proposal.sweep.expire",
            ProposalStatus.PENDING,
            lifecycle.check_expiry,
            lifecycle.expire_proposal,
            AuditAction.EXPIRE,
            now
        )

    def expire_signature_deadlines(self, now: Optional[datetime] = None) -> SweepResult:
        """Move proposals whose signature deadline passed to signature_expired."""
        return self._sweep(
            "proposal.sweep.signature_expire",
            ProposalStatus.AWAITING_SIGNATURES,
            lifecycle.check_signature_deadline,
            lifecycle.expire_signatures,
            AuditAction.SIGNATURE_EXPIRE,
            now
        )

    def _sweep(self, span_name, status, is_due, transition, audit_action, now) -> SweepResult:
        now = now or self.clock.now()
        result = SweepResult()

        with tracer.start_as_current_span(span_name) as span:
            for proposal in self.proposal_store.query(status_in=[status]):
                result.examined += 1
                if not is_due(proposal, now):
                    continue

                updated = transition(proposal, now)
                if self.proposal_store.compare_and_set(proposal.id, proposal.revision, updated):
                    result.transitioned.append(proposal.id)
                    self.record_audit(SYSTEM_ACTOR, updated, audit_action, proposal, updated)
                else:
                    result.conflicts.append(proposal.id)

            span.set_attributes({
                "sweep.examined": result.examined,
                "sweep.transitioned": len(result.transitioned),
                "sweep.conflicts": len(result.conflicts)
            })

        logger.info(
            f"Sweep {span_name} moved {len(result.transitioned)} proposal(s)",
            extra={
                "examined": result.examined,
                "transitioned": len(result.transitioned),
                "conflicts": len(result.conflicts)
            }
        )
        return result

    # Helpers

    def _expire_lapsed(self, proposals: List[AgreementChangeProposal], now: datetime) -> None:
        """Close pending proposals whose response window has passed."""
        for proposal in proposals:
            if proposal.status != ProposalStatus.PENDING or not lifecycle.check_expiry(proposal, now):
                continue
            expired = lifecycle.expire_proposal(proposal, now)
            if self.proposal_store.compare_and_set(proposal.id, proposal.revision, expired):
                self.record_audit(SYSTEM_ACTOR, expired, AuditAction.EXPIRE, proposal, expired)

    def _restore(self, proposal: AgreementChangeProposal, updated: AgreementChangeProposal, now: datetime) -> None:
        """Put a proposal back as it was read after a follow-up write failed."""
        restored = proposal.evolve(updated_at=now, revision=updated.revision + 1)
        extra = {"proposal_id": proposal.id, "expected_revision": updated.revision}
        try:
            committed = self.proposal_store.compare_and_set(proposal.id, updated.revision, restored)
        except (PendingProposalConflict, InfrastructureError):
            logger.error(f"Could not restore proposal {proposal.id}", extra=extra, exc_info=True)
            return
        if not committed:
            logger.error(f"Could not restore proposal {proposal.id}", extra=extra)

    def _rejected(self, span, result: WorkflowResult) -> WorkflowResult:
        span.set_attribute("proposal.error_code", result.error_code.value)
        logger.info(
            f"Proposal operation rejected: {result.error_code.value}",
            extra={"error_code": result.error_code.value}
        )
        return result

    def conflict(self, span, proposal: AgreementChangeProposal) -> WorkflowResult:
        span.set_attribute("proposal.error_code", ErrorCode.CONCURRENT_MODIFICATION.value)
        logger.warning(
            f"Concurrent modification of proposal {proposal.id}",
            extra={
                "proposal_id": proposal.id,
                "expected_revision": proposal.revision,
                "error_code": ErrorCode.CONCURRENT_MODIFICATION.value
            }
        )
        return WorkflowResult.fail(ErrorCode.CONCURRENT_MODIFICATION)

    def record_audit(self, actor_id, proposal, action, before, after) -> None:
        if self.audit_service is None:
            return
        self.audit_service.log_action(
            actor_id=actor_id,
            child_id=proposal.child_id,
            entity=PROPOSAL_ENTITY,
            entity_id=proposal.id,
            action=action,
            before=before.to_document() if before is not None else None,
            after=after.to_document() if after is not None else None
        )

    def _audit_agreement(self, proposal, before, after) -> None:
        if self.audit_service is None:
            return
        self.audit_service.log_action(
            actor_id=SYSTEM_ACTOR,
            child_id=proposal.child_id,
            entity=AGREEMENT_ENTITY,
            entity_id=after.id,
            action=AuditAction.ACTIVATE,
            before=before.to_document(),
            after=after.to_document()
        )
