# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for signature collection: the pure checks and the engine.
"""

import logging
import pytest
from datetime import timedelta
from unittest.mock import patch

from custody_api.domain import signatures as signing
from custody_api.domain.errors import ErrorCategory, ErrorCode
from custody_api.domain.proposals import approve_proposal
from custody_api.models.enums import ProposalStatus, SignatureStatus
from custody_api.models.values import NumberValue
from custody_api.tests.conftest import CHILD, PARENT_A, PARENT_B, T0

MS = timedelta(milliseconds=1)


@pytest.fixture
def awaiting(make_proposal, custody):
    """Proposal approved at T0 and waiting for signatures."""
    proposal = make_proposal(created_at=T0 - timedelta(days=1), expires_at=T0 + timedelta(days=13))
    return approve_proposal(proposal, PARENT_B, signing.build_signatures(custody), T0)


def approved_through_manager(manager, clock):
    """Create a proposal a day before T0 and approve it at T0."""
    clock.set(T0 - timedelta(days=1))
    created = manager.create_proposal(CHILD, "screen_time", 150, PARENT_A)
    assert created.success

    clock.set(T0)
    approved = manager.respond(created.proposal.id, PARENT_B, "approve")
    assert approved.success
    return approved.proposal


class TestCanSign:
    """Test signature preconditions in order."""

    def test_not_awaiting_signatures(self, make_proposal):
        result = signing.can_sign(make_proposal(), PARENT_A, "parent", T0)
        assert result.error_code == ErrorCode.NOT_AWAITING_SIGNATURES

    def test_no_signature_deadline(self, awaiting):
        # model_copy skips validation, so the record can lack a deadline
        broken = awaiting.model_copy(update={"signature_deadline": None})
        result = signing.can_sign(broken, PARENT_A, "parent", T0)

        assert result.error_code == ErrorCode.NO_SIGNATURE_DEADLINE

    def test_deadline_boundary(self, awaiting):
        """Test signing closes at the deadline instant."""
        deadline = T0 + timedelta(days=30)
        assert awaiting.signature_deadline == deadline

        assert signing.can_sign(awaiting, PARENT_A, "parent", deadline - MS).is_valid
        assert signing.can_sign(awaiting, PARENT_A, "parent", deadline).error_code == ErrorCode.DEADLINE_PASSED

    def test_deadline_passed_regardless_of_remaining(self, awaiting):
        """Test a signer one millisecond late is rejected even with records unsigned."""
        late = T0 + timedelta(days=30) + MS

        for signer_id, signer_type in [(PARENT_A, "parent"), (PARENT_B, "parent"), (CHILD, "child")]:
            result = signing.can_sign(awaiting, signer_id, signer_type, late)
            assert result.error_code == ErrorCode.DEADLINE_PASSED
            assert result.errors == ["The deadline for signatures has passed."]

    def test_not_in_signer_list(self, awaiting):
        result = signing.can_sign(awaiting, "grandma", "parent", T0)
        assert result.error_code == ErrorCode.SIGNER_NOT_IN_LIST

    def test_already_signed(self, awaiting):
        signed = signing.sign(awaiting, PARENT_A, T0)
        result = signing.can_sign(signed, PARENT_A, "parent", T0 + timedelta(hours=1))

        assert result.error_code == ErrorCode.ALREADY_SIGNED

    def test_child_signs_last(self, awaiting):
        """Test the child is rejected until every parent has signed."""
        assert signing.can_sign(awaiting, CHILD, "child", T0).error_code == ErrorCode.PARENTS_MUST_SIGN_FIRST

        one_parent = signing.sign(awaiting, PARENT_A, T0)
        assert signing.can_sign(one_parent, CHILD, "child", T0).error_code == ErrorCode.PARENTS_MUST_SIGN_FIRST

        both_parents = signing.sign(one_parent, PARENT_B, T0)
        assert signing.can_sign(both_parents, CHILD, "child", T0).is_valid

    def test_signer_type_must_match_record(self, awaiting):
        """Test signers cannot sign under the other signer type."""
        as_parent = signing.can_sign(awaiting, CHILD, "parent", T0)
        assert as_parent.error_code == ErrorCode.SIGNER_TYPE_MISMATCH
        assert as_parent.errors == ["You cannot sign as a different type of signer."]

        as_child = signing.can_sign(awaiting, PARENT_A, "child", T0)
        assert as_child.error_code == ErrorCode.SIGNER_TYPE_MISMATCH
        assert ErrorCode.SIGNER_TYPE_MISMATCH.category == ErrorCategory.VALIDATION


class TestSign:
    """Test recording signatures."""

    def test_sign_marks_record(self, awaiting):
        now = T0 + timedelta(hours=3)
        signed = signing.sign(awaiting, PARENT_B, now)

        record = next(s for s in signed.signatures if s.signer_id == PARENT_B)
        assert record.status == SignatureStatus.SIGNED
        assert record.signed_at == now
        assert signed.revision == awaiting.revision + 1
        assert signing.pending_signature_count(signed) == 2
        assert [s.signer_id for s in signing.pending_signers(signed)] == [PARENT_A, CHILD]

    def test_parent_order_is_commutative(self, awaiting):
        """Test parent A then B and B then A give the same proposal."""
        now = T0 + timedelta(days=1)

        a_then_b = signing.sign(signing.sign(awaiting, PARENT_A, now), PARENT_B, now)
        b_then_a = signing.sign(signing.sign(awaiting, PARENT_B, now), PARENT_A, now)

        assert a_then_b == b_then_a

    def test_unknown_signer(self, awaiting):
        with pytest.raises(ValueError):
            signing.sign(awaiting, "grandma", T0)

    def test_all_signatures_collected(self, awaiting, make_proposal):
        assert signing.all_signatures_collected(make_proposal()) is False
        assert signing.all_signatures_collected(awaiting) is False

        signed = awaiting
        for signer_id in (PARENT_A, PARENT_B, CHILD):
            signed = signing.sign(signed, signer_id, T0)

        assert signing.all_signatures_collected(signed) is True
        assert signing.pending_signature_count(signed) == 0


class TestSignatureCollectionEngine:
    """Test signing through the engine against in-memory stores."""

    def test_full_signing_scenario(self, manager, engine, clock, store):
        """Test approval at T0, parents sign, child signs early and then on time."""
        proposal = approved_through_manager(manager, clock)

        clock.set(T0 + timedelta(hours=2))
        assert engine.sign(proposal.id, PARENT_A, "parent").success

        clock.set(T0 + timedelta(days=1) - timedelta(seconds=1))
        early = engine.sign(proposal.id, CHILD, "child")
        assert not early.success
        assert early.error_code == ErrorCode.PARENTS_MUST_SIGN_FIRST

        clock.set(T0 + timedelta(days=1))
        second = engine.sign(proposal.id, PARENT_B, "parent")
        assert second.success
        assert second.proposal.status == ProposalStatus.AWAITING_SIGNATURES

        clock.set(T0 + timedelta(days=1, seconds=1))
        final = engine.sign(proposal.id, CHILD, "child")

        assert final.success
        assert final.proposal.status == ProposalStatus.ACTIVE
        assert final.proposal.activated_at == T0 + timedelta(days=1, seconds=1)
        assert final.proposal.new_agreement_version == 4

        agreement = store.agreements.get_active_agreement(CHILD)
        assert agreement.version == 4
        assert agreement.last_proposal_id == proposal.id
        assert agreement.current_value("screen_time") == final.proposal.proposed_value
        assert store.proposals.get(proposal.id).status == ProposalStatus.ACTIVE

    def test_late_signature_rejected(self, manager, engine, clock):
        proposal = approved_through_manager(manager, clock)

        clock.set(T0 + timedelta(days=30) + MS)
        result = engine.sign(proposal.id, PARENT_A, "parent")

        assert result.error_code == ErrorCode.DEADLINE_PASSED

    def test_unknown_proposal(self, engine):
        result = engine.sign("missing", PARENT_A, "parent")
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_invalid_request(self, engine):
        result = engine.sign("p1", PARENT_A, "grandparent")

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.validation_errors[0]["field"] == "signer_type"

    def test_concurrent_signature_conflict(self, manager, engine, clock, store):
        """Test a lost race leaves the stored proposal untouched and is retryable."""
        proposal = approved_through_manager(manager, clock)

        with patch.object(store.proposals, "compare_and_set", return_value=False):
            result = engine.sign(proposal.id, PARENT_A, "parent")

        assert not result.success
        assert result.error_code == ErrorCode.CONCURRENT_MODIFICATION
        assert result.retryable
        assert signing.pending_signature_count(store.proposals.get(proposal.id)) == 3

    def test_failed_activation_restores_agreement(self, manager, engine, clock, store):
        """Test the agreement is put back when the proposal write loses its race."""
        proposal = approved_through_manager(manager, clock)
        clock.set(T0 + timedelta(hours=1))
        engine.sign(proposal.id, PARENT_A, "parent")
        engine.sign(proposal.id, PARENT_B, "parent")
        before = store.agreements.get_active_agreement(CHILD)

        with patch.object(store.proposals, "compare_and_set", return_value=False):
            result = engine.sign(proposal.id, CHILD, "child")

        assert result.error_code == ErrorCode.CONCURRENT_MODIFICATION

        after = store.agreements.get_active_agreement(CHILD)
        assert after.version == before.version
        assert after.terms == before.terms
        assert after.revision == before.revision + 2
        assert store.proposals.get(proposal.id).status == ProposalStatus.AWAITING_SIGNATURES

    def test_activation_supersedes_older_active(self, manager, engine, clock, store):
        """Test a newly active proposal retires the previous active one on the same section."""
        first = approved_through_manager(manager, clock)
        clock.set(T0 + timedelta(hours=1))
        for signer_id, signer_type in [(PARENT_A, "parent"), (PARENT_B, "parent"), (CHILD, "child")]:
            assert engine.sign(first.id, signer_id, signer_type).success

        clock.set(T0 + timedelta(days=2))
        second = manager.create_proposal(CHILD, "screen_time", NumberValue(value=100), PARENT_B)
        assert second.success
        assert second.proposal.original_value == NumberValue(value=150)

        clock.set(T0 + timedelta(days=3))
        assert manager.respond(second.proposal.id, PARENT_A, "approve").success
        for signer_id, signer_type in [(PARENT_B, "parent"), (PARENT_A, "parent"), (CHILD, "child")]:
            result = engine.sign(second.proposal.id, signer_id, signer_type)
            assert result.success

        assert result.proposal.status == ProposalStatus.ACTIVE
        assert result.proposal.new_agreement_version == 5
        assert [p.id for p in result.related] == [first.id]

        retired = store.proposals.get(first.id)
        assert retired.status == ProposalStatus.SUPERSEDED
        assert retired.superseded_by_proposal_id == second.proposal.id
        assert store.agreements.get_active_agreement(CHILD).current_value("screen_time") == NumberValue(value=100)

    def test_engine_pending_signers(self, manager, engine, clock):
        proposal = approved_through_manager(manager, clock)
        engine.sign(proposal.id, PARENT_B, "parent")

        assert [s.signer_id for s in engine.pending_signers(proposal.id)] == [PARENT_A, CHILD]

    def test_failed_activation_keeps_last_signature_open(self, manager, engine, clock, store, caplog):
        """Test the last signer is told to retry when the agreement is gone."""
        proposal = approved_through_manager(manager, clock)
        engine.sign(proposal.id, PARENT_A, "parent")
        engine.sign(proposal.id, PARENT_B, "parent")

        with patch.object(store.agreements, "get_active_agreement", return_value=None):
            with caplog.at_level(logging.WARNING, logger="custody_api.services.signatures"):
                result = engine.sign(proposal.id, CHILD, "child")

        assert result.error_code == ErrorCode.NO_ACTIVE_AGREEMENT
        assert f"Final signature on proposal {proposal.id} not recorded" in caplog.text
        assert [s.signer_id for s in engine.pending_signers(proposal.id)] == [CHILD]
        assert engine.sign(proposal.id, CHILD, "child").success
