# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import datetime, timedelta, timezone

from custody_api.models.entities import Agreement, AgreementChangeProposal, ChildCustody
from custody_api.models.enums import ProposalStatus
from custody_api.models.values import NumberValue, StringValue
from custody_api.services.clock import FixedClock
from custody_api.services.lifecycle import ProposalLifecycleManager
from custody_api.services.rate_limit import InMemoryRateLimiter
from custody_api.services.signatures import SignatureCollectionEngine
from custody_api.services.store import InMemoryStore

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['MONGODB_DATABASE'] = 'custody_agreements_test'

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
PARENT_A = "parent-a"
PARENT_B = "parent-b"
CHILD = "child-1"


@pytest.fixture
def clock():
    """Clock frozen at T0."""
    return FixedClock(T0)


@pytest.fixture
def custody():
    """Shared custody between two parents."""
    return ChildCustody(child_id=CHILD, guardian_ids=[PARENT_A, PARENT_B], custody_type="shared")


@pytest.fixture
def agreement():
    """Active agreement with a screen time limit and house rules."""
    return Agreement(
        child_id=CHILD,
        version=3,
        terms={
            "screen_time": NumberValue(value=120),
            "terms": StringValue(value="Phones stay downstairs after dinner"),
        },
        created_at=T0 - timedelta(days=90),
        updated_at=T0 - timedelta(days=90),
    )


@pytest.fixture
def store(custody, agreement):
    """In-memory stores seeded with the custody record and agreement."""
    store = InMemoryStore()
    store.custody.add(custody)
    store.agreements.create(agreement)
    return store


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def manager(store, clock, rate_limiter):
    """Lifecycle manager wired to the in-memory stores."""
    return ProposalLifecycleManager(
        proposal_store=store.proposals,
        agreement_store=store.agreements,
        custody_directory=store.custody,
        rate_limiter=rate_limiter,
        clock=clock,
    )


@pytest.fixture
def engine(manager):
    """Signature engine sharing the manager's stores and clock."""
    return SignatureCollectionEngine(manager)


@pytest.fixture
def make_proposal():
    """Factory for proposals built directly, bypassing the services."""

    def _make(**overrides):
        data = {
            "child_id": CHILD,
            "agreement_id": "agreement-1",
            "proposed_by": PARENT_A,
            "change_type": "screen_time",
            "change_description": "More screen time at weekends",
            "original_value": NumberValue(value=120),
            "proposed_value": NumberValue(value=150),
            "status": ProposalStatus.PENDING,
            "created_at": T0,
            "updated_at": T0,
            "expires_at": T0 + timedelta(days=14),
        }
        data.update(overrides)
        return AgreementChangeProposal(**data)

    return _make
