# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Workflow orchestration, storage adapters and side effects.
"""

from .clock import Clock, SystemClock, FixedClock
from .store import (
    ProposalStore,
    AgreementStore,
    CustodyDirectory,
    DocumentNotFound,
    InfrastructureError,
    InMemoryStore
)
from .rate_limit import RateLimiter, InMemoryRateLimiter, RedisRateLimiter
from .lifecycle import ProposalLifecycleManager, SweepResult
from .signatures import SignatureCollectionEngine

__all__ = [
    "Clock",
    "SystemClock",
    "FixedClock",
    "ProposalStore",
    "AgreementStore",
    "CustodyDirectory",
    "DocumentNotFound",
    "InfrastructureError",
    "InMemoryStore",
    "RateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "ProposalLifecycleManager",
    "SweepResult",
    "SignatureCollectionEngine"
]
