#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

"""
Run the proposal expiry sweeps once against MongoDB.

Meant to be scheduled (cron, Cloud Scheduler) every few minutes. Each
transition is a compare-and-set, so overlapping runs are safe.

Usage: python -m custody_api.scripts.run_sweeps
"""

import sys
import logging

from custody_api.config import ProposalPolicy, Settings
from custody_api.observability.config import setup_observability
from custody_api.services.audit import AuditService
from custody_api.services.lifecycle import ProposalLifecycleManager
from custody_api.services.mongodb import (
    MongoAgreementStore,
    MongoCustodyDirectory,
    MongoProposalStore,
    close_mongodb_connection,
    get_mongodb_service
)
from custody_api.services.rate_limit import RedisRateLimiter
from custody_api.services.store import InfrastructureError

logger = logging.getLogger(__name__)


def build_manager(settings: Settings) -> ProposalLifecycleManager:
    """Wire the lifecycle manager to MongoDB and Redis."""
    mongodb_service = get_mongodb_service()
    return ProposalLifecycleManager(
        proposal_store=MongoProposalStore(mongodb_service),
        agreement_store=MongoAgreementStore(mongodb_service),
        custody_directory=MongoCustodyDirectory(mongodb_service),
        rate_limiter=RedisRateLimiter(redis_url=settings.redis_url),
        audit_service=AuditService(mongodb_service),
        policy=ProposalPolicy.from_env()
    )


def main():
    """Expire stale proposals and missed signature deadlines."""
    settings = Settings.from_env()
    setup_observability(settings)

    try:
        manager = build_manager(settings)

        expired = manager.expire_stale_proposals()
        logger.info(
            f"Expired {len(expired.transitioned)} of {expired.examined} pending proposals "
            f"({len(expired.conflicts)} conflicts)"
        )

        lapsed = manager.expire_signature_deadlines()
        logger.info(
            f"Closed {len(lapsed.transitioned)} of {lapsed.examined} proposals awaiting signatures "
            f"({len(lapsed.conflicts)} conflicts)"
        )

    except InfrastructureError as e:
        logger.error(f"Sweep failed: {e}")
        sys.exit(1)
    finally:
        close_mongodb_connection()


if __name__ == "__main__":
    main()
