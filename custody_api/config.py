# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Configuration for the agreement change workflow.

Field limits are fixed storage constraints. Time windows and rate limits are
carried by an immutable ProposalPolicy that is injected into the services,
so tests can run the workflow with synthetic clocks and limits.
"""

import os
from datetime import timedelta
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


# Maximum string lengths for stored proposal fields
FIELD_LIMITS: Dict[str, int] = {
    "id": 128,
    "child_id": 128,
    "agreement_id": 128,
    "proposed_by": 128,
    "responded_by": 128,
    "original_proposal_id": 128,
    "decline_message": 500,
    "modification_note": 500,
    "change_description": 2000,
    "original_value": 10000,
    "proposed_value": 10000,
}

# Maximum length of a single entry in a list value (app lists etc.)
LIST_ITEM_MAX_LENGTH = 256

RESPONSE_WINDOW = timedelta(days=14)
REPROPOSAL_COOLDOWN = timedelta(days=7)
SIGNATURE_WINDOW = timedelta(days=30)
MAX_PROPOSALS_PER_HOUR = 10
RATE_LIMIT_WINDOW = timedelta(hours=1)


class ProposalPolicy(BaseModel):
    """Time windows and limits governing the proposal workflow."""

    model_config = ConfigDict(frozen=True)

    response_window: timedelta = Field(default=RESPONSE_WINDOW, description="Time the co-parent has to respond")
    reproposal_cooldown: timedelta = Field(default=REPROPOSAL_COOLDOWN, description="Wait after a decline")
    signature_window: timedelta = Field(default=SIGNATURE_WINDOW, description="Time to collect signatures")
    max_proposals_per_window: int = Field(default=MAX_PROPOSALS_PER_HOUR, ge=1, description="Proposals allowed per window")
    rate_limit_window: timedelta = Field(default=RATE_LIMIT_WINDOW, description="Rate limit window")

    @classmethod
    def from_env(cls) -> "ProposalPolicy":
        """Build a policy, letting environment variables override the defaults."""
        return cls(
            response_window=timedelta(days=float(os.getenv("PROPOSAL_RESPONSE_WINDOW_DAYS", "14"))),
            reproposal_cooldown=timedelta(days=float(os.getenv("PROPOSAL_REPROPOSAL_COOLDOWN_DAYS", "7"))),
            signature_window=timedelta(days=float(os.getenv("PROPOSAL_SIGNATURE_WINDOW_DAYS", "30"))),
            max_proposals_per_window=int(os.getenv("PROPOSAL_MAX_PER_HOUR", "10")),
        )


DEFAULT_POLICY = ProposalPolicy()


class Settings(BaseModel):
    """Runtime settings for the infrastructure adapters."""

    model_config = ConfigDict(frozen=True)

    environment: str = "development"
    mongodb_uri: str = "mongodb://localhost:27017/custody_agreements_dev"
    mongodb_database: str = "custody_agreements_dev"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1
    redis_url: str = "redis://localhost:6379"
    otel_enabled: bool = True
    service_version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from environment variables."""
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017/custody_agreements_dev"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "custody_agreements_dev"),
            mongodb_max_pool_size=int(os.getenv("MONGODB_MAX_POOL_SIZE", "10")),
            mongodb_min_pool_size=int(os.getenv("MONGODB_MIN_POOL_SIZE", "1")),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            otel_enabled=os.getenv("OTEL_ENABLED", "true").lower() == "true",
            service_version=os.getenv("SERVICE_VERSION", "1.0.0"),
        )
