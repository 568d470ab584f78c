# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for the proposal trail with OpenTelemetry correlation.
"""

import logging
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from ..models.entities import AuditLog
from .mongodb import AUDIT_LOGS, MongoDBService, from_mongo
from .store import InfrastructureError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Service for audit logging with MongoDB persistence."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = AUDIT_LOGS
        logger.info("Audit service initialized")

    def log_action(
        self,
        actor_id: str,
        child_id: str,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.

        Args:
            actor_id: Guardian, child, or "system" for sweeps
            child_id: Child whose agreement is concerned
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            before: State before the action (optional)
            after: State after the action (optional)

        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            try:
                # Get current span context for trace correlation
                span_context = span.get_span_context()
                trace_id = None
                span_id = None
                if span_context.is_valid:
                    trace_id = format(span_context.trace_id, "032x")
                    span_id = format(span_context.span_id, "016x")

                entry = AuditLog(
                    actor_id=actor_id,
                    child_id=child_id,
                    entity=entity,
                    entity_id=entity_id,
                    action=action,
                    before=before,
                    after=after,
                    trace_id=trace_id,
                    span_id=span_id
                )

                span.set_attributes({
                    "audit.entity": entity,
                    "audit.action": entry.action,
                    "audit.actor_id": actor_id,
                    "audit.child_id": child_id,
                    "audit.entity_id": entity_id
                })

                audit_id = self.mongo_service.insert(
                    self.collection_name,
                    entry.model_dump(by_alias=True)
                )

                changes_count = 0
                if before and after:
                    changes_count = len(self._calculate_changes(before, after))

                logger.info(
                    "Audit trail entry created",
                    extra={
                        "audit_id": audit_id,
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": entry.action,
                        "actor_id": actor_id,
                        "child_id": child_id,
                        "trace_id": trace_id,
                        "changes_count": changes_count,
                        "audit_category": "business_action"
                    }
                )

                return audit_id

            except InfrastructureError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "actor_id": actor_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def get_entity_trail(self, entity_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Get the audit trail of one proposal or agreement, newest first.

        Args:
            entity_id: Proposal or agreement ID
            limit: Maximum number of entries

        Returns:
            List of audit log documents
        """
        with tracer.start_as_current_span("audit.get_entity_trail") as span:
            span.set_attribute("audit.entity_id", entity_id)
            try:
                cursor = (
                    self.mongo_service.get_collection(self.collection_name)
                    .find({"entityId": entity_id})
                    .sort("timestamp", DESCENDING)
                    .limit(limit)
                )
                entries = [from_mongo(document) for document in cursor]
            except PyMongoError as e:
                span.record_exception(e)
                logger.error(f"Failed to read audit trail for {entity_id}: {e}")
                raise InfrastructureError(f"Failed to read audit trail for {entity_id}", e) from e

            logger.debug(f"Retrieved {len(entries)} audit entries for {entity_id}")
            return entries

    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Fields whose values differ between two snapshots."""
        changes = {}
        for key in set(before.keys()) | set(after.keys()):
            if key in ("updatedAt", "revision"):
                continue
            if before.get(key) != after.get(key):
                changes[key] = {"before": before.get(key), "after": after.get(key)}
        return changes
