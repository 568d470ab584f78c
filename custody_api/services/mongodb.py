# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with connection pooling and optimistic-concurrency
document stores for proposals, agreements and custody records.
"""

import logging
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    PyMongoError,
    ServerSelectionTimeoutError
)

from ..config import Settings
from ..models.entities import Agreement, AgreementChangeProposal, ChildCustody
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

PROPOSALS = "agreement_change_proposals"
AGREEMENTS = "agreements"
CUSTODY = "child_custody"
AUDIT_LOGS = "audit_logs"
PENDING_INDEX = "one_pending_per_section"


def to_mongo(document: Dict[str, Any]) -> Dict[str, Any]:
    """Move the entity id into _id."""
    document = dict(document)
    document["_id"] = document.pop("id")
    return document


def from_mongo(document: Dict[str, Any]) -> Dict[str, Any]:
    """Move _id back into the entity id."""
    document = dict(document)
    document["id"] = str(document.pop("_id"))
    return document


def is_pending_conflict(error: DuplicateKeyError) -> bool:
    """Whether a duplicate key error came from the one-pending-per-section index."""
    details = error.details or {}
    return set(details.get("keyPattern", {})) == {"childId", "changeType"}


class MongoDBService:
    """MongoDB service with connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None, settings: Settings = None):
        """Initialize MongoDB service with connection pooling."""
        settings = settings or Settings.from_env()
        self.connection_string = connection_string or settings.mongodb_uri
        self.database_name = database_name or settings.mongodb_database
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = settings.mongodb_max_pool_size
        self.min_pool_size = settings.mongodb_min_pool_size
        self.max_idle_time_ms = 30000
        self.server_selection_timeout_ms = 5000

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    # Deadlines are compared against aware datetimes
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise InfrastructureError("MongoDB connection failed", e) from e

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except (PyMongoError, InfrastructureError) as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def insert(self, collection: str, document: Dict[str, Any]) -> str:
        """Insert a document that already carries its id."""
        try:
            result = self.get_collection(collection).insert_one(to_mongo(document))
            logger.debug(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)
        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists") from e
        except PyMongoError as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise InfrastructureError(f"Insert into {collection} failed", e) from e

    # Index Management

    def create_indexes(self) -> None:
        """Create indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            # Proposal lookups by field, status sweeps and chain navigation
            proposals = self.get_collection(PROPOSALS)
            proposals.create_index([("childId", ASCENDING), ("changeType", ASCENDING), ("status", ASCENDING)])
            proposals.create_index([("status", ASCENDING), ("expiresAt", ASCENDING)])
            proposals.create_index([("status", ASCENDING), ("signatureDeadline", ASCENDING)])
            proposals.create_index([("proposedBy", ASCENDING), ("createdAt", DESCENDING)])
            proposals.create_index("originalProposalId")
            proposals.create_index(
                [("childId", ASCENDING), ("changeType", ASCENDING)],
                name=PENDING_INDEX,
                unique=True,
                partialFilterExpression={"status": "pending"}
            )

            agreements = self.get_collection(AGREEMENTS)
            agreements.create_index("childId", unique=True)

            custody = self.get_collection(CUSTODY)
            custody.create_index("childId", unique=True)
            custody.create_index("guardianIds")

            audit_logs = self.get_collection(AUDIT_LOGS)
            audit_logs.create_index([("childId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("entity", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("actorId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise InfrastructureError("Index creation failed", e) from e


class MongoProposalStore(ProposalStore):
    """Proposal store backed by a MongoDB collection."""

    def __init__(self, mongo_service: MongoDBService, collection_name: str = PROPOSALS):
        self.mongo_service = mongo_service
        self.collection_name = collection_name

    @property
    def collection(self) -> Collection:
        return self.mongo_service.get_collection(self.collection_name)

    def get(self, proposal_id: str) -> AgreementChangeProposal:
        with tracer.start_as_current_span("mongodb.proposals.get") as span:
            span.set_attribute("proposal.id", proposal_id)
            try:
                document = self.collection.find_one({"_id": proposal_id})
            except PyMongoError as e:
                logger.error(f"Failed to load proposal {proposal_id}: {e}")
                raise InfrastructureError(f"Failed to load proposal {proposal_id}", e) from e

            if document is None:
                raise DocumentNotFound(self.collection_name, proposal_id)
            return AgreementChangeProposal.from_document(from_mongo(document))

    def create(self, proposal: AgreementChangeProposal) -> AgreementChangeProposal:
        with tracer.start_as_current_span("mongodb.proposals.create") as span:
            span.set_attribute("proposal.id", proposal.id)
            try:
                self.collection.insert_one(to_mongo(proposal.to_document()))
            except DuplicateKeyError as e:
                if is_pending_conflict(e):
                    raise PendingProposalConflict(proposal.child_id, proposal.change_type) from e
                raise ValueError(f"Proposal already exists: {proposal.id}") from e
            except PyMongoError as e:
                logger.error(f"Failed to create proposal {proposal.id}: {e}")
                raise InfrastructureError(f"Failed to create proposal {proposal.id}", e) from e

            logger.debug(f"Created proposal {proposal.id} in {self.collection_name}")
            return proposal

    def compare_and_set(self, proposal_id: str, expected_revision: int, proposal: AgreementChangeProposal) -> bool:
        with tracer.start_as_current_span("mongodb.proposals.compare_and_set") as span:
            span.set_attributes({
                "proposal.id": proposal_id,
                "proposal.expected_revision": expected_revision
            })

            document = to_mongo(proposal.to_document())
            document.pop("_id")
            try:
                result = self.collection.update_one(
                    {"_id": proposal_id, "revision": expected_revision},
                    {"$set": document}
                )
            except DuplicateKeyError as e:
                if is_pending_conflict(e):
                    raise PendingProposalConflict(proposal.child_id, proposal.change_type) from e
                raise InfrastructureError(f"Failed to update proposal {proposal_id}", e) from e
            except PyMongoError as e:
                logger.error(f"Failed to update proposal {proposal_id}: {e}")
                raise InfrastructureError(f"Failed to update proposal {proposal_id}", e) from e

            committed = result.matched_count == 1
            span.set_attribute("proposal.committed", committed)
            if not committed:
                logger.info(f"Revision conflict on proposal {proposal_id}", extra={
                    "proposal_id": proposal_id,
                    "expected_revision": expected_revision
                })
            return committed

    def query(self, child_id=None, change_type=None, status_in=None) -> List[AgreementChangeProposal]:
        query: Dict[str, Any] = {}
        if child_id is not None:
            query["childId"] = child_id
        if change_type is not None:
            query["changeType"] = getattr(change_type, "value", change_type)
        if status_in is not None:
            query["status"] = {"$in": [getattr(status, "value", status) for status in status_in]}

        with tracer.start_as_current_span("mongodb.proposals.query") as span:
            span.set_attribute("query.filters_count", len(query))
            try:
                documents = list(self.collection.find(query).sort("createdAt", ASCENDING))
            except PyMongoError as e:
                logger.error(f"Failed to query proposals: {e}")
                raise InfrastructureError("Failed to query proposals", e) from e

            logger.debug(f"Found {len(documents)} proposals in {self.collection_name}")
            return [AgreementChangeProposal.from_document(from_mongo(doc)) for doc in documents]


class MongoAgreementStore(AgreementStore):
    """Agreement store backed by a MongoDB collection."""

    def __init__(self, mongo_service: MongoDBService, collection_name: str = AGREEMENTS):
        self.mongo_service = mongo_service
        self.collection_name = collection_name

    @property
    def collection(self) -> Collection:
        return self.mongo_service.get_collection(self.collection_name)

    def get_active_agreement(self, child_id: str) -> Optional[Agreement]:
        try:
            document = self.collection.find_one({"childId": child_id})
        except PyMongoError as e:
            logger.error(f"Failed to load agreement for child {child_id}: {e}")
            raise InfrastructureError(f"Failed to load agreement for child {child_id}", e) from e

        if document is None:
            return None
        return Agreement.from_document(from_mongo(document))

    def create(self, agreement: Agreement) -> Agreement:
        self.mongo_service.insert(self.collection_name, agreement.to_document())
        return agreement

    def compare_and_set(self, agreement_id: str, expected_revision: int, agreement: Agreement) -> bool:
        with tracer.start_as_current_span("mongodb.agreements.compare_and_set") as span:
            span.set_attributes({
                "agreement.id": agreement_id,
                "agreement.expected_revision": expected_revision
            })

            document = to_mongo(agreement.to_document())
            document.pop("_id")
            try:
                result = self.collection.update_one(
                    {"_id": agreement_id, "revision": expected_revision},
                    {"$set": document}
                )
            except PyMongoError as e:
                logger.error(f"Failed to update agreement {agreement_id}: {e}")
                raise InfrastructureError(f"Failed to update agreement {agreement_id}", e) from e

            committed = result.matched_count == 1
            span.set_attribute("agreement.committed", committed)
            return committed


class MongoCustodyDirectory(CustodyDirectory):
    """Custody records stored in MongoDB."""

    def __init__(self, mongo_service: MongoDBService, collection_name: str = CUSTODY):
        self.mongo_service = mongo_service
        self.collection_name = collection_name

    def get_custody(self, child_id: str) -> Optional[ChildCustody]:
        try:
            document = self.mongo_service.get_collection(self.collection_name).find_one(
                {"childId": child_id}, {"_id": 0}
            )
        except PyMongoError as e:
            logger.error(f"Failed to load custody for child {child_id}: {e}")
            raise InfrastructureError(f"Failed to load custody for child {child_id}", e) from e

        if document is None:
            return None
        return ChildCustody.model_validate(document)


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
