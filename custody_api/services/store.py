# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Storage interfaces for the agreement change workflow and an in-memory
implementation used by tests and local runs.

Every write to an existing document goes through compare_and_set, which
commits only when the stored revision still equals the revision the caller
read. A False return means another writer got there first. At most one
pending proposal may exist per (child, section); writes that would break
that raise PendingProposalConflict.
"""

import copy
import logging
import threading
from typing import Dict, Iterable, List, Optional

from ..models.entities import Agreement, AgreementChangeProposal, ChildCustody
from ..models.enums import ProposalStatus

logger = logging.getLogger(__name__)


class DocumentNotFound(LookupError):
    """Raised when a document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection} document not found: {doc_id}")
        self.collection = collection
        self.doc_id = doc_id


class InfrastructureError(Exception):
    """A storage or cache backend failed. Not a business-rule rejection."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class PendingProposalConflict(Exception):
    """Another pending proposal already exists for the same child and section."""

    def __init__(self, child_id: str, change_type: str):
        super().__init__(f"Pending proposal already exists for {child_id}/{change_type}")
        self.child_id = child_id
        self.change_type = change_type


class ProposalStore:
    """Document store for agreement change proposals."""

    def get(self, proposal_id: str) -> AgreementChangeProposal:
        """Load a proposal. Raises DocumentNotFound."""
        raise NotImplementedError

    def create(self, proposal: AgreementChangeProposal) -> AgreementChangeProposal:
        """Store a new proposal. Raises PendingProposalConflict."""
        raise NotImplementedError

    def compare_and_set(self, proposal_id: str, expected_revision: int, proposal: AgreementChangeProposal) -> bool:
        raise NotImplementedError

    def query(
        self,
        child_id: Optional[str] = None,
        change_type: Optional[str] = None,
        status_in: Optional[Iterable[str]] = None
    ) -> List[AgreementChangeProposal]:
        """Proposals matching every given filter, oldest first."""
        raise NotImplementedError


class AgreementStore:
    """Document store for active family agreements."""

    def get_active_agreement(self, child_id: str) -> Optional[Agreement]:
        raise NotImplementedError

    def create(self, agreement: Agreement) -> Agreement:
        raise NotImplementedError

    def compare_and_set(self, agreement_id: str, expected_revision: int, agreement: Agreement) -> bool:
        raise NotImplementedError


class CustodyDirectory:
    """Lookup of custody arrangements."""

    def get_custody(self, child_id: str) -> Optional[ChildCustody]:
        raise NotImplementedError


def _status_values(status_in: Optional[Iterable[str]]) -> Optional[set]:
    if status_in is None:
        return None
    return {getattr(status, "value", status) for status in status_in}


class InMemoryProposalStore(ProposalStore):
    """Thread-safe in-memory proposal store."""

    def __init__(self, lock: Optional[threading.Lock] = None):
        self._lock = lock or threading.Lock()
        self._documents: Dict[str, Dict] = {}

    def get(self, proposal_id: str) -> AgreementChangeProposal:
        with self._lock:
            document = self._documents.get(proposal_id)
            if document is None:
                raise DocumentNotFound("proposals", proposal_id)
            return AgreementChangeProposal.from_document(copy.deepcopy(document))

    def create(self, proposal: AgreementChangeProposal) -> AgreementChangeProposal:
        with self._lock:
            if proposal.id in self._documents:
                raise ValueError(f"Proposal already exists: {proposal.id}")
            self._check_pending_unique(proposal)
            self._documents[proposal.id] = proposal.to_document()
        logger.debug(f"Stored proposal {proposal.id}")
        return proposal

    def compare_and_set(self, proposal_id: str, expected_revision: int, proposal: AgreementChangeProposal) -> bool:
        if proposal.id != proposal_id:
            raise ValueError("Proposal ID does not match the document being replaced")

        with self._lock:
            current = self._documents.get(proposal_id)
            if current is None:
                raise DocumentNotFound("proposals", proposal_id)
            if current["revision"] != expected_revision:
                return False
            self._check_pending_unique(proposal)
            self._documents[proposal_id] = proposal.to_document()
            return True

    def _check_pending_unique(self, proposal: AgreementChangeProposal) -> None:
        if proposal.status != ProposalStatus.PENDING:
            return
        for document in self._documents.values():
            if (document["id"] != proposal.id
                    and document["status"] == ProposalStatus.PENDING.value
                    and document["childId"] == proposal.child_id
                    and document["changeType"] == proposal.change_type):
                raise PendingProposalConflict(proposal.child_id, proposal.change_type)

    def query(self, child_id=None, change_type=None, status_in=None) -> List[AgreementChangeProposal]:
        statuses = _status_values(status_in)
        change_type = getattr(change_type, "value", change_type)

        with self._lock:
            documents = [
                copy.deepcopy(document) for document in self._documents.values()
                if (child_id is None or document["childId"] == child_id)
                and (change_type is None or document["changeType"] == change_type)
                and (statuses is None or document["status"] in statuses)
            ]

        proposals = [AgreementChangeProposal.from_document(document) for document in documents]
        return sorted(proposals, key=lambda proposal: proposal.created_at)


class InMemoryAgreementStore(AgreementStore):
    """Thread-safe in-memory agreement store, one agreement per child."""

    def __init__(self, lock: Optional[threading.Lock] = None):
        self._lock = lock or threading.Lock()
        self._documents: Dict[str, Dict] = {}

    def get_active_agreement(self, child_id: str) -> Optional[Agreement]:
        with self._lock:
            for document in self._documents.values():
                if document["childId"] == child_id:
                    return Agreement.from_document(copy.deepcopy(document))
        return None

    def create(self, agreement: Agreement) -> Agreement:
        with self._lock:
            self._documents[agreement.id] = agreement.to_document()
        return agreement

    def compare_and_set(self, agreement_id: str, expected_revision: int, agreement: Agreement) -> bool:
        if agreement.id != agreement_id:
            raise ValueError("Agreement ID does not match the document being replaced")

        with self._lock:
            current = self._documents.get(agreement_id)
            if current is None:
                raise DocumentNotFound("agreements", agreement_id)
            if current["revision"] != expected_revision:
                return False
            self._documents[agreement_id] = agreement.to_document()
            return True


class InMemoryCustodyDirectory(CustodyDirectory):
    """In-memory custody directory."""

    def __init__(self):
        self._custody: Dict[str, ChildCustody] = {}

    def add(self, custody: ChildCustody) -> None:
        self._custody[custody.child_id] = custody

    def get_custody(self, child_id: str) -> Optional[ChildCustody]:
        return self._custody.get(child_id)


class InMemoryStore:
    """Proposal, agreement and custody stores sharing one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self.proposals = InMemoryProposalStore(self._lock)
        self.agreements = InMemoryAgreementStore(self._lock)
        self.custody = InMemoryCustodyDirectory()
