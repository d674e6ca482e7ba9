"""
In-memory push client for testing and dry runs.

Records every call instead of sending it, and keeps the resulting index
state (documents and identities) so tests can assert on what the service
would hold.

Invariants:
    - All data is lost on process exit
    - Ordering ids are strictly increasing, like the HTTP client's
    - Thread-safe for concurrent access

How to change safely:
    - Keep interface compatible with the PushClient protocol
    - Add failure hooks here rather than mocking in tests
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..acl.permissions import IdentityBody
from .base import PushApiError, SourceStatus
from .models import PushDocument

logger = logging.getLogger(__name__)


@dataclass
class PushCall:
    """One recorded client call."""

    operation: str
    target: str
    payload: Any = None
    ordering_id: int | None = None


@dataclass
class InMemorySource:
    """Documents and status of one source."""

    documents: dict[str, tuple[int, PushDocument]] = field(default_factory=dict)
    statuses: list[SourceStatus] = field(default_factory=list)


class InMemoryPushClient:
    """In-memory implementation of PushClient.

    Attributes:
        calls: Every call, in order
        identities: Latest body per (provider, identity name)
        fail_documents: Document ids whose add/update raises PushApiError

    Example:
        >>> client = InMemoryPushClient()
        >>> client.add_or_update_document("src", PushDocument("http://h/doc1"))
        1
        >>> client.documents("src")
        ['http://h/doc1']
    """

    def __init__(self) -> None:
        self.calls: list[PushCall] = []
        self.identities: dict[tuple[str, str], IdentityBody] = {}
        self.fail_documents: set[str] = set()
        self._sources: dict[str, InMemorySource] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def _ordering_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _source(self, source_id: str) -> InMemorySource:
        return self._sources.setdefault(source_id, InMemorySource())

    def add_or_update_identity(self, provider_id: str, body: IdentityBody) -> int:
        with self._lock:
            ordering_id = self._ordering_id()
            self.identities[(provider_id, body.identity.name)] = body
            self.calls.append(PushCall("identity", provider_id, body, ordering_id))
            return ordering_id

    def add_or_update_document(self, source_id: str, document: PushDocument) -> int:
        with self._lock:
            if document.document_id in self.fail_documents:
                raise PushApiError(f"Rejected document {document.document_id}", status_code=400)
            ordering_id = self._ordering_id()
            self._source(source_id).documents[document.document_id] = (ordering_id, document)
            self.calls.append(PushCall("add", source_id, document, ordering_id))
            return ordering_id

    def delete_document(self, source_id: str, document_id: str) -> int:
        with self._lock:
            ordering_id = self._ordering_id()
            self._source(source_id).documents.pop(document_id, None)
            self.calls.append(PushCall("delete", source_id, document_id, ordering_id))
            return ordering_id

    def delete_documents_older_than(
        self, source_id: str, ordering_id: int, queue_delay_minutes: int
    ) -> None:
        with self._lock:
            source = self._source(source_id)
            stale = [doc_id for doc_id, (oid, _) in source.documents.items() if oid < ordering_id]
            for doc_id in stale:
                del source.documents[doc_id]
            logger.debug(f"Deleted {len(stale)} documents older than {ordering_id} in {source_id}")
            self.calls.append(
                PushCall("delete_older_than", source_id, queue_delay_minutes, ordering_id)
            )

    def update_source_status(self, source_id: str, status: SourceStatus) -> None:
        with self._lock:
            self._source(source_id).statuses.append(status)
            self.calls.append(PushCall("status", source_id, status))

    def close(self) -> None:
        pass

    # Test helpers

    def documents(self, source_id: str) -> list[str]:
        """Ids of the documents currently held by a source, sorted."""
        with self._lock:
            return sorted(self._source(source_id).documents)

    def document(self, source_id: str, document_id: str) -> PushDocument | None:
        with self._lock:
            entry = self._source(source_id).documents.get(document_id)
            return entry[1] if entry else None

    def statuses(self, source_id: str) -> list[SourceStatus]:
        with self._lock:
            return list(self._source(source_id).statuses)

    def operations(self, operation: str) -> list[PushCall]:
        """Recorded calls of one kind, in order."""
        with self._lock:
            return [c for c in self.calls if c.operation == operation]

    def reset(self) -> None:
        with self._lock:
            self.calls.clear()
            self.identities.clear()
            self._sources.clear()
