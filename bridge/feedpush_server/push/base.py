"""
Base protocol and types for the Push API client.

This module defines the PushClient protocol that every client implements,
along with ordering ids, source statuses and push errors.

Invariants:
    - Every document or identity call returns a strictly increasing ordering id
    - Ordering ids are milliseconds since the epoch, bumped on collisions
    - Deleting "older than" an ordering id never removes documents pushed after it

How to change safely:
    - Protocol changes require updating HttpPushClient and InMemoryPushClient
    - Keep ordering ids comparable with the ids the service assigns itself
"""

from __future__ import annotations

import logging
import threading
import time
from abc import abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..acl.permissions import IdentityBody
    from ..config import PushApiConfig
    from .models import PushDocument

logger = logging.getLogger(__name__)


class PushError(Exception):
    """Base exception for push operations."""

    pass


class PushApiError(PushError):
    """The Push API answered with an error status.

    Attributes:
        status_code: HTTP status of the response (None for transport errors)
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceStatus(Enum):
    """Activity status of a push source."""

    REBUILD = "REBUILD"
    REFRESH = "REFRESH"
    INCREMENTAL = "INCREMENTAL"
    IDLE = "IDLE"


class OrderingIdGenerator:
    """Monotonic ordering ids based on the wall clock.

    Thread-safe.

    Example:
        >>> ids = OrderingIdGenerator()
        >>> first = ids.next()
        >>> ids.next() > first
        True
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            now = int(time.time() * 1000)
            self._last = now if now > self._last else self._last + 1
            return self._last


@runtime_checkable
class PushClient(Protocol):
    """Protocol for Push API clients.

    Document calls are addressed to a push source, identity calls to a
    security provider. Every add/update/delete returns the ordering id it
    was sent with.

    Example:
        >>> client = HttpPushClient(config.push)
        >>> ordering_id = client.add_or_update_document("source-1", document)
        >>> client.delete_documents_older_than("source-1", ordering_id, 5)
    """

    @abstractmethod
    def add_or_update_identity(self, provider_id: str, body: IdentityBody) -> int:
        """Create or replace an identity and its mappings.

        Raises:
            PushError: If the call fails
        """
        ...

    @abstractmethod
    def add_or_update_document(self, source_id: str, document: PushDocument) -> int:
        """Create or replace a document.

        Raises:
            PushError: If the call fails
        """
        ...

    @abstractmethod
    def delete_document(self, source_id: str, document_id: str) -> int:
        """Delete a document by id (its URL).

        Raises:
            PushError: If the call fails
        """
        ...

    @abstractmethod
    def delete_documents_older_than(
        self, source_id: str, ordering_id: int, queue_delay_minutes: int
    ) -> None:
        """Delete every document of the source pushed before ordering_id.

        Args:
            source_id: Push source
            ordering_id: Documents with a lower ordering id are deleted
            queue_delay_minutes: Delay before the deletion runs, so queued
                updates are applied first

        Raises:
            PushError: If the call fails
        """
        ...

    @abstractmethod
    def update_source_status(self, source_id: str, status: SourceStatus) -> None:
        """Set the activity status of a source.

        Raises:
            PushError: If the call fails
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release network resources."""
        ...


def create_push_client(config: PushApiConfig) -> PushClient:
    """Factory function to create the HTTP push client from configuration."""
    from .http_client import HttpPushClient

    return HttpPushClient(config)
