"""
HTTP implementation of the PushClient protocol.

Talks to the Push API with a synchronous httpx.Client. Calls are made from
the worker thread that processes a feed batch, one call at a time.

Invariants:
    - Every request carries the API key as a bearer token
    - Non-2xx answers and transport failures raise PushApiError
    - The API key never appears in logs or error messages

How to change safely:
    - Keep endpoint paths in the _*_url helpers
    - Test with httpx.MockTransport, never against a live organization
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..acl.permissions import IdentityBody
from ..config import PushApiConfig
from .base import OrderingIdGenerator, PushApiError, SourceStatus
from .models import PushDocument

logger = logging.getLogger(__name__)


class HttpPushClient:
    """Push API client over httpx.

    Thread safety:
        httpx.Client is thread-safe; ordering ids come from a locked
        generator, so one client can serve concurrent batches.

    Example:
        >>> client = HttpPushClient(config.push)
        >>> client.update_source_status("source-1", SourceStatus.INCREMENTAL)
        >>> client.add_or_update_document("source-1", document)
        1718000000000
        >>> client.close()
    """

    def __init__(
        self,
        config: PushApiConfig,
        client: httpx.Client | None = None,
        ordering_ids: OrderingIdGenerator | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Push API configuration
            client: Preconfigured httpx client (tests pass a MockTransport one)
            ordering_ids: Shared ordering id generator
        """
        self._config = config
        self._ordering_ids = ordering_ids or OrderingIdGenerator()
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self._headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    def _source_url(self, source_id: str) -> str:
        return (
            f"{self._config.push_endpoint.rstrip('/')}/organizations/"
            f"{self._config.organization_id}/sources/{source_id}"
        )

    def _provider_url(self, provider_id: str) -> str:
        return (
            f"{self._config.push_endpoint.rstrip('/')}/organizations/"
            f"{self._config.organization_id}/providers/{provider_id}"
        )

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method, url, params=params, json=json_body, headers=self._headers
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Push API error: {method} {url} -> {status}")
            raise PushApiError(
                f"{method} {url} failed with status {status}: {e.response.text[:200]}",
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Push API transport error: {method} {url}: {e}")
            raise PushApiError(f"{method} {url} failed: {e}") from e

    def add_or_update_identity(self, provider_id: str, body: IdentityBody) -> int:
        ordering_id = self._ordering_ids.next()
        self._request(
            "PUT",
            f"{self._provider_url(provider_id)}/permissions",
            params={"orderingId": ordering_id},
            json_body=body.to_dict(),
        )
        return ordering_id

    def add_or_update_document(self, source_id: str, document: PushDocument) -> int:
        ordering_id = self._ordering_ids.next()
        self._request(
            "PUT",
            f"{self._source_url(source_id)}/documents",
            params={"documentId": document.document_id, "orderingId": ordering_id},
            json_body=document.to_dict(),
        )
        return ordering_id

    def delete_document(self, source_id: str, document_id: str) -> int:
        ordering_id = self._ordering_ids.next()
        self._request(
            "DELETE",
            f"{self._source_url(source_id)}/documents",
            params={"documentId": document_id, "orderingId": ordering_id},
        )
        return ordering_id

    def delete_documents_older_than(
        self, source_id: str, ordering_id: int, queue_delay_minutes: int
    ) -> None:
        self._request(
            "DELETE",
            f"{self._source_url(source_id)}/documents/olderthan",
            params={"orderingId": ordering_id, "queueDelay": queue_delay_minutes},
        )

    def update_source_status(self, source_id: str, status: SourceStatus) -> None:
        self._request(
            "POST",
            f"{self._source_url(source_id)}/status",
            params={"statusType": status.value},
        )

    def close(self) -> None:
        self._client.close()
