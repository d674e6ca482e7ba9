"""
Push module - client of the cloud Push API.

This module handles:
- The PushClient protocol and ordering ids
- Conversion of feed records into Push API documents
- The httpx client and an in-memory client for tests

Invariants:
    - Every document and identity call carries a monotonic ordering id
    - Failures surface as PushError, the caller decides whether to continue

How to change safely:
    - Update both clients when the protocol changes
"""

from .base import (
    OrderingIdGenerator,
    PushApiError,
    PushClient,
    PushError,
    SourceStatus,
    create_push_client,
)
from .http_client import HttpPushClient
from .memory import InMemoryPushClient, PushCall
from .models import PushDocument, compress_content

__all__ = [
    "HttpPushClient",
    "InMemoryPushClient",
    "OrderingIdGenerator",
    "PushApiError",
    "PushCall",
    "PushClient",
    "PushDocument",
    "PushError",
    "SourceStatus",
    "compress_content",
    "create_push_client",
]
