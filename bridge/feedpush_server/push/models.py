"""
Document model of the Push API.

A PushDocument is built from a ready FeedRecord and its materialized
permission levels, then serialised to the JSON body of a document PUT.

Invariants:
    - The document id is the record URL
    - A document carries either text data or compressed binary data, never both
    - Compressed data is zlib-deflated, then base64-encoded

How to change safely:
    - Keep the standard record fields under their current metadata names,
      search pages and relevance rules reference them
"""

from __future__ import annotations

import base64
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..acl.permissions import PermissionLevel
from ..feed.models import FeedRecord

COMPRESSION_TYPE = "ZLIB"
COMPRESSION_LEVEL = 8


def compress_content(data: bytes) -> str:
    """Deflate and base64-encode raw content for compressedBinaryData."""
    return base64.b64encode(zlib.compress(data, COMPRESSION_LEVEL)).decode("ascii")


@dataclass
class PushDocument:
    """A document as sent to the Push API.

    Attributes:
        document_id: Unique id of the document (its URL)
        metadata: Flat metadata values
        modified_date: Last modification, if known
        permissions: Ordered permission levels
        data: Text content
        compressed_data: Base64 of zlib-compressed content
    """

    document_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    modified_date: datetime | None = None
    permissions: list[PermissionLevel] = field(default_factory=list)
    data: str | None = None
    compressed_data: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the Push API JSON body."""
        body: dict[str, Any] = dict(self.metadata)
        body["permissions"] = [level.to_dict() for level in self.permissions]
        if self.modified_date is not None:
            body["date"] = self.modified_date.isoformat()
        if self.compressed_data is not None:
            body["compressedBinaryData"] = self.compressed_data
            body["compressionType"] = COMPRESSION_TYPE
        elif self.data is not None:
            body["data"] = self.data
        return body

    @classmethod
    def from_record(
        cls, record: FeedRecord, permissions: list[PermissionLevel]
    ) -> PushDocument:
        """Build a document from a feed record.

        Content precedence: the body fetched by the crawler (compressed),
        then compressed feed content (forwarded as-is), then text content.

        Raises:
            MalformedFeedError: If base64 content or metadata cannot be decoded
        """
        metadata: dict[str, Any] = record.metadata_dict()
        standard = {
            "clickableuri": record.display_url or record.url,
            "DisplayUrl": record.display_url,
            "Lock": record.lock,
            "MimeType": record.mimetype,
            "PageRank": record.pagerank,
            "Scoring": record.scoring,
            "Url": record.url,
            "AuthMethod": record.auth_method,
            "CrawlImmediately": record.crawl_immediately,
            "CrawlOnce": record.crawl_once,
        }
        metadata.update({k: v for k, v in standard.items() if v is not None})

        document = cls(
            document_id=record.url,
            metadata=metadata,
            modified_date=record.last_modified,
            permissions=permissions,
        )

        if record.body is not None:
            document.compressed_data = compress_content(record.body)
        elif record.content is not None:
            if record.content.is_compressed:
                document.compressed_data = record.content.value.strip("\n")
            else:
                document.data = record.content.decoded()
        return document
