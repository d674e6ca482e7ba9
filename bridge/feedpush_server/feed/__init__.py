"""
Feed module - legacy XML feed protocol.

This module handles:
- The feed data model (header, ACL fragments, records, memberships)
- Streaming parsing of feed and xmlgroups documents
- Extraction of the XML payload from connector request bodies

Invariants:
    - Parsing is lazy and preserves document order
    - Malformed input raises MalformedFeedError before reaching the ACL graph

How to change safely:
    - Test new attributes against real connector feeds
    - Keep defaults aligned with the legacy serializer
"""

from .models import (
    AclAccess,
    ContentEncoding,
    FeedAcl,
    FeedContent,
    FeedError,
    FeedHeader,
    FeedMembership,
    FeedMeta,
    FeedPrincipal,
    FeedRecord,
    FeedType,
    InheritanceType,
    MalformedFeedError,
    PrincipalScope,
    RecordAction,
)
from .parser import FeedParser, extract_xml_payload

__all__ = [
    "AclAccess",
    "ContentEncoding",
    "FeedAcl",
    "FeedContent",
    "FeedError",
    "FeedHeader",
    "FeedMembership",
    "FeedMeta",
    "FeedParser",
    "FeedPrincipal",
    "FeedRecord",
    "FeedType",
    "InheritanceType",
    "MalformedFeedError",
    "PrincipalScope",
    "RecordAction",
    "extract_xml_payload",
]
