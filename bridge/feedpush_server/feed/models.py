"""
Data model of the legacy XML feed protocol.

The classes mirror the elements of a feed batch:
- <header> with datasource and feed type
- <acl> fragments (standalone or inside a <record>)
- <record> documents with metadata, content and an optional ACL
- <membership> entries of an xmlgroups feed

Invariants:
    - A record's embedded ACL always describes the record's own URL
    - A record without action inherits the action of its <group>
    - Enum values keep the exact spellings used on the wire

How to change safely:
    - New attributes need a default matching the legacy connector's behaviour
    - Keep XML and JSON spellings in the enum lookup tables in sync
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base exception for feed handling."""

    pass


class MalformedFeedError(FeedError):
    """Feed content cannot be parsed.

    Batch-level: raised before any record of the batch reaches the ACL graph.
    """

    pass


class InheritanceType(Enum):
    """How an ACL composes with the ACLs inheriting from it."""

    # Child level is evaluated before the parent level.
    CHILD_OVERRIDES = "child-overrides"
    # Parent level is evaluated before the child level.
    PARENT_OVERRIDES = "parent-overrides"
    # Child and parent share one level, both must permit.
    BOTH_PERMIT = "and-both-permit"
    # Terminates an inheritance chain.
    LEAF_NODE = "leaf-node"

    @classmethod
    def from_xml(cls, value: str | None) -> InheritanceType:
        """Parse the XML attribute; a missing attribute means child-overrides."""
        if not value:
            return cls.CHILD_OVERRIDES
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid inheritance-type: {value}")

    @classmethod
    def from_json(cls, value: str | None) -> InheritanceType:
        """Parse the JSON spelling; a missing value means leaf-node."""
        if not value:
            return cls.LEAF_NODE
        try:
            return _JSON_INHERITANCE[value.strip().upper()]
        except KeyError:
            raise MalformedFeedError(f"Invalid inheritance_type: {value}")


_JSON_INHERITANCE = {
    "CHILD_OVERRIDES": InheritanceType.CHILD_OVERRIDES,
    "PARENT_OVERRIDES": InheritanceType.PARENT_OVERRIDES,
    "AND_BOTH_PERMIT": InheritanceType.BOTH_PERMIT,
    "LEAF_NODE": InheritanceType.LEAF_NODE,
}


class PrincipalScope(Enum):
    """Kind of principal referenced by an ACL entry."""

    USER = "user"
    GROUP = "group"

    @classmethod
    def parse(cls, value: str | None) -> PrincipalScope:
        if not value:
            return cls.USER
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid principal scope: {value}")


class AclAccess(Enum):
    """Whether an ACL entry grants or refuses access."""

    PERMIT = "permit"
    DENY = "deny"

    @classmethod
    def parse(cls, value: str | None) -> AclAccess:
        if not value:
            return cls.PERMIT
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid principal access: {value}")


class CaseSensitivity(Enum):
    """Case sensitivity of a principal name."""

    CASE_SENSITIVE = "everything-case-sensitive"
    CASE_INSENSITIVE = "everything-case-insensitive"

    @classmethod
    def parse(cls, value: str | None) -> CaseSensitivity:
        if not value or re.search(r"insensitive", value, re.IGNORECASE) is None:
            return cls.CASE_SENSITIVE
        return cls.CASE_INSENSITIVE


class RecordAction(Enum):
    """Action requested for a record."""

    ADD = "add"
    DELETE = "delete"
    UNSPECIFIED = ""

    @classmethod
    def parse(cls, value: str | None) -> RecordAction:
        if not value or not value.strip():
            return cls.UNSPECIFIED
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid action: {value}")


class FeedType(Enum):
    """Type of a feed batch."""

    FULL = "full"
    INCREMENTAL = "incremental"
    METADATA_AND_URL = "metadata-and-url"

    @classmethod
    def parse(cls, value: str | None) -> FeedType:
        if not value:
            return cls.INCREMENTAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid feedtype: {value}")


class ContentEncoding(Enum):
    """Encoding of <content> and <meta> values."""

    NONE = ""
    BASE64_BINARY = "base64binary"
    BASE64_COMPRESSED = "base64compressed"

    @classmethod
    def parse(cls, value: str | None) -> ContentEncoding:
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise MalformedFeedError(f"Invalid encoding: {value}")


def _decode_base64(value: str) -> str:
    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise MalformedFeedError(f"Invalid base64 value: {e}")


@dataclass(frozen=True)
class FeedPrincipal:
    """One ACL entry or group member.

    Attributes:
        value: Principal name
        scope: User or group
        access: Permit or deny (ignored for group members)
        namespace: Principal namespace
        case_sensitivity: Case sensitivity of the name
        principal_type: Optional principal type (e.g. unqualified)
    """

    value: str
    scope: PrincipalScope = PrincipalScope.USER
    access: AclAccess = AclAccess.PERMIT
    namespace: str = "Default"
    case_sensitivity: CaseSensitivity = CaseSensitivity.CASE_SENSITIVE
    principal_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedPrincipal:
        """Create from the JSON entry format used by doc-controls headers."""
        if not data.get("name"):
            raise MalformedFeedError(f"ACL entry without name: {data}")
        return cls(
            value=data["name"],
            scope=PrincipalScope.parse(data.get("scope")),
            access=AclAccess.parse(data.get("access")),
            namespace=data.get("namespace") or "Default",
            case_sensitivity=CaseSensitivity.parse(data.get("case_sensitivity_type")),
        )


@dataclass
class FeedAcl:
    """ACL fragment declared for one URL.

    Attributes:
        document_url: URL the ACL applies to
        inheritance_type: How this ACL composes with ACLs inheriting from it
        inherit_from: URL of the parent ACL, if any
        principals: Ordered ACL entries
        allow_anonymous: Anyone may see the document
    """

    document_url: str
    inheritance_type: InheritanceType = InheritanceType.CHILD_OVERRIDES
    inherit_from: str | None = None
    principals: list[FeedPrincipal] = field(default_factory=list)
    allow_anonymous: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], document_url: str) -> FeedAcl:
        """Create from the JSON format used by doc-controls headers."""
        return cls(
            document_url=document_url,
            inheritance_type=InheritanceType.from_json(data.get("inheritance_type")),
            inherit_from=data.get("inherit_from") or None,
            principals=[FeedPrincipal.from_dict(e) for e in data.get("entries") or []],
        )

    def permitted(self) -> list[FeedPrincipal]:
        return [p for p in self.principals if p.access == AclAccess.PERMIT]

    def denied(self) -> list[FeedPrincipal]:
        return [p for p in self.principals if p.access == AclAccess.DENY]

    def same_topology(self, other: FeedAcl) -> bool:
        """Whether both fragments declare the same inheritance type and parent."""
        return (
            self.inheritance_type == other.inheritance_type
            and (self.inherit_from or None) == (other.inherit_from or None)
        )


@dataclass
class FeedHeader:
    """Header of a feed batch."""

    datasource: str
    feed_type: FeedType = FeedType.INCREMENTAL


@dataclass
class FeedContent:
    """Content of a record."""

    value: str = ""
    encoding: ContentEncoding = ContentEncoding.NONE

    def decoded(self) -> str:
        """Text content.

        Raises:
            FeedError: For compressed content, which is forwarded as-is.
        """
        if self.encoding == ContentEncoding.BASE64_BINARY:
            return _decode_base64(self.value)
        if self.encoding == ContentEncoding.BASE64_COMPRESSED:
            raise FeedError("Compressed content cannot be decoded to text")
        return self.value

    @property
    def is_compressed(self) -> bool:
        return self.encoding == ContentEncoding.BASE64_COMPRESSED


@dataclass
class FeedMeta:
    """One <meta> element."""

    name: str
    content: str
    encoding: ContentEncoding = ContentEncoding.NONE

    def decoded(self) -> str:
        if self.encoding == ContentEncoding.BASE64_BINARY:
            return _decode_base64(self.content)
        return self.content


@dataclass
class FeedRecord:
    """A document of a feed batch.

    Attributes:
        url: Document URL (the document id downstream)
        action: Add, delete, or unspecified
        acl: Embedded ACL fragment, authoritative for the URL when present
        body: Raw body fetched by the crawler (metadata-and-url feeds)

    Example:
        >>> record = FeedRecord(url="http://host/doc1", action=RecordAction.ADD)
        >>> record.set_property("display-url", "http://host/view/doc1")
        True
    """

    url: str
    action: RecordAction = RecordAction.UNSPECIFIED
    display_url: str | None = None
    mimetype: str | None = None
    last_modified_raw: str | None = None
    auth_method: str | None = None
    lock: bool = False
    pagerank: str | None = None
    crawl_immediately: bool = False
    crawl_once: bool = False
    scoring: str | None = None
    metadata: list[FeedMeta] = field(default_factory=list)
    content: FeedContent | None = None
    acl: FeedAcl | None = None
    body: bytes | None = None

    def __post_init__(self) -> None:
        if self.acl is not None:
            self.acl.document_url = self.url

    @property
    def last_modified(self) -> datetime | None:
        """Parsed last-modified value (RFC 1123 or ISO 8601), None if absent or invalid."""
        raw = (self.last_modified_raw or "").strip()
        if not raw:
            return None
        try:
            return parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            pass
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Unparseable last-modified '{raw}' on {self.url}")
            return None

    def metadata_dict(self) -> dict[str, str]:
        """Metadata by name; repeated names are joined with ';'."""
        merged: dict[str, str] = {}
        for meta in self.metadata:
            value = meta.decoded()
            if meta.name in merged:
                merged[meta.name] = f"{merged[meta.name]};{value}"
            else:
                merged[meta.name] = value
        return merged

    def set_property(self, name: str, value: str) -> bool:
        """Set a record attribute from a doc-controls key.

        Returns:
            False if the name is not a record attribute.
        """
        key = name.strip().lower()
        if re.fullmatch(r"crawl[-_]once", key):
            self.crawl_once = value.strip().lower() == "true"
        elif key == "lock":
            self.lock = value.strip().lower() == "true"
        elif key == "scoring":
            self.scoring = value
        elif re.fullmatch(r"display[-_]?url", key):
            self.display_url = value
        elif key == "pagerank":
            self.pagerank = value
        elif key == "mimetype":
            self.mimetype = value
        else:
            return False
        return True


@dataclass
class FeedMembership:
    """Group membership from an xmlgroups feed."""

    principal: FeedPrincipal
    members: list[FeedPrincipal] = field(default_factory=list)
