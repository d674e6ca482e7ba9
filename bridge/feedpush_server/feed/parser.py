"""
Streaming parser for legacy XML feeds and xmlgroups feeds.

Each parse method makes one streaming pass over the document with
ElementTree.iterparse and yields model objects lazily, in document order.
Callers read the header first, then the standalone ACLs, then the records,
which is the order the ACL graph needs them in.

Invariants:
    - Document order is preserved within each element kind
    - Parsed elements are cleared once converted, and finished top-level
      elements are detached from the root, so memory is bounded by the
      largest <group> rather than by the feed
    - Any XML or attribute error surfaces as MalformedFeedError

How to change safely:
    - Keep attribute defaults identical to the legacy connector's serializer
    - Add new record attributes to _record_from_element only
"""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from pathlib import Path

from .models import (
    AclAccess,
    CaseSensitivity,
    ContentEncoding,
    FeedAcl,
    FeedContent,
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

logger = logging.getLogger(__name__)

START_OF_XML = b"<?xml"
END_OF_XML = b"--<<--"

HEADER_ELEMENT = "header"
GROUP_ELEMENT = "group"
RECORD_ELEMENT = "record"
ACL_ELEMENT = "acl"
PRINCIPAL_ELEMENT = "principal"
MEMBERSHIP_ELEMENT = "membership"
MEMBERS_ELEMENT = "members"


def extract_xml_payload(body: bytes) -> bytes:
    """Strip the form-data noise legacy connectors wrap around the feed XML.

    Args:
        body: Raw request body

    Returns:
        The XML document, from its declaration up to the end marker

    Raises:
        MalformedFeedError: If the body does not contain an XML document
    """
    start = body.find(START_OF_XML)
    if start < 0:
        raise MalformedFeedError("The request does not contain a XML.")
    payload = body[start:]
    end = payload.find(END_OF_XML)
    if end >= 0:
        payload = payload[:end]
    return payload.rstrip()


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _text(elem: ET.Element | None) -> str:
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for child in elem:
        if _local(child.tag) == name:
            return child
    return None


def _principal_from_element(elem: ET.Element) -> FeedPrincipal:
    value = _text(elem)
    if not value:
        raise MalformedFeedError("Principal without a name")
    return FeedPrincipal(
        value=value,
        scope=PrincipalScope.parse(elem.get("scope")),
        access=AclAccess.parse(elem.get("access")),
        namespace=elem.get("namespace") or "Default",
        case_sensitivity=CaseSensitivity.parse(elem.get("case-sensitivity-type")),
        principal_type=elem.get("principal-type"),
    )


def _acl_from_element(elem: ET.Element, document_url: str | None = None) -> FeedAcl:
    url = document_url or elem.get("url")
    if not url:
        raise MalformedFeedError("ACL without url")
    return FeedAcl(
        document_url=url,
        inheritance_type=InheritanceType.from_xml(elem.get("inheritance-type")),
        inherit_from=elem.get("inherit-from") or None,
        principals=[
            _principal_from_element(p) for p in elem if _local(p.tag) == PRINCIPAL_ELEMENT
        ],
    )


def _record_from_element(elem: ET.Element, group_action: RecordAction) -> FeedRecord:
    url = elem.get("url")
    if not url:
        raise MalformedFeedError("Record without url")

    action = RecordAction.parse(elem.get("action"))
    if action == RecordAction.UNSPECIFIED:
        action = group_action

    metadata: list[FeedMeta] = []
    metadata_elem = _child(elem, "metadata")
    if metadata_elem is not None:
        for meta in metadata_elem:
            if _local(meta.tag) != "meta":
                continue
            metadata.append(
                FeedMeta(
                    name=meta.get("name", ""),
                    content=meta.get("content", ""),
                    encoding=ContentEncoding.parse(meta.get("encoding")),
                )
            )

    content = None
    content_elem = _child(elem, "content")
    if content_elem is not None:
        content = FeedContent(
            value=content_elem.text or "",
            encoding=ContentEncoding.parse(content_elem.get("encoding")),
        )

    acl_elem = _child(elem, ACL_ELEMENT)
    acl = _acl_from_element(acl_elem, document_url=url) if acl_elem is not None else None

    return FeedRecord(
        url=url,
        action=action,
        display_url=elem.get("displayurl"),
        mimetype=elem.get("mimetype"),
        last_modified_raw=elem.get("last-modified"),
        auth_method=elem.get("authmethod"),
        lock=_flag(elem.get("lock")),
        pagerank=elem.get("pagerank"),
        crawl_immediately=_flag(elem.get("crawl-immediately")),
        crawl_once=_flag(elem.get("crawl-once")),
        scoring=elem.get("scoring"),
        metadata=metadata,
        content=content,
        acl=acl,
    )


class FeedParser:
    """Lazy parser over one feed document.

    The source is either raw bytes (a request body) or a file path. Every
    parse_* call re-reads the source from the start.

    Example:
        >>> parser = FeedParser(xml_bytes)
        >>> header = parser.parse_header()
        >>> for acl in parser.parse_acls():
        ...     manager.upsert_acl(acl)
        >>> for record in parser.parse_records():
        ...     manager.submit_document(record)
    """

    def __init__(self, source: bytes | str | Path) -> None:
        if isinstance(source, bytes):
            self._data: bytes | None = source
            self._path: Path | None = None
        else:
            path = Path(source)
            if not path.is_file():
                raise FileNotFoundError(f"The file '{path}' does not exist.")
            self._data = None
            self._path = path

    def _events(self) -> Iterator[tuple[str, ET.Element]]:
        source = io.BytesIO(self._data) if self._data is not None else str(self._path)
        root: ET.Element | None = None
        depth = 0
        try:
            for event, elem in ET.iterparse(source, events=("start", "end")):
                if event == "start":
                    if root is None:
                        root = elem
                    depth += 1
                else:
                    depth -= 1
                yield event, elem
                # A direct child of the root is complete and already consumed.
                if event == "end" and depth == 1 and root is not None:
                    root.clear()
        except ET.ParseError as e:
            raise MalformedFeedError(f"Invalid feed XML: {e}") from e

    def parse_header(self) -> FeedHeader | None:
        """Return the feed header, or None if the feed has none."""
        for event, elem in self._events():
            if event == "end" and _local(elem.tag) == HEADER_ELEMENT:
                datasource = _text(_child(elem, "datasource"))
                feed_type = FeedType.parse(_text(_child(elem, "feedtype")))
                return FeedHeader(datasource=datasource, feed_type=feed_type)
        return None

    def parse_acls(self) -> Iterator[FeedAcl]:
        """Yield the standalone <acl> elements of every <group>."""
        record_depth = 0
        group_depth = 0
        for event, elem in self._events():
            name = _local(elem.tag)
            if name == RECORD_ELEMENT:
                record_depth += 1 if event == "start" else -1
                if event == "end":
                    elem.clear()
            elif name == GROUP_ELEMENT:
                group_depth += 1 if event == "start" else -1
            elif name == ACL_ELEMENT and event == "end" and group_depth and not record_depth:
                yield _acl_from_element(elem)
                elem.clear()

    def parse_records(self) -> Iterator[FeedRecord]:
        """Yield every <record>, applying the enclosing group's action."""
        group_actions: list[RecordAction] = []
        for event, elem in self._events():
            name = _local(elem.tag)
            if name == GROUP_ELEMENT:
                if event == "start":
                    action = RecordAction.parse(elem.get("action"))
                    if action == RecordAction.UNSPECIFIED:
                        action = RecordAction.ADD
                    group_actions.append(action)
                else:
                    group_actions.pop()
                    elem.clear()
            elif name == RECORD_ELEMENT and event == "end":
                group_action = group_actions[-1] if group_actions else RecordAction.UNSPECIFIED
                yield _record_from_element(elem, group_action)
                elem.clear()

    def parse_memberships(self) -> Iterator[FeedMembership]:
        """Yield every <membership> of an xmlgroups feed."""
        for event, elem in self._events():
            if event != "end" or _local(elem.tag) != MEMBERSHIP_ELEMENT:
                continue
            principal_elem = _child(elem, PRINCIPAL_ELEMENT)
            if principal_elem is None:
                raise MalformedFeedError("Membership without principal")
            members_elem = _child(elem, MEMBERS_ELEMENT)
            members = []
            if members_elem is not None:
                members = [
                    _principal_from_element(p)
                    for p in members_elem
                    if _local(p.tag) == PRINCIPAL_ELEMENT
                ]
            yield FeedMembership(principal=_principal_from_element(principal_elem), members=members)
            elem.clear()
