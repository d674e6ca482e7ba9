"""
URL-keyed node store of the ACL inheritance tree.

Every URL ever seen (as a document, an ACL, or an inherit-from target) has
exactly one AclNode. Parent and child links are URLs resolved through the
graph, so the graph is the only owner of nodes and back references never
form ownership cycles.

Invariants:
    - Exactly one node per URL, nodes are never removed
    - node.parent_url is set iff node is in the parent's children
    - A node without ACL is never ready

How to change safely:
    - Mutate links only through attach()/detach()
    - Callers serialise access (AclInheritanceManager holds the lock)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from ..feed.models import FeedAcl, FeedRecord

logger = logging.getLogger(__name__)


@dataclass
class AclNode:
    """Node of the ACL inheritance tree.

    Attributes:
        url: Node key, never changes
        acl: Current ACL fragment for the URL
        is_ready: Whole ancestor chain is known
        parent_url: URL of the parent node
        children: URLs of the nodes inheriting from this one
        pending: Latest ADD record waiting for (or re-pushed on) readiness
    """

    url: str
    acl: FeedAcl | None = None
    is_ready: bool = False
    parent_url: str | None = None
    children: set[str] = field(default_factory=set)
    pending: FeedRecord | None = None


class AclGraph:
    """Map of URL to AclNode.

    Not thread-safe on its own.

    Example:
        >>> graph = AclGraph()
        >>> doc = graph.get_or_create("http://host/doc1")
        >>> graph.attach(doc, "http://host/folder1")
        >>> graph.parent(doc).url
        'http://host/folder1'
    """

    def __init__(self) -> None:
        self._nodes: dict[str, AclNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, url: object) -> bool:
        return url in self._nodes

    def __iter__(self) -> Iterator[AclNode]:
        return iter(list(self._nodes.values()))

    def get(self, url: str) -> AclNode | None:
        return self._nodes.get(url)

    def get_or_create(self, url: str) -> AclNode:
        """Return the node for a URL, creating a bare one if needed."""
        node = self._nodes.get(url)
        if node is None:
            node = AclNode(url=url)
            self._nodes[url] = node
        return node

    def parent(self, node: AclNode) -> AclNode | None:
        if node.parent_url is None:
            return None
        return self._nodes.get(node.parent_url)

    def children(self, node: AclNode) -> list[AclNode]:
        return [self._nodes[url] for url in sorted(node.children) if url in self._nodes]

    def attach(self, node: AclNode, parent_url: str) -> AclNode:
        """Link a node under parent_url, creating a placeholder parent if needed.

        Returns:
            The parent node
        """
        if node.parent_url is not None:
            self.detach(node)
        parent = self.get_or_create(parent_url)
        parent.children.add(node.url)
        node.parent_url = parent.url
        return parent

    def detach(self, node: AclNode) -> None:
        """Unlink a node from its parent, if it has one."""
        parent = self.parent(node)
        if parent is not None:
            parent.children.discard(node.url)
        node.parent_url = None
