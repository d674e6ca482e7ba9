"""
ACL inheritance manager: builds the inheritance tree and tracks ready documents.

Documents arrive with (or before, or after) the ACL fragments of their
ancestors. A document may only be pushed once every ACL of its inheritance
chain is known, because the target evaluates permissions along the whole
chain and a broken chain must never be treated as permitted.

Readiness state machine, per node:
    NotReady ──(ACL known, parent ready or no parent)──▶ Ready
    Ready ──(ACL re-declared with another type or parent)──▶ NotReady
The reset edge applies to the node and to every descendant.

Invariants:
    - is_ready(N) == N.acl is not None and (no parent or is_ready(parent))
    - A pending document is queued once per NotReady -> Ready transition
    - Deletions are queued immediately and cancel the URL's pending document
    - Re-declaring an ACL with the same type and parent never changes readiness
    - Inheritance cycles are reported and stay NotReady, never loop

How to change safely:
    - Every public method takes the lock; private helpers assume it is held
    - Keep readiness propagation iterative (chains may be deep)
    - Test topology changes with descendants that hold pending documents
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..feed.models import FeedAcl, FeedRecord, RecordAction
from .graph import AclGraph, AclNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphStats:
    """Snapshot of the graph for health reporting."""

    nodes: int
    with_acl: int
    ready: int
    pending: int
    queued: int

    def to_dict(self) -> dict[str, int]:
        return {
            "nodes": self.nodes,
            "with_acl": self.with_acl,
            "ready": self.ready,
            "pending": self.pending,
            "queued": self.queued,
        }


class AclInheritanceManager:
    """Owns the ACL graph, the readiness state and the ready queue.

    Thread safety:
        All public methods are serialised by one re-entrant lock, so
        concurrent feed batches can share one manager.

    Example:
        >>> manager = AclInheritanceManager()
        >>> manager.upsert_acl(FeedAcl("http://h/doc1", InheritanceType.CHILD_OVERRIDES,
        ...                            inherit_from="http://h/folder1"))
        >>> manager.submit_document(FeedRecord("http://h/doc1", RecordAction.ADD))
        >>> manager.drain_ready()
        []
        >>> manager.upsert_acl(FeedAcl("http://h/folder1", InheritanceType.LEAF_NODE))
        >>> [r.url for r in manager.drain_ready()]
        ['http://h/doc1']
    """

    def __init__(self, push_without_acl: bool = False) -> None:
        """Initialize the manager.

        Args:
            push_without_acl: Queue ADD records of URLs without ACL immediately
        """
        self._graph = AclGraph()
        self._ready: list[FeedRecord] = []
        self._lock = threading.RLock()
        self._push_without_acl = push_without_acl
        self._reported_cycles: set[str] = set()

    @property
    def push_without_acl(self) -> bool:
        return self._push_without_acl

    @push_without_acl.setter
    def push_without_acl(self, value: bool) -> None:
        with self._lock:
            self._push_without_acl = value

    def __len__(self) -> int:
        with self._lock:
            return len(self._graph)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._graph

    # -------------------------------------------------------------------------
    # Graph mutation
    # -------------------------------------------------------------------------

    def upsert_acl(self, acl: FeedAcl) -> None:
        """Insert or replace the ACL fragment of acl.document_url.

        A change of inheritance type or parent resets the readiness of the
        node and all its descendants, so their documents are pushed again
        once the new chain is complete.
        """
        with self._lock:
            self._upsert(acl)

    def submit_document(self, record: FeedRecord) -> None:
        """Submit a feed record for pushing.

        Deletions (and records without action) are queued immediately.
        Additions wait until the URL's ACL chain is ready, unless
        push_without_acl is on and the URL has no ACL.
        """
        with self._lock:
            if record.action != RecordAction.ADD:
                node = self._graph.get(record.url)
                if node is not None:
                    # A stale add for this URL must not be pushed after the delete.
                    node.pending = None
                self._ready.append(record)
                return

            node = self._graph.get_or_create(record.url)
            node.pending = None
            if record.acl is not None:
                record.acl.document_url = record.url
                self._upsert(record.acl)

            node.pending = record
            if node.is_ready or (self._push_without_acl and node.acl is None):
                self._ready.append(record)

    def full_refresh_reset(self) -> None:
        """Forget every pending document.

        Used when a batch covers every known root: documents that are not in
        the new batch get removed downstream by delete-older-than, not by
        explicit deletes.
        """
        with self._lock:
            cleared = 0
            for node in self._graph:
                if node.pending is not None:
                    node.pending = None
                    cleared += 1
            logger.info(f"Full refresh: cleared {cleared} pending documents")

    def drain_ready(self) -> list[FeedRecord]:
        """Return the queued records and empty the queue."""
        with self._lock:
            ready = self._ready
            self._ready = []
            return ready

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    def check_ready(self, url: str) -> bool:
        """Re-evaluate readiness of a URL, queueing documents that become ready."""
        with self._lock:
            node = self._graph.get(url)
            return node is not None and self._check_ready(node)

    def mark_unready(self, url: str) -> None:
        """Reset readiness of a URL and all its descendants."""
        with self._lock:
            node = self._graph.get(url)
            if node is not None:
                self._mark_unready(node)

    def is_ready(self, url: str) -> bool:
        with self._lock:
            node = self._graph.get(url)
            return node is not None and node.is_ready

    def node(self, url: str) -> AclNode | None:
        """Return the node of a URL (for inspection only)."""
        with self._lock:
            return self._graph.get(url)

    def resolve_chain(self, url: str) -> list[FeedAcl]:
        """Return the ACL chain of a URL: its own ACL, then each ancestor's.

        The walk stops at the first ancestor without ACL and at a revisited
        URL (inheritance cycle).
        """
        with self._lock:
            chain: list[FeedAcl] = []
            seen: set[str] = set()
            node = self._graph.get(url)
            while node is not None and node.acl is not None:
                if node.url in seen:
                    self._report_cycle(node.url)
                    break
                seen.add(node.url)
                chain.append(node.acl)
                node = self._graph.parent(node)
            return chain

    def stats(self) -> GraphStats:
        with self._lock:
            nodes = list(self._graph)
            return GraphStats(
                nodes=len(nodes),
                with_acl=sum(1 for n in nodes if n.acl is not None),
                ready=sum(1 for n in nodes if n.is_ready),
                pending=sum(1 for n in nodes if n.pending is not None),
                queued=len(self._ready),
            )

    # -------------------------------------------------------------------------
    # Internals (lock held)
    # -------------------------------------------------------------------------

    def _upsert(self, acl: FeedAcl) -> None:
        node = self._graph.get_or_create(acl.document_url)
        previous = node.acl

        if previous is not None and not previous.same_topology(acl):
            logger.debug(
                f"ACL topology changed for {node.url}: "
                f"{previous.inheritance_type.value}<-{previous.inherit_from} to "
                f"{acl.inheritance_type.value}<-{acl.inherit_from}"
            )
            self._mark_unready(node)

        parent_url = acl.inherit_from or None
        if node.parent_url != parent_url:
            if parent_url is None:
                self._graph.detach(node)
            else:
                self._graph.attach(node, parent_url)

        node.acl = acl
        self._check_ready(node)

    def _check_ready(self, node: AclNode) -> bool:
        if node.is_ready:
            return True

        # Walk up to the topmost ancestor that is not ready yet; every node on
        # the way needs an ACL for the chain to be complete.
        seen: set[str] = set()
        current: AclNode | None = node
        top = node
        while current is not None and not current.is_ready:
            if current.acl is None:
                return False
            if current.url in seen:
                self._report_cycle(current.url)
                return False
            seen.add(current.url)
            top = current
            current = self._graph.parent(current)

        self._propagate_ready(top)
        return node.is_ready

    def _propagate_ready(self, root: AclNode) -> None:
        stack = [root]
        while stack:
            node = stack.pop()
            if node.is_ready or node.acl is None:
                continue
            parent = self._graph.parent(node)
            if parent is not None and not parent.is_ready:
                continue
            node.is_ready = True
            if node.pending is not None:
                self._ready.append(node.pending)
            stack.extend(reversed(self._graph.children(node)))

    def _mark_unready(self, node: AclNode) -> None:
        visited: set[str] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if current.url in visited:
                continue
            visited.add(current.url)
            current.is_ready = False
            stack.extend(self._graph.children(current))

    def _report_cycle(self, url: str) -> None:
        if url in self._reported_cycles:
            return
        self._reported_cycles.add(url)
        logger.warning(f"Broken ACL chain: inheritance cycle through {url}, documents stay unready")
