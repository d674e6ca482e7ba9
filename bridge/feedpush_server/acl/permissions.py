"""
Permission materializer: turns a resolved ACL chain into ordered permission levels.

Every URL of a chain is represented downstream by two virtual groups,
"{url}-allowed" (its permit principals) and "{url}-disallowed" (its deny
principals). A document's permissions are an ordered list of levels; the
target evaluates levels in order, and the sets inside one level must all
permit.

Composition of a child with its parent:
    BOTH_PERMIT       parent set joins the level holding the child set
    CHILD_OVERRIDES   parent level appended after the child subtree
    PARENT_OVERRIDES  parent level inserted before the child subtree
    LEAF_NODE         terminates the chain

Invariants:
    - The rule of a link is the parent's declared type; a LEAF_NODE parent
      is composed with the child's type and ends the walk
    - A LEAF_NODE fragment that still references a parent is truncated there
    - Materializing the same chain twice gives equal results
    - Every virtual group referenced by a level has an IdentityBody

How to change safely:
    - Keep the name suffixes: already indexed documents reference them
    - Add chain shapes to the scenario tests before touching compose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..feed.models import FeedAcl, FeedMembership, FeedPrincipal, InheritanceType, PrincipalScope

logger = logging.getLogger(__name__)

ALLOW_SUFFIX = "-allowed"
DENY_SUFFIX = "-disallowed"


class IdentityType(Enum):
    """Identity types understood by the Push API."""

    USER = "User"
    GROUP = "Group"
    VIRTUAL_GROUP = "VirtualGroup"


@dataclass(frozen=True)
class PermissionIdentity:
    """A named identity referenced by permissions or group mappings."""

    name: str
    type: IdentityType = IdentityType.USER

    @classmethod
    def from_principal(cls, principal: FeedPrincipal) -> PermissionIdentity:
        identity_type = (
            IdentityType.GROUP if principal.scope == PrincipalScope.GROUP else IdentityType.USER
        )
        return cls(principal.value, identity_type)

    def to_dict(self) -> dict[str, str]:
        return {"identity": self.name, "identityType": self.type.value}


def allow_group(url: str) -> PermissionIdentity:
    return PermissionIdentity(f"{url}{ALLOW_SUFFIX}", IdentityType.VIRTUAL_GROUP)


def deny_group(url: str) -> PermissionIdentity:
    return PermissionIdentity(f"{url}{DENY_SUFFIX}", IdentityType.VIRTUAL_GROUP)


@dataclass
class PermissionSet:
    """Allowed and denied identities evaluated together."""

    allowed: list[PermissionIdentity] = field(default_factory=list)
    denied: list[PermissionIdentity] = field(default_factory=list)
    allow_anonymous: bool = False

    @classmethod
    def for_acl(cls, acl: FeedAcl) -> PermissionSet:
        """The virtual allow/deny groups of one URL."""
        return cls(
            allowed=[allow_group(acl.document_url)],
            denied=[deny_group(acl.document_url)],
            allow_anonymous=acl.allow_anonymous,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowAnonymous": self.allow_anonymous,
            "allowedPermissions": [i.to_dict() for i in self.allowed],
            "deniedPermissions": [i.to_dict() for i in self.denied],
        }


@dataclass
class PermissionLevel:
    """One precedence position; all of its sets must permit."""

    sets: list[PermissionSet] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"permissionSets": [s.to_dict() for s in self.sets]}


@dataclass
class IdentityBody:
    """An identity and its member mappings, as pushed to a security provider."""

    identity: PermissionIdentity
    mappings: list[PermissionIdentity] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": {"name": self.identity.name, "type": self.identity.type.value},
            "mappings": [{"name": m.name, "type": m.type.value} for m in self.mappings],
            "wellKnowns": [],
        }


@dataclass
class MaterializedPermissions:
    """Result of materializing a chain.

    Attributes:
        levels: Ordered permission levels of the document
        identities: Virtual group bodies of every fragment used, own fragment first
    """

    levels: list[PermissionLevel] = field(default_factory=list)
    identities: list[IdentityBody] = field(default_factory=list)

    def to_list(self) -> list[dict[str, Any]]:
        return [level.to_dict() for level in self.levels]


def identity_for_acl(acl: FeedAcl) -> list[IdentityBody]:
    """Build the allow and deny virtual group bodies of an ACL fragment.

    Permit principals map into "{url}-allowed", deny principals into
    "{url}-disallowed". Both bodies are returned even when empty, since the
    document permissions reference them either way.
    """
    allow = IdentityBody(allow_group(acl.document_url))
    deny = IdentityBody(deny_group(acl.document_url))
    for principal in acl.permitted():
        allow.mappings.append(PermissionIdentity.from_principal(principal))
    for principal in acl.denied():
        deny.mappings.append(PermissionIdentity.from_principal(principal))
    return [allow, deny]


def identity_for_membership(membership: FeedMembership) -> IdentityBody:
    """Build the group body of an xmlgroups membership."""
    return IdentityBody(
        identity=PermissionIdentity.from_principal(membership.principal),
        mappings=[PermissionIdentity.from_principal(m) for m in membership.members],
    )


class PermissionMaterializer:
    """Composes permission levels along an ACL chain.

    Stateless; one instance can be shared across threads.

    Example:
        >>> doc = FeedAcl("http://h/doc1", InheritanceType.CHILD_OVERRIDES,
        ...               inherit_from="http://h/folder1")
        >>> folder = FeedAcl("http://h/folder1", InheritanceType.LEAF_NODE)
        >>> result = PermissionMaterializer().materialize([doc, folder])
        >>> [[s.allowed[0].name for s in lvl.sets] for lvl in result.levels]
        [['http://h/doc1-allowed'], ['http://h/folder1-allowed']]
    """

    def materialize(self, chain: list[FeedAcl]) -> MaterializedPermissions:
        """Materialize a chain ordered from the document up to its root.

        Args:
            chain: ACL fragments, own fragment first, then each ancestor

        Returns:
            The ordered levels and the virtual group bodies to push
        """
        result = MaterializedPermissions()
        if not chain:
            return result

        own = chain[0]
        result.levels.append(PermissionLevel([PermissionSet.for_acl(own)]))
        result.identities.extend(identity_for_acl(own))

        # Index of the level holding the current child set.
        cursor = 0
        child = own
        for parent in chain[1:]:
            if child.inheritance_type == InheritanceType.LEAF_NODE:
                logger.warning(
                    f"Inheritance from a leaf node: {child.document_url} is leaf-node "
                    f"but inherits from {child.inherit_from}, chain truncated"
                )
                break

            rule = parent.inheritance_type
            if rule == InheritanceType.LEAF_NODE:
                rule = child.inheritance_type

            cursor = self._compose(result.levels, cursor, PermissionSet.for_acl(parent), rule)
            result.identities.extend(identity_for_acl(parent))

            if parent.inheritance_type == InheritanceType.LEAF_NODE:
                if parent.inherit_from:
                    logger.warning(
                        f"Leaf node {parent.document_url} inherits from "
                        f"{parent.inherit_from}, chain truncated"
                    )
                break
            child = parent

        return result

    @staticmethod
    def _compose(
        levels: list[PermissionLevel],
        cursor: int,
        parent_set: PermissionSet,
        rule: InheritanceType,
    ) -> int:
        """Compose parent_set into levels.

        Returns:
            Index of the level holding parent_set, the cursor of the next link
        """
        if rule == InheritanceType.BOTH_PERMIT:
            levels[cursor].sets.append(parent_set)
            return cursor
        if rule == InheritanceType.PARENT_OVERRIDES:
            levels.insert(0, PermissionLevel([parent_set]))
            return 0
        levels.append(PermissionLevel([parent_set]))
        return len(levels) - 1
