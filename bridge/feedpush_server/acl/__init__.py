"""
ACL module - inheritance resolution for feed documents.

This module handles:
- The URL-keyed ACL graph (one node per URL)
- Readiness of documents whose whole ancestor chain is known
- Materialization of a chain into ordered permission levels

Invariants:
    - A document is never released before every ancestor ACL is known
    - Graph state lives in memory only, it is rebuilt from feeds after restart

How to change safely:
    - Run the readiness property tests after any change to manager.py
    - Keep virtual group naming stable
"""

from .graph import AclGraph, AclNode
from .manager import AclInheritanceManager, GraphStats
from .permissions import (
    ALLOW_SUFFIX,
    DENY_SUFFIX,
    IdentityBody,
    IdentityType,
    MaterializedPermissions,
    PermissionIdentity,
    PermissionLevel,
    PermissionMaterializer,
    PermissionSet,
    identity_for_acl,
    identity_for_membership,
)

__all__ = [
    "ALLOW_SUFFIX",
    "DENY_SUFFIX",
    "AclGraph",
    "AclInheritanceManager",
    "AclNode",
    "GraphStats",
    "IdentityBody",
    "IdentityType",
    "MaterializedPermissions",
    "PermissionIdentity",
    "PermissionLevel",
    "PermissionMaterializer",
    "PermissionSet",
    "identity_for_acl",
    "identity_for_membership",
]
