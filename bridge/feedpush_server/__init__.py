"""
Feed Push Bridge - legacy search-appliance push feeds to a cloud Push API.

This package receives XML feed batches from legacy connectors, resolves
per-URL ACL inheritance chains and forwards documents and permission
identities to a cloud indexing service:
- XML feeds (documents, ACL fragments) and xmlgroups feeds (memberships)
- ACL inheritance graph with readiness tracking per URL
- Permission materialization into ordered permission levels
- Push API client for identities and documents

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Legacy    │────▶│    HTTP     │────▶│  Feed Parser    │
    │  Connector  │     │  Listener   │     │ (header/acl/rec)│
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                        ┌─────────────────────────────────────────┐
                        │       ACL Inheritance Manager           │
                        │   (graph + readiness + ready queue)     │
                        └─────────────────────────────────────────┘
                                             │
                                             ▼
                        ┌─────────────────────────────────────────┐
                        │        Permission Materializer          │
                        └─────────────────────────────────────────┘
                                             │
                                             ▼
                                      ┌─────────────┐
                                      │  Push API   │
                                      │ (identities,│
                                      │  documents) │
                                      └─────────────┘

Invariants:
    - A document is pushed only once every ancestor ACL is known
    - The ACL graph is in-memory and rebuilt from the feed stream
    - Deletions are never delayed by ACL readiness
    - Every virtual group referenced by a document is pushed as an identity

How to change safely:
    - Keep inheritance composition rules covered by the scenario tests
    - New feed attributes must default to the legacy connector's behaviour
    - Push API payload changes must keep field names of the public API
"""

from ._version import __version__

__all__ = ["__version__"]
