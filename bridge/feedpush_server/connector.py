"""
Feed connector: turns feed batches into Push API calls.

One batch goes through these steps:
    1. Extract the XML payload and parse it completely
    2. Map the datasource to a push source, mark the source REFRESH/INCREMENTAL
    3. Push the virtual groups of every standalone ACL, then add it to the graph
    4. Collect documents (crawling root URLs for metadata-and-url feeds)
    5. Track root URLs and detect full refreshes
    6. Submit documents to the ACL manager and push the ready ones
    7. Delete stale documents after full feeds, mark the source IDLE

Invariants:
    - A malformed batch never reaches the ACL graph
    - One failing document never aborts the batch, it is counted as failed
    - Batches are processed one at a time, so a batch only pushes the
      documents it drained, to its own source
    - Identities referenced by a document are pushed before the document
    - An ADD is pushed only while its ACL chain is ready

How to change safely:
    - Keep parsing ahead of any graph mutation
    - Test full-refresh detection with nested root URLs
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

import httpx

from .acl.manager import AclInheritanceManager
from .acl.permissions import (
    IdentityBody,
    PermissionMaterializer,
    identity_for_acl,
    identity_for_membership,
)
from .config import BridgeConfig
from .crawl.web_parser import WebParser
from .feed.models import FeedAcl, FeedError, FeedHeader, FeedRecord, FeedType, RecordAction
from .feed.parser import FeedParser, extract_xml_payload
from .push.base import PushClient, PushError, SourceStatus
from .push.models import PushDocument

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """A batch cannot be processed at all."""

    pass


@dataclass
class FeedStats:
    """Outcome of one feed batch."""

    datasource: str = ""
    source_id: str = ""
    feed_type: FeedType = FeedType.INCREMENTAL
    full_refresh: bool = False
    acls: int = 0
    added: int = 0
    deleted: int = 0
    ignored: int = 0
    deferred: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "datasource": self.datasource,
            "source_id": self.source_id,
            "feed_type": self.feed_type.value,
            "full_refresh": self.full_refresh,
            "acls": self.acls,
            "added": self.added,
            "deleted": self.deleted,
            "ignored": self.ignored,
            "deferred": self.deferred,
            "failed": self.failed,
        }


class FeedConnector:
    """Processes feed and groups batches against one ACL graph.

    Thread safety:
        process_feed() serialises batches; process_groups() only talks to
        the push client and may run concurrently with a feed batch.

    Example:
        >>> connector = FeedConnector(config, InMemoryPushClient())
        >>> stats = connector.process_feed(request_body)
        >>> stats.added
        3
    """

    def __init__(
        self,
        config: BridgeConfig,
        push_client: PushClient,
        manager: AclInheritanceManager | None = None,
        web_parser: WebParser | None = None,
        materializer: PermissionMaterializer | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            config: Bridge configuration
            push_client: Push API client
            manager: ACL manager (a fresh one by default)
            web_parser: Crawler for metadata-and-url feeds (httpx-backed by default)
            materializer: Permission materializer
        """
        self._config = config
        self._push = push_client
        self._manager = manager or AclInheritanceManager(config.feed.push_records_without_acl)
        self._materializer = materializer or PermissionMaterializer()

        self._http: httpx.Client | None = None
        if web_parser is None:
            self._http = httpx.Client(timeout=config.push.timeout_seconds, follow_redirects=True)
            web_parser = WebParser(self._http)
        self._web_parser = web_parser

        self._roots: list[str] = []
        self._batch_lock = threading.Lock()

    @property
    def manager(self) -> AclInheritanceManager:
        return self._manager

    @property
    def known_roots(self) -> list[str]:
        return list(self._roots)

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    # -------------------------------------------------------------------------
    # Feeds
    # -------------------------------------------------------------------------

    def process_feed(self, body: bytes) -> FeedStats:
        """Process one feed request body.

        Args:
            body: Raw body of a /xmlfeed request

        Returns:
            Counters of the batch

        Raises:
            MalformedFeedError: If the body holds no valid feed
            ConnectorError: If no push source is configured for the datasource
        """
        payload = extract_xml_payload(body)
        parser = FeedParser(payload)
        header = parser.parse_header() or FeedHeader(datasource="")
        acls = list(parser.parse_acls())
        records = list(parser.parse_records())

        source_id = self._config.push.source_for(header.datasource)
        if not source_id:
            raise ConnectorError(f"No push source for datasource '{header.datasource}'")

        stats = FeedStats(
            datasource=header.datasource,
            source_id=source_id,
            feed_type=header.feed_type,
            acls=len(acls),
        )
        logger.info(
            f"Processing feed: datasource={header.datasource}, type={header.feed_type.value}, "
            f"source={source_id}, acls={len(acls)}, records={len(records)}"
        )

        with self._batch_lock:
            self._manager.push_without_acl = self._config.feed.push_records_without_acl
            self._set_status(
                source_id,
                SourceStatus.REFRESH if header.feed_type == FeedType.FULL else SourceStatus.INCREMENTAL,
            )

            for acl in acls:
                self._push_identities(identity_for_acl(acl))
                self._manager.upsert_acl(acl)

            feed_roots = [record.url for record in records]
            if header.feed_type == FeedType.METADATA_AND_URL:
                records = self._crawl(feed_roots)

            stats.full_refresh = self._update_roots(feed_roots)
            if stats.full_refresh:
                self._manager.full_refresh_reset()

            for record in records:
                self._manager.submit_document(record)

            first_ordering_id = 0
            for record in self._manager.drain_ready():
                try:
                    ordering_id = self._push_record(record, source_id, stats)
                except (PushError, FeedError) as e:
                    logger.error(f"Failed to push {record.action.name} {record.url}: {e}")
                    stats.failed += 1
                    continue
                if ordering_id and not first_ordering_id:
                    first_ordering_id = ordering_id

            if header.feed_type == FeedType.FULL or stats.full_refresh:
                self._delete_older_than(source_id, first_ordering_id)

            self._set_status(source_id, SourceStatus.IDLE)

        logger.info(
            f"Feed processed: added={stats.added}, deleted={stats.deleted}, "
            f"ignored={stats.ignored}, deferred={stats.deferred}, failed={stats.failed}",
            extra=stats.to_dict(),
        )
        return stats

    def _crawl(self, roots: list[str]) -> list[FeedRecord]:
        records: list[FeedRecord] = []
        for root in roots:
            records.extend(
                self._web_parser.extract_records(root, self._config.feed.delete_on_invalid_url)
            )
        return records

    def _update_roots(self, feed_roots: list[str]) -> bool:
        """Merge the batch's roots into the known roots.

        A root under a known root is an incremental update of it; a root
        containing known roots replaces them.

        Returns:
            True if every known root is part of the batch (full refresh)
        """
        for root in feed_roots:
            incremental = any(root.startswith(known) for known in self._roots)
            overridden = [k for k in self._roots if k != root and k.startswith(root)]
            for known in overridden:
                logger.info(f"Root {root} replaces {known}")
                self._roots.remove(known)
            if not incremental and root not in self._roots:
                self._roots.append(root)

        if not feed_roots:
            return False
        feed_set = set(feed_roots)
        return all(known in feed_set for known in self._roots)

    def _push_record(self, record: FeedRecord, source_id: str, stats: FeedStats) -> int | None:
        logger.info(
            f">>> {record.action.name}|{record.url}|{record.mimetype or 'None'}|"
            f"{record.last_modified_raw or 'Unspecified'}"
        )

        if record.action == RecordAction.ADD:
            node = self._manager.node(record.url)
            has_acl = node is not None and node.acl is not None
            if has_acl and not self._manager.is_ready(record.url):
                # Queued while ready, then an ancestor changed in the same batch.
                # The pending record is queued again once the chain is complete.
                logger.info(f"ACL chain of {record.url} is incomplete, push deferred")
                stats.deferred += 1
                return None

            chain = self._manager.resolve_chain(record.url)
            if not chain:
                chain = [
                    FeedAcl(
                        record.url,
                        allow_anonymous=self._config.feed.push_records_without_acl,
                    )
                ]
            materialized = self._materializer.materialize(chain)
            self._push_identities(materialized.identities, raise_errors=True)

            if self._config.feed.require_display_url and not record.display_url:
                logger.warning(f"A document without display URL is ignored ({record.url})")
                stats.ignored += 1
                return None

            document = PushDocument.from_record(record, materialized.levels)
            ordering_id = self._push.add_or_update_document(source_id, document)
            stats.added += 1
            return ordering_id

        if record.action == RecordAction.DELETE:
            ordering_id = self._push.delete_document(source_id, record.url)
            stats.deleted += 1
            return ordering_id

        logger.error(f"No action was specified for the record '{record.url}'")
        stats.ignored += 1
        return None

    def _push_identities(self, bodies: list[IdentityBody], raise_errors: bool = False) -> None:
        provider_id = self._config.push.provider_id
        for body in bodies:
            try:
                self._push.add_or_update_identity(provider_id, body)
            except PushError as e:
                if raise_errors:
                    raise
                logger.error(f"Failed to push identity {body.identity.name}: {e}")

    def _delete_older_than(self, source_id: str, ordering_id: int) -> None:
        if not ordering_id:
            logger.warning("Full feed without pushed documents, old documents are kept")
            return
        logger.warning(
            f"Full feed detected - deleting old documents. Reference ordering id: {ordering_id}"
        )
        try:
            self._push.delete_documents_older_than(
                source_id, ordering_id, self._config.push.delete_queue_delay_minutes
            )
        except PushError as e:
            logger.error(f"Failed to delete old documents of {source_id}: {e}")

    def _set_status(self, source_id: str, status: SourceStatus) -> None:
        try:
            self._push.update_source_status(source_id, status)
        except PushError as e:
            logger.error(f"Failed to set status {status.value} on {source_id}: {e}")

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def process_groups(self, body: bytes) -> int:
        """Push every membership of an xmlgroups request body.

        Returns:
            Number of groups pushed

        Raises:
            MalformedFeedError: If the body holds no valid groups feed
        """
        payload = extract_xml_payload(body)
        memberships = list(FeedParser(payload).parse_memberships())
        provider_id = self._config.push.provider_id

        pushed = 0
        for membership in memberships:
            try:
                self._push.add_or_update_identity(provider_id, identity_for_membership(membership))
                pushed += 1
            except PushError as e:
                logger.error(f"Failed to push group {membership.principal.value}: {e}")

        logger.info(f"Groups processed: {pushed}/{len(memberships)} pushed to {provider_id}")
        return pushed

    def stats(self) -> dict[str, Any]:
        """Graph statistics and known roots, for the health endpoint."""
        data: dict[str, Any] = self._manager.stats().to_dict()
        data["known_roots"] = len(self.known_roots)
        return data
