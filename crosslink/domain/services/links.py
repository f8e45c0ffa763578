"""Link Store - the validated graph of accepted record links.

The graph is an id-keyed edge set with a per-record adjacency index, so
cycles are allowed and traversal is a lookup, never ownership.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from ..exceptions import DuplicateLinkError, LinkNotFoundError, SelfLinkError
from ..models import (
    LinkKey,
    LinkType,
    RecordLink,
    ValidationStatus,
    ValidationSweepResult,
)

if TYPE_CHECKING:
    from ...infra.repositories import GraphRepository
    from .index import RecordIndex

logger = logging.getLogger(__name__)


class LinkStore:
    """Stores RecordLinks and enforces the uniqueness invariant.

    No two active links share (source, target, link_type) in the same
    direction; when either link is bidirectional the reverse pair is a
    duplicate too.
    """

    def __init__(self, index: RecordIndex, journal: GraphRepository | None = None) -> None:
        self._index = index
        self._journal = journal
        self._lock = threading.RLock()
        self._links: dict[str, RecordLink] = {}
        self._active_by_key: dict[LinkKey, str] = {}
        self._adjacency: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._links)

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert(self, link: RecordLink) -> RecordLink:
        """Insert a link, or replace the link with the same id.

        Raises:
            SelfLinkError: If source and target are the same record.
            DuplicateLinkError: If an active link with the same key exists.
                The store is left unchanged.
        """
        key = link.key
        if key.source_ref == key.target_ref:
            raise SelfLinkError(key.source_ref)

        with self._lock:
            if link.is_active:
                existing_id = self._conflicting_link_id(key, link.bidirectional, link.id)
                if existing_id is not None:
                    raise DuplicateLinkError(
                        key.source_ref, key.target_ref, key.link_type.value, existing_id
                    )
            if self._journal is not None:
                self._journal.save_link(link)
            previous = self._links.get(link.id)
            if previous is not None:
                self._unindex(previous)
            self._links[link.id] = link
            self._index_link(link)

        if previous is None:
            logger.info(
                f"Linked {key.source_ref} -> {key.target_ref} ({key.link_type.value})"
            )
        return link

    def remove(self, link_id: str) -> RecordLink:
        """Remove a link (explicit unlink).

        Raises:
            LinkNotFoundError: If the link does not exist.
        """
        with self._lock:
            link = self.require(link_id)
            if self._journal is not None:
                self._journal.delete_link(link_id)
            del self._links[link_id]
            self._unindex(link)
        logger.info(f"Removed link {link_id} ({link.key.source_ref} -> {link.key.target_ref})")
        return link

    def mark_broken(self, module: str, record_id: str) -> int:
        """Mark every active link touching a removed record as BROKEN.

        Returns:
            Number of links marked.
        """
        now = datetime.now(timezone.utc)
        marked = 0
        with self._lock:
            for link in self.list_for_record(record_id, module=module):
                if not link.is_active or link.validation_status is ValidationStatus.BROKEN:
                    continue
                self._replace(
                    link.model_copy(
                        update={
                            "validation_status": ValidationStatus.BROKEN,
                            "last_validated": now,
                            "broken_since": now,
                        }
                    )
                )
                marked += 1
        if marked:
            logger.info(f"Marked {marked} links broken for removed record {module}:{record_id}")
        return marked

    def purge_broken(self, older_than: datetime) -> list[str]:
        """Delete links broken since before `older_than`.

        Returns:
            IDs of the purged links.
        """
        with self._lock:
            expired = [
                link.id
                for link in self._links.values()
                if link.validation_status is ValidationStatus.BROKEN
                and link.broken_since is not None
                and link.broken_since <= older_than
            ]
            for link_id in expired:
                self.remove(link_id)
        if expired:
            logger.info(f"Purged {len(expired)} broken links")
        return expired

    def restore(self, links: list[RecordLink]) -> None:
        """Load links from the journal without writing back."""
        with self._lock:
            for link in links:
                self._links[link.id] = link
                self._index_link(link)
        logger.info(f"Restored {len(links)} record links")

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, link: RecordLink) -> ValidationStatus:
        """Check a link's endpoints against the record index.

        BROKEN if either endpoint no longer resolves, STALE if either was
        re-indexed since the link was last validated, VALID otherwise.
        """
        source = self._index.get(link.source_module, link.source_record_id)
        target = self._index.get(link.target_module, link.target_record_id)
        if source is None or target is None:
            return ValidationStatus.BROKEN
        if source.last_indexed > link.last_validated or target.last_indexed > link.last_validated:
            return ValidationStatus.STALE
        return ValidationStatus.VALID

    def validate_all(self, now: datetime | None = None) -> ValidationSweepResult:
        """Revalidate every active link, updating status and last_validated.

        Broken links are reported, never deleted.
        """
        now = now or datetime.now(timezone.utc)
        result = ValidationSweepResult(validated_at=now)
        for link in self.all_links(active_only=True):
            status = self.validate(link)
            result.checked += 1
            if status is ValidationStatus.BROKEN:
                result.broken += 1
            elif status is ValidationStatus.STALE:
                result.stale += 1
            else:
                result.valid += 1

            broken_since = None
            if status is ValidationStatus.BROKEN:
                broken_since = link.broken_since or now
            with self._lock:
                # Skip links removed or replaced while the sweep was running
                if self._links.get(link.id) is not link:
                    continue
                self._replace(
                    link.model_copy(
                        update={
                            "validation_status": status,
                            "last_validated": now,
                            "broken_since": broken_since,
                        }
                    )
                )

        logger.info(
            f"Validated {result.checked} links: {result.valid} valid, "
            f"{result.stale} stale, {result.broken} broken"
        )
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, link_id: str) -> RecordLink | None:
        return self._links.get(link_id)

    def require(self, link_id: str) -> RecordLink:
        """Get a link or raise LinkNotFoundError."""
        link = self._links.get(link_id)
        if link is None:
            raise LinkNotFoundError(link_id)
        return link

    def has_active(self, key: LinkKey, bidirectional: bool = False) -> bool:
        """Check whether inserting a link with this key would be a duplicate."""
        with self._lock:
            return self._conflicting_link_id(key, bidirectional) is not None

    def find_active(self, key: LinkKey) -> RecordLink | None:
        """Get the active link stored under exactly this key."""
        link_id = self._active_by_key.get(key)
        return self._links.get(link_id) if link_id else None

    def list_for_record(
        self,
        record_id: str,
        module: str | None = None,
        link_type: LinkType | None = None,
    ) -> list[RecordLink]:
        """Links where the record is either endpoint, oldest first."""
        with self._lock:
            links = [self._links[i] for i in self._adjacency.get(record_id, ())]
        if module is not None:
            links = [link for link in links if link.involves(module, record_id)]
        if link_type is not None:
            links = [link for link in links if link.link_type is link_type]
        return sorted(links, key=lambda link: (link.created_at, link.id))

    def list_for_module(self, module: str) -> list[RecordLink]:
        """Links with either endpoint in the module."""
        return [
            link
            for link in self.all_links()
            if link.source_module == module or link.target_module == module
        ]

    def all_links(self, active_only: bool = False) -> list[RecordLink]:
        with self._lock:
            links = list(self._links.values())
        if active_only:
            links = [link for link in links if link.is_active]
        return sorted(links, key=lambda link: (link.created_at, link.id))

    def status_counts(self) -> dict[str, int]:
        """Number of links per validation status."""
        counts = {status.value: 0 for status in ValidationStatus}
        for link in self.all_links():
            counts[link.validation_status.value] += 1
        return counts

    # =========================================================================
    # Internals
    # =========================================================================

    def _conflicting_link_id(
        self, key: LinkKey, bidirectional: bool, exclude_id: str | None = None
    ) -> str | None:
        forward = self._active_by_key.get(key)
        if forward is not None and forward != exclude_id:
            return forward
        reverse = self._active_by_key.get(key.reversed())
        if reverse is not None and reverse != exclude_id:
            if bidirectional or self._links[reverse].bidirectional:
                return reverse
        return None

    def _replace(self, link: RecordLink) -> None:
        if self._journal is not None:
            self._journal.save_link(link)
        previous = self._links.get(link.id)
        if previous is not None:
            self._unindex(previous)
        self._links[link.id] = link
        self._index_link(link)

    def _index_link(self, link: RecordLink) -> None:
        if link.is_active:
            self._active_by_key[link.key] = link.id
        self._adjacency.setdefault(link.source_record_id, set()).add(link.id)
        self._adjacency.setdefault(link.target_record_id, set()).add(link.id)

    def _unindex(self, link: RecordLink) -> None:
        if self._active_by_key.get(link.key) == link.id:
            del self._active_by_key[link.key]
        for record_id in (link.source_record_id, link.target_record_id):
            ids = self._adjacency.get(record_id)
            if ids is not None:
                ids.discard(link.id)
                if not ids:
                    del self._adjacency[record_id]
