"""Record Index - maintains the set of matchable record surrogates.

Collaborator modules push create/update/delete events; the index normalizes
each native record into a LinkableRecord keyed by "<module>:<record_id>".
Surrogates are replaced, never mutated, so a reader holding one always sees
a consistent snapshot.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import RecordNotFoundError, ValidationError
from ..models import LinkableRecord, RecordMetadata

if TYPE_CHECKING:
    from ...infra.repositories import GraphRepository

logger = logging.getLogger(__name__)

# Content that does not participate in the fingerprint
_FINGERPRINT_EXCLUDE: dict[str, Any] = {
    "id": True,
    "last_indexed": True,
    "index_version": True,
    "fingerprint": True,
    "metadata": {"last_modified": True},
}

# Raw field keys mapped onto RecordMetadata attributes
_METADATA_KEYS = {
    "primaryKey": "primary_key",
    "primary_key": "primary_key",
    "foreignKeys": "foreign_keys",
    "foreign_keys": "foreign_keys",
    "businessIdentifiers": "business_identifiers",
    "business_identifiers": "business_identifiers",
    "displayFields": "display_fields",
    "display_fields": "display_fields",
    "searchKeywords": "search_keywords",
    "search_keywords": "search_keywords",
    "categories": "categories",
    "priority": "priority",
    "lastModified": "last_modified",
    "last_modified": "last_modified",
    "modifiedBy": "modified_by",
    "modified_by": "modified_by",
}

_RESERVED_KEYS = {
    "title",
    "description",
    "recordType",
    "record_type",
    "searchableFields",
    "searchable_fields",
    "accessRestrictions",
    "access_restrictions",
    "metadata",
}


def compute_fingerprint(record: LinkableRecord) -> str:
    """Hash the normalized content of a surrogate."""
    content = record.model_dump(mode="json", exclude=_FINGERPRINT_EXCLUDE)
    encoded = json.dumps(content, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def normalize_record(
    module: str, record_id: str, fields: Mapping[str, Any]
) -> LinkableRecord:
    """Build a LinkableRecord surrogate from a module's raw field mapping.

    The title comes from `title`, `name` or the first display field, falling
    back to the record id. Metadata keys may appear at the top level or in a
    nested `metadata` mapping, in camelCase or snake_case.

    Raises:
        ValidationError: If module or record id is missing or a value is malformed.
    """
    if not module or not str(module).strip():
        raise ValidationError("Module cannot be empty")
    if not record_id or not str(record_id).strip():
        raise ValidationError("Record ID cannot be empty")
    module, record_id = str(module).strip(), str(record_id).strip()

    metadata_input: dict[str, Any] = {}
    nested = fields.get("metadata")
    for source in (fields, nested if isinstance(nested, Mapping) else {}):
        for key, value in source.items():
            if key in _METADATA_KEYS and value is not None:
                metadata_input[_METADATA_KEYS[key]] = value

    plain = {
        key: value
        for key, value in fields.items()
        if key not in _RESERVED_KEYS and key not in _METADATA_KEYS
    }

    try:
        metadata = RecordMetadata.model_validate(metadata_input)
        title = fields.get("title") or fields.get("name")
        if not title and metadata.display_fields:
            title = plain.get(metadata.display_fields[0])
        searchable = fields.get("searchableFields", fields.get("searchable_fields"))
        return LinkableRecord(
            id=LinkableRecord.make_id(module, record_id),
            record_id=record_id,
            module=module,
            record_type=str(fields.get("recordType") or fields.get("record_type") or module),
            title=str(title) if title else record_id,
            description=fields.get("description"),
            metadata=metadata,
            searchable_fields=list(searchable) if searchable else [],
            fields=plain,
            access_restrictions=list(
                fields.get("accessRestrictions", fields.get("access_restrictions")) or []
            ),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid record {module}:{record_id}: {e}") from e


class RecordQuery:
    """Lazy, restartable view over the index.

    Every iteration takes a fresh snapshot, so concurrent updates never break
    an iteration in progress and a second pass sees the latest surrogates.
    """

    def __init__(
        self,
        index: RecordIndex,
        module: str | None = None,
        keywords: list[str] | None = None,
    ) -> None:
        self._index = index
        self._module = module
        self._keywords = [k.casefold() for k in (keywords or []) if k.strip()]

    def __iter__(self) -> Iterator[LinkableRecord]:
        for record in self._index.snapshot(self._module):
            if self._matches(record):
                yield record

    def _matches(self, record: LinkableRecord) -> bool:
        if not self._keywords:
            return True
        haystack = [record.title, record.description or ""]
        haystack.extend(record.metadata.search_keywords)
        for name in record.searchable_fields:
            value = record.fields.get(name)
            if isinstance(value, str):
                haystack.append(value)
        text = " ".join(haystack).casefold()
        return all(keyword in text for keyword in self._keywords)


class RecordIndex:
    """In-memory index of LinkableRecord surrogates with optional journal."""

    def __init__(self, journal: GraphRepository | None = None) -> None:
        self._journal = journal
        self._lock = threading.RLock()
        self._records: dict[str, LinkableRecord] = {}
        self._by_module: dict[str, set[str]] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Counter bumped on every content change or removal."""
        return self._version

    def __len__(self) -> int:
        return len(self._records)

    # =========================================================================
    # Writes
    # =========================================================================

    def index(
        self, module: str, record_id: str, fields: Mapping[str, Any]
    ) -> tuple[LinkableRecord, bool]:
        """Normalize and upsert a raw module record.

        Returns:
            Tuple of the stored surrogate and whether its content changed.
        """
        return self.put(normalize_record(module, record_id, fields))

    def upsert(self, record: LinkableRecord) -> LinkableRecord:
        """Insert or replace a surrogate, returning the stored version."""
        stored, _ = self.put(record)
        return stored

    def put(self, record: LinkableRecord) -> tuple[LinkableRecord, bool]:
        """Insert or replace a surrogate.

        Re-indexing identical content is a no-op. Otherwise the surrogate is
        stored with a fresh `last_indexed` and the next `index_version`.

        Raises:
            ValidationError: If module or record id is empty.
        """
        if not record.module.strip() or not record.record_id.strip():
            raise ValidationError("Record must have a module and a record ID")

        record_key = LinkableRecord.make_id(record.module, record.record_id)
        fingerprint = compute_fingerprint(record)

        with self._lock:
            existing = self._records.get(record_key)
            if existing is not None and existing.fingerprint == fingerprint:
                logger.debug(f"Record {record_key} unchanged, skipping")
                return existing, False

            stored = record.model_copy(
                update={
                    "id": record_key,
                    "fingerprint": fingerprint,
                    "last_indexed": datetime.now(timezone.utc),
                    "index_version": existing.index_version + 1 if existing else 1,
                }
            )
            if self._journal is not None:
                self._journal.save_record(stored)
            self._records[record_key] = stored
            self._by_module.setdefault(stored.module, set()).add(record_key)
            self._version += 1

        action = "Updated" if existing else "Indexed"
        logger.info(f"{action} record {record_key} (v{stored.index_version})")
        return stored, True

    def remove(self, module: str, record_id: str) -> LinkableRecord:
        """Remove a surrogate from the index.

        Raises:
            RecordNotFoundError: If the record is not indexed.
        """
        record_key = LinkableRecord.make_id(module, record_id)
        with self._lock:
            record = self._records.get(record_key)
            if record is None:
                raise RecordNotFoundError(module, record_id)
            if self._journal is not None:
                self._journal.delete_record(record_key)
            del self._records[record_key]
            module_ids = self._by_module.get(module)
            if module_ids is not None:
                module_ids.discard(record_key)
                if not module_ids:
                    del self._by_module[module]
            self._version += 1

        logger.info(f"Removed record {record_key}")
        return record

    def restore(self, records: list[LinkableRecord]) -> None:
        """Load surrogates from the journal without writing back."""
        with self._lock:
            for record in records:
                self._records[record.id] = record
                self._by_module.setdefault(record.module, set()).add(record.id)
            self._version += 1
        logger.info(f"Restored {len(records)} indexed records")

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, module: str, record_id: str) -> LinkableRecord | None:
        return self._records.get(LinkableRecord.make_id(module, record_id))

    def require(self, module: str, record_id: str) -> LinkableRecord:
        """Get a surrogate or raise RecordNotFoundError."""
        record = self.get(module, record_id)
        if record is None:
            raise RecordNotFoundError(module, record_id)
        return record

    def snapshot(self, module: str | None = None) -> list[LinkableRecord]:
        """Return the current surrogates, optionally for one module."""
        with self._lock:
            if module is None:
                return list(self._records.values())
            return [self._records[key] for key in sorted(self._by_module.get(module, ()))]

    def query(
        self, module: str | None = None, keywords: list[str] | None = None
    ) -> RecordQuery:
        """Lazy query over the index by module and keywords."""
        return RecordQuery(self, module=module, keywords=keywords)

    def modules(self) -> dict[str, int]:
        """Record count per module."""
        with self._lock:
            return {module: len(ids) for module, ids in sorted(self._by_module.items())}
