"""
Secondary indexes over fields of cached objects using Valkey sets.

Each distinct (field, value) pair of an index is one set whose members are
entity identifiers::

    <namespace>:indexes:<index_key>:<field_name>:<field_value>

Building an index is always a full replace: every existing entry under the
index key is deleted before the new entries are written, so identifiers of
removed or renamed entities never linger. Entries are grouped in memory
before anything is deleted, so an identifier function that raises leaves the
old index untouched. The new entries are written in a
single MULTI/EXEC batch. If that batch fails the old entries are already
gone, and the index must be treated as unavailable rather than stale.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..cache.client import ValkeyClient
from ..cache.errors import ValidationError, require_sequence
from ..cache.utils import CacheKeyBuilder

logger = logging.getLogger(__name__)

_MISSING = object()


def _field_value(item: Any, field_name: str) -> Any:
    """Read a field from a mapping or an attribute from an object."""
    if isinstance(item, Mapping):
        return item.get(field_name, _MISSING)
    return getattr(item, field_name, _MISSING)


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class IndexEngine:
    """
    Builds and queries inverted indexes keyed by field value.

    Features:
    - Full-replace rebuilds (delete, then repopulate in one batch)
    - Field-filtered and unfiltered queries
    - Per-set read failures tolerated on queries
    """

    def __init__(self, store: ValkeyClient, namespace: str):
        """
        Initialize index engine.

        Args:
            store: Connected store adapter (command connection)
            namespace: Namespace of the owning cache
        """
        self.store = store
        self.namespace = namespace

    async def drop_index(self, index_key: str) -> int:
        """
        Delete every entry of an index.

        Returns:
            int: Number of index entries deleted
        """
        prefix = CacheKeyBuilder.index_prefix(self.namespace, index_key)
        entries = await self.store.keys(CacheKeyBuilder.build_pattern(prefix))
        if not entries:
            return 0
        deleted = await self.store.delete(*entries)
        logger.debug(f"Dropped {deleted} entries of index {index_key}")
        return deleted

    async def index_by_fields(
        self,
        index_key: str,
        items: Sequence[Any],
        field_names: Sequence[str],
        identifier_fn: Callable[[Any], Any],
    ) -> bool:
        """
        Rebuild an index over the given fields.

        Args:
            index_key: Name of the index
            items: Objects (mappings or attribute objects) to index
            field_names: Fields to index
            identifier_fn: Returns the identifier stored for an item

        Returns:
            bool: True once the new entries are committed

        Raises:
            ValidationError: On a missing index key or non-sequence arguments
            StoreError: If deleting old entries or the write batch fails
        """
        if not isinstance(index_key, str) or not index_key:
            raise ValidationError("index_key must be a non-empty string")
        require_sequence(items, "items")
        require_sequence(field_names, "field_names")

        prefix = CacheKeyBuilder.index_prefix(self.namespace, index_key)
        groups: Dict[str, List[str]] = defaultdict(list)
        for item in items:
            identifier = CacheKeyBuilder.segment(identifier_fn(item))
            for field_name in field_names:
                value = _field_value(item, field_name)
                if value is _MISSING:
                    continue
                groups[CacheKeyBuilder.child(prefix, field_name, value)].append(identifier)

        await self.drop_index(index_key)

        if not groups:
            logger.info(f"Index {index_key} rebuilt empty")
            return True

        pipe = self.store.pipeline(transaction=True)
        for entry, identifiers in groups.items():
            pipe.sadd(entry, *identifiers)
        await self.store.execute(pipe, f"index_by_fields({index_key})")

        logger.info(f"Index {index_key} rebuilt with {len(groups)} entries over {len(items)} items")
        return True

    async def _read_entries(self, prefix: str, keep: Optional[Callable[[str], bool]] = None) -> Dict[str, Set[str]]:
        entries = await self.store.keys(CacheKeyBuilder.build_pattern(prefix))
        names = [CacheKeyBuilder.relative_key(_to_str(entry), prefix) for entry in entries]
        selected = [(entry, name) for entry, name in zip(entries, names) if keep is None or keep(name)]
        if not selected:
            return {}

        pipe = self.store.pipeline(transaction=False)
        for entry, _ in selected:
            pipe.smembers(entry)
        replies = await self.store.execute(pipe, "read index entries", raise_on_error=False)

        result = {}
        for (entry, name), members in zip(selected, replies):
            if isinstance(members, Exception):
                logger.warning(f"Skipping index entry {_to_str(entry)}: {members}")
                continue
            result[name] = {_to_str(member) for member in members}
        return result

    async def get_index_by_fields(self, index_key: str, field_names: Sequence[str]) -> Dict[str, Set[str]]:
        """
        Read the entries of an index that belong to the given fields.

        An entry matches when its ``<field>:<value>`` name contains one of
        the field names, so a field name that is a substring of another
        field's name matches both.

        Returns:
            Dict[str, Set[str]]: ``"<field>:<value>"`` to member identifiers
        """
        if not isinstance(index_key, str) or not index_key:
            raise ValidationError("index_key must be a non-empty string")
        require_sequence(field_names, "field_names")

        prefix = CacheKeyBuilder.index_prefix(self.namespace, index_key)
        return await self._read_entries(
            prefix, keep=lambda name: any(field in name for field in field_names)
        )

    async def get_all_indexes(self, index_key: Optional[str] = None) -> Dict[str, Set[str]]:
        """
        Read every entry of one index, or of all indexes when index_key is None.

        Returns:
            Dict[str, Set[str]]: Entry name relative to the listed prefix to
            member identifiers
        """
        prefix = CacheKeyBuilder.index_prefix(self.namespace, index_key)
        return await self._read_entries(prefix)
