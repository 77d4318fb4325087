"""In-memory record store.

Holds StoredTag documents in a dict keyed by tag ID. Used by tests, the
example flow and the CLI when no persistent store is configured.
"""

import logging
from typing import Optional

from opentag.domain.medical_profile import StoredTag
from opentag.domain.ports import RecordStorePort, Result, StorageError

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStorePort):
    """Dict-backed implementation of RecordStorePort."""

    def __init__(self, tags: Optional[dict[str, StoredTag]] = None):
        self._tags: dict[str, StoredTag] = dict(tags or {})

    def __len__(self) -> int:
        return len(self._tags)

    def initialize_schema(self) -> Result[None]:
        return Result.success_result(None)

    def get(self, tag_id: str) -> Optional[StoredTag]:
        return self._tags.get(tag_id)

    def put(self, tag_id: str, tag: StoredTag) -> Result[str]:
        if not tag_id:
            return Result.failure_result(
                StorageError("Tag ID must not be empty", operation="put"),
                error_type="StorageError"
            )
        self._tags[tag_id] = tag
        logger.debug(f"Stored tag {tag_id} in memory")
        return Result.success_result(tag_id)

    def delete(self, tag_id: str) -> Result[bool]:
        removed = self._tags.pop(tag_id, None) is not None
        return Result.success_result(removed)
