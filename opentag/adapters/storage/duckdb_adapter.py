"""DuckDB Record Store Adapter.

This adapter implements the RecordStorePort contract for online tags on top
of DuckDB, an in-process database that needs no server.

Security Impact:
    - Only the full name and blood group are stored in clear
    - The envelope is stored as received; it is never decrypted here
    - Failures are reported without echoing envelope contents

Architecture:
    - Implements RecordStorePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - One row per tag ID; writes replace the previous document
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import duckdb
from pydantic import ValidationError as PydanticValidationError

from opentag.domain.medical_profile import StoredTag
from opentag.domain.ports import RecordStorePort, Result, StorageError
from opentag.infrastructure.config_manager import StoreConfig

logger = logging.getLogger(__name__)


class DuckDBRecordStore(RecordStorePort):
    """DuckDB implementation of RecordStorePort.

    Parameters:
        store_config: StoreConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        store = DuckDBRecordStore(db_path="data/tags.duckdb")
        result = store.initialize_schema()
        if result.is_success():
            store.put("a1b2c3", stored_tag)
        ```
    """

    def __init__(
        self,
        store_config: Optional[StoreConfig] = None,
        db_path: Optional[str] = None
    ):
        """Initialize DuckDB record store.

        Note:
            If both store_config and db_path are provided, store_config takes
            precedence. If neither is provided, defaults to in-memory database.
        """
        if store_config:
            if store_config.store_type != "duckdb":
                raise StorageError(
                    f"StoreConfig type '{store_config.store_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = store_config.db_path or ":memory:"
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily, then reused)."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                ) from e
        return self._connection

    def _ensure_schema(self) -> None:
        if not self._initialized:
            result = self.initialize_schema()
            if result.is_failure():
                raise StorageError(result.error, operation="initialize_schema")

    def initialize_schema(self) -> Result[None]:
        """Create the ``tags`` table if it does not exist."""
        try:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tags (
                    tag_id VARCHAR PRIMARY KEY,
                    full_name VARCHAR NOT NULL,
                    blood_group VARCHAR NOT NULL,
                    blob VARCHAR NOT NULL,
                    is_encrypted BOOLEAN NOT NULL,
                    encryption_method VARCHAR,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            self._initialized = True
            logger.info("Record store schema initialized successfully")
            return Result.success_result(None)

        except (duckdb.Error, StorageError) as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    def get(self, tag_id: str) -> Optional[StoredTag]:
        """Fetch a stored tag.

        Raises:
            StorageError: If the query fails or the row is not a valid document
        """
        self._ensure_schema()
        try:
            row = self._get_connection().execute(
                """
                SELECT full_name, blood_group, blob, is_encrypted, encryption_method
                FROM tags WHERE tag_id = ?
                """,
                [tag_id]
            ).fetchone()
        except duckdb.Error as e:
            raise StorageError(
                f"Failed to read tag: {str(e)}",
                operation="get",
                details={"tag_id": tag_id}
            ) from e

        if row is None:
            return None

        full_name, blood_group, blob, is_encrypted, encryption_method = row
        try:
            return StoredTag(
                full_name=full_name,
                blood_group=blood_group,
                blob=blob,
                is_encrypted=is_encrypted,
                encryption_method=encryption_method,
            )
        except PydanticValidationError as e:
            raise StorageError(
                f"Stored tag is not a valid document ({e.error_count()} errors)",
                operation="get",
                details={"tag_id": tag_id}
            ) from e

    def put(self, tag_id: str, tag: StoredTag) -> Result[str]:
        """Insert or replace the document for ``tag_id``."""
        if not tag_id:
            return Result.failure_result(
                StorageError("Tag ID must not be empty", operation="put"),
                error_type="StorageError"
            )
        try:
            self._ensure_schema()
            self._get_connection().execute(
                """
                INSERT OR REPLACE INTO tags
                    (tag_id, full_name, blood_group, blob, is_encrypted, encryption_method, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    tag_id,
                    tag.full_name,
                    tag.blood_group.value,
                    tag.blob,
                    tag.is_encrypted,
                    tag.encryption_method.value if tag.encryption_method else None,
                    datetime.now(timezone.utc).replace(tzinfo=None),
                ]
            )
            logger.info(f"Stored tag {tag_id}")
            return Result.success_result(tag_id)

        except (duckdb.Error, StorageError) as e:
            error_msg = f"Failed to store tag: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="put", details={"tag_id": tag_id}),
                error_type="StorageError"
            )

    def delete(self, tag_id: str) -> Result[bool]:
        """Delete the document for ``tag_id``; succeeds with False if absent."""
        try:
            self._ensure_schema()
            conn = self._get_connection()
            existing = conn.execute("SELECT 1 FROM tags WHERE tag_id = ?", [tag_id]).fetchone()
            if existing is None:
                return Result.success_result(False)
            conn.execute("DELETE FROM tags WHERE tag_id = ?", [tag_id])
            logger.info(f"Deleted tag {tag_id}")
            return Result.success_result(True)

        except (duckdb.Error, StorageError) as e:
            error_msg = f"Failed to delete tag: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="delete", details={"tag_id": tag_id}),
                error_type="StorageError"
            )

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                logger.info("Closed DuckDB connection")
            except duckdb.Error as e:
                logger.warning(f"Error closing connection: {str(e)}")
            finally:
                self._connection = None
                self._initialized = False
