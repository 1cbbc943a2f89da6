"""
DuckDB storage backend for full-text and vector persistence.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import duckdb
import numpy as np
from loguru import logger

from ..errors import StorageFailure
from .base import BackingMode, TextRecord, VectorRecord

_MEMORY_PATH = ":memory:"
_FLOAT32_SIZE = 4


def encode_vector(vector: Any) -> bytes:
    """Serialize a vector as contiguous native-order float32 bytes."""
    return np.asarray(vector, dtype=np.float32).reshape(-1).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Deserialize float32 bytes into a vector of ``len(blob) // 4`` elements."""
    if len(blob) % _FLOAT32_SIZE:
        raise StorageFailure(
            f"Vector blob of {len(blob)} bytes is not a whole number of float32 values."
        )
    return np.frombuffer(blob, dtype=np.float32).copy()


class DuckDBIndexStore:
    """DuckDB-backed persistence for document text and embeddings."""

    def __init__(
        self,
        db_path: str,
        *,
        initialize: bool = True,
    ) -> None:
        if db_path == _MEMORY_PATH:
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._backing_mode: BackingMode = "durable"
        if initialize:
            self.initialize()

    @property
    def backing_mode(self) -> BackingMode:
        return self._backing_mode

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def initialize(self) -> None:
        if self._conn is None:
            self._conn = self._open()
        try:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_text (
                    doc_id BIGINT PRIMARY KEY,
                    content VARCHAR NOT NULL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_vectors (
                    doc_id BIGINT PRIMARY KEY,
                    embedding BLOB NOT NULL
                );
                """
            )
        except duckdb.Error as exc:
            raise StorageFailure(f"Failed to create index tables: {exc}") from exc

    def upsert(self, doc_id: int, text: str, vector_bytes: bytes) -> None:
        conn = self._connection()
        try:
            conn.begin()
            self._write_text(conn, doc_id, text)
            self._write_vector(conn, doc_id, vector_bytes)
            conn.commit()
        except duckdb.Error as exc:
            conn.rollback()
            raise StorageFailure(f"Failed to persist document {doc_id}: {exc}") from exc

    def load_all_vectors(self) -> list[VectorRecord]:
        rows = self._connection().execute(
            "SELECT doc_id, embedding FROM document_vectors ORDER BY doc_id"
        ).fetchall()
        return [VectorRecord(doc_id=int(row[0]), embedding=bytes(row[1])) for row in rows]

    def clear_all(self) -> None:
        conn = self._connection()
        try:
            conn.begin()
            conn.execute("DELETE FROM document_text")
            conn.execute("DELETE FROM document_vectors")
            conn.commit()
        except duckdb.Error as exc:
            conn.rollback()
            raise StorageFailure(f"Failed to clear index tables: {exc}") from exc

    def count_vectors(self) -> int:
        row = self._connection().execute("SELECT COUNT(*) FROM document_vectors").fetchone()
        return int(row[0]) if row else 0

    def get_text(self, doc_id: int) -> TextRecord | None:
        row = self._connection().execute(
            "SELECT doc_id, content FROM document_text WHERE doc_id = ? LIMIT 1",
            [doc_id],
        ).fetchone()
        if row is None:
            return None
        return TextRecord(doc_id=int(row[0]), content=str(row[1]))

    def _open(self) -> duckdb.DuckDBPyConnection:
        if self.db_path == _MEMORY_PATH:
            self._backing_mode = "ephemeral"
            return self._open_memory()
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(self.db_path)
        except (duckdb.Error, OSError) as exc:
            logger.warning(
                f"Vector store {self.db_path} unavailable ({exc}); "
                "falling back to an in-memory index, nothing will persist"
            )
            self._backing_mode = "ephemeral"
            return self._open_memory()
        self._backing_mode = "durable"
        logger.info(f"Vector store opened at {self.db_path}")
        return conn

    @staticmethod
    def _open_memory() -> duckdb.DuckDBPyConnection:
        try:
            return duckdb.connect(_MEMORY_PATH)
        except duckdb.Error as exc:
            raise StorageFailure(f"Could not open in-memory vector store: {exc}") from exc

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StorageFailure("Vector store is not initialized.")
        return self._conn

    @staticmethod
    def _write_text(conn: duckdb.DuckDBPyConnection, doc_id: int, text: str) -> None:
        conn.execute(
            """
            INSERT INTO document_text (doc_id, content)
            VALUES (?, ?)
            ON CONFLICT(doc_id) DO UPDATE SET content = excluded.content
            """,
            [doc_id, text],
        )

    @staticmethod
    def _write_vector(
        conn: duckdb.DuckDBPyConnection, doc_id: int, vector_bytes: bytes
    ) -> None:
        conn.execute(
            """
            INSERT INTO document_vectors (doc_id, embedding)
            VALUES (?, ?)
            ON CONFLICT(doc_id) DO UPDATE SET embedding = excluded.embedding
            """,
            [doc_id, vector_bytes],
        )
