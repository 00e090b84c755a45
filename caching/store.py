# caching/store.py
"""SQLite persistence for durable cache records, using aiosqlite."""

from __future__ import annotations

import asyncio
import json
import os
import time
from collections.abc import Callable, Mapping
from typing import Any

import aiosqlite
import structlog

from core.errors import CacheCorruptionError
from models.cache_models import CacheRecord

logger = structlog.get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_records (
    id TEXT PRIMARY KEY,
    content_type TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT NOT NULL,
    dependency_fingerprint TEXT,
    fingerprint TEXT,
    similarity_hash TEXT,
    reuse_score REAL NOT NULL DEFAULT 5.0,
    hit_count INTEGER NOT NULL DEFAULT 0,
    token_cost_saved REAL NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    last_accessed REAL NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_type_owner ON cache_records (content_type, owner_id);
CREATE INDEX IF NOT EXISTS idx_cache_dependency ON cache_records (dependency_fingerprint);
CREATE INDEX IF NOT EXISTS idx_cache_fingerprint ON cache_records (fingerprint);
CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_records (expires_at);
"""

_COLUMNS = (
    "id, content_type, owner_id, content, metadata, dependency_fingerprint, "
    "fingerprint, similarity_hash, reuse_score, hit_count, token_cost_saved, "
    "created_at, last_accessed, expires_at"
)


def _metadata_contains(metadata: Mapping[str, Any], subset: Mapping[str, Any]) -> bool:
    return all(key in metadata and metadata[key] == value for key, value in subset.items())


class DurableStore:
    """Key-value store for :class:`CacheRecord` rows.

    Call :meth:`connect` before use (or use it as an async context manager)
    and :meth:`close` on shutdown.
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> DurableStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._conn is not None:
            return
        if self.db_path != ":memory:":
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path, timeout=10.0)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.info("Durable cache store connected", db_path=self.db_path)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("Durable cache store closed", db_path=self.db_path)

    def now(self) -> float:
        return self._clock()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("DurableStore is not connected; call connect() first")
        return self._conn

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> CacheRecord:
        try:
            content = json.loads(row["content"])
            metadata = json.loads(row["metadata"])
        except (TypeError, json.JSONDecodeError) as exc:
            raise CacheCorruptionError(row["id"], str(exc)) from exc
        if not isinstance(content, dict) or not isinstance(metadata, dict):
            raise CacheCorruptionError(row["id"], "payload is not a JSON object")
        return CacheRecord(
            id=row["id"],
            content_type=row["content_type"],
            owner_id=row["owner_id"],
            content=content,
            metadata=metadata,
            dependency_fingerprint=row["dependency_fingerprint"],
            similarity_hash=row["similarity_hash"],
            reuse_score=row["reuse_score"],
            hit_count=row["hit_count"],
            token_cost_saved=row["token_cost_saved"],
            created_at=row["created_at"],
            last_accessed=row["last_accessed"],
            expires_at=row["expires_at"],
            fingerprint=row["fingerprint"],
        )

    async def upsert(self, record: CacheRecord) -> None:
        async with self._write_lock:
            await self.conn.execute(
                f"INSERT OR REPLACE INTO cache_records ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.content_type,
                    record.owner_id,
                    json.dumps(record.content, sort_keys=True),
                    json.dumps(record.metadata, sort_keys=True),
                    record.dependency_fingerprint,
                    record.fingerprint,
                    record.similarity_hash,
                    record.reuse_score,
                    record.hit_count,
                    record.token_cost_saved,
                    record.created_at,
                    record.last_accessed,
                    record.expires_at,
                ),
            )
            await self.conn.commit()

    async def get(self, record_id: str) -> CacheRecord | None:
        """Fetch one record by id.

        Raises:
            CacheCorruptionError: the stored payload cannot be decoded.
        """
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM cache_records WHERE id = ?", (record_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def query(
        self,
        content_type: str,
        owner_id: str,
        metadata_filter: Mapping[str, Any] | None = None,
        limit: int = 10,
    ) -> list[CacheRecord]:
        """Unexpired records whose metadata contains ``metadata_filter``.

        Ordered by hit count, then reuse score, both descending. Rows with a
        corrupt payload are deleted and skipped.
        """
        now = self._clock()
        subset = dict(metadata_filter or {})
        results: list[CacheRecord] = []
        corrupt: list[str] = []
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM cache_records "
            "WHERE content_type = ? AND owner_id = ? AND expires_at > ? "
            "ORDER BY hit_count DESC, reuse_score DESC, created_at ASC",
            (content_type, owner_id, now),
        ) as cursor:
            async for row in cursor:
                try:
                    record = self._row_to_record(row)
                except CacheCorruptionError as exc:
                    logger.warning("Skipping corrupt durable cache row", error=str(exc))
                    corrupt.append(row["id"])
                    continue
                if _metadata_contains(record.metadata, subset):
                    results.append(record)
                    if len(results) >= limit:
                        break
        for record_id in corrupt:
            await self.delete(record_id)
        return results

    async def increment_hit(self, record_id: str, tokens_saved: float = 0.0) -> bool:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "UPDATE cache_records SET hit_count = hit_count + 1, "
                "token_cost_saved = token_cost_saved + ?, last_accessed = ? WHERE id = ?",
                (tokens_saved, self._clock(), record_id),
            )
            await self.conn.commit()
            return cursor.rowcount > 0

    async def delete(self, record_id: str) -> bool:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM cache_records WHERE id = ?", (record_id,)
            )
            await self.conn.commit()
            return cursor.rowcount > 0

    async def delete_expired(self) -> int:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM cache_records WHERE expires_at <= ?", (self._clock(),)
            )
            await self.conn.commit()
            return cursor.rowcount

    async def delete_by_fingerprint(self, fingerprint: str) -> int:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM cache_records WHERE fingerprint = ?", (fingerprint,)
            )
            await self.conn.commit()
            return cursor.rowcount

    async def delete_by_dependency(self, fingerprint: str) -> tuple[int, list[str]]:
        """Delete records derived from ``fingerprint``.

        Returns the number deleted and the fingerprints of the deleted records,
        so callers can continue the cascade.
        """
        async with self._write_lock:
            async with self.conn.execute(
                "SELECT fingerprint FROM cache_records WHERE dependency_fingerprint = ?",
                (fingerprint,),
            ) as cursor:
                rows = await cursor.fetchall()
            cursor = await self.conn.execute(
                "DELETE FROM cache_records WHERE dependency_fingerprint = ?",
                (fingerprint,),
            )
            await self.conn.commit()
        children = [row["fingerprint"] for row in rows if row["fingerprint"]]
        return cursor.rowcount, children

    async def count(self, content_type: str, owner_id: str) -> int:
        async with self.conn.execute(
            "SELECT COUNT(*) FROM cache_records WHERE content_type = ? AND owner_id = ?",
            (content_type, owner_id),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def evict_least_valuable(self, content_type: str, owner_id: str, keep: int) -> int:
        """Trim a (type, owner) partition to ``keep`` rows, lowest value first."""
        excess = await self.count(content_type, owner_id) - max(0, keep)
        if excess <= 0:
            return 0
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM cache_records WHERE id IN ("
                "  SELECT id FROM cache_records WHERE content_type = ? AND owner_id = ?"
                "  ORDER BY hit_count ASC, reuse_score ASC, last_accessed ASC LIMIT ?"
                ")",
                (content_type, owner_id, excess),
            )
            await self.conn.commit()
            return cursor.rowcount

    async def stats(self) -> dict[str, Any]:
        async with self.conn.execute(
            "SELECT content_type, COUNT(*) AS entries, SUM(hit_count) AS hits, "
            "SUM(token_cost_saved) AS saved FROM cache_records GROUP BY content_type"
        ) as cursor:
            rows = await cursor.fetchall()
        by_type = {
            row["content_type"]: {
                "entries": row["entries"],
                "hits": row["hits"] or 0,
                "tokens_saved": row["saved"] or 0.0,
            }
            for row in rows
        }
        return {
            "total_entries": sum(t["entries"] for t in by_type.values()),
            "total_hits": sum(t["hits"] for t in by_type.values()),
            "total_tokens_saved": sum(t["tokens_saved"] for t in by_type.values()),
            "by_content_type": by_type,
        }
