# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Qdrant record store for the Memos service.

One collection holds every memo. The point id is the memo id, the payload
carries the record fields (timestamps as float epoch seconds) and the
``embedding`` named vector is present only once an embedding was generated.
The ``has_embedding`` payload flag mirrors that so the backfill can find
records cheaply.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    PointVectors,
    Range,
    VectorParams,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import EMBEDDING_DIMENSIONS
from ..errors import StoreError
from ..models.memo import MemoRecord, utcnow
from ..utils.filters import Operator, Predicate
from .base import MemoStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

VECTOR_NAME = "embedding"

# Payload fields with a dedicated index, and their schema
PAYLOAD_INDEXES: dict[str, PayloadSchemaType] = {
    "owner_id": PayloadSchemaType.KEYWORD,
    "session_id": PayloadSchemaType.KEYWORD,
    "author_role": PayloadSchemaType.KEYWORD,
    "tags": PayloadSchemaType.KEYWORD,
    "importance": PayloadSchemaType.FLOAT,
    "created_at": PayloadSchemaType.FLOAT,
    "has_embedding": PayloadSchemaType.BOOL,
}

SCROLL_PAGE_SIZE = 256


def is_retryable_error(exception: BaseException) -> bool:
    """Only transient 5xx responses from a Qdrant server are retried."""
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return 500 <= exception.status_code < 600
    return False


def _to_timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _predicate_condition(predicate: Predicate) -> FieldCondition:
    """Translate one predicate into a Qdrant field condition."""
    value = predicate.value
    if isinstance(value, datetime):
        value = _to_timestamp(value)

    if predicate.op is Operator.EQ:
        return FieldCondition(key=predicate.column, match=MatchValue(value=value))
    if predicate.op is Operator.GTE:
        return FieldCondition(key=predicate.column, range=Range(gte=value))
    if predicate.op is Operator.LTE:
        return FieldCondition(key=predicate.column, range=Range(lte=value))
    if predicate.op is Operator.OVERLAPS:
        return FieldCondition(key=predicate.column, match=MatchAny(any=list(value)))
    raise ValueError(f"Unsupported operator: {predicate.op}")


def build_filter(predicates: list[Predicate], extra: list[FieldCondition] | None = None) -> Filter:
    """AND together all predicates (and any extra conditions)."""
    must = [_predicate_condition(p) for p in predicates]
    if extra:
        must.extend(extra)
    return Filter(must=must)


class QdrantMemoStore(MemoStore):
    """
    Qdrant-backed memo store with circuit breaker protection.

    Works in server mode (``url``), embedded mode (``storage_path``) or fully
    in memory (neither). The synchronous client runs in the default executor.
    """

    def __init__(
        self,
        collection_name: str = "memos",
        url: str | None = None,
        storage_path: str | None = None,
        vector_size: int = EMBEDDING_DIMENSIONS,
    ):
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose server OR embedded mode.")

        self.url = url
        self.storage_path = storage_path
        self.collection_name = collection_name
        self.vector_size = vector_size

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5
        self._circuit_timeout = 60

        self.client: QdrantClient | None = None
        self._initialized = False

        # Id allocation and read-modify-write updates
        self._write_lock = asyncio.Lock()
        self._next_id = 1

    @property
    def mode(self) -> str:
        if self.url:
            return "server"
        return "embedded" if self.storage_path else "memory"

    @property
    def supports_vector_search(self) -> bool:
        return True

    async def initialize(self) -> None:
        """Connect, create the collection and payload indexes, and seed the id counter."""
        if self._initialized:
            logger.debug("QdrantMemoStore already initialized")
            return

        location = self.url or self.storage_path or ":memory:"
        logger.info(f"Initializing Qdrant memo store in {self.mode} mode: {location}")

        loop = asyncio.get_running_loop()
        if self.url:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(url=self.url))
        elif self.storage_path:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(path=self.storage_path))
        else:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(location=":memory:"))

        try:
            if not await loop.run_in_executor(None, self.client.collection_exists, self.collection_name):
                await loop.run_in_executor(
                    None,
                    lambda: self.client.create_collection(
                        collection_name=self.collection_name,
                        vectors_config={VECTOR_NAME: VectorParams(size=self.vector_size, distance=Distance.COSINE)},
                    ),
                )
                logger.info(f"Created collection '{self.collection_name}' with vector size {self.vector_size}")
            else:
                await self._verify_vector_size(loop)

            await self._ensure_payload_indexes(loop)
            self._next_id = await self._max_id(loop) + 1
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to initialize Qdrant collection '{self.collection_name}': {e}") from e

        self._initialized = True
        logger.info(f"QdrantMemoStore initialization complete (next id {self._next_id})")

    async def _verify_vector_size(self, loop: asyncio.AbstractEventLoop) -> None:
        info = await loop.run_in_executor(None, self.client.get_collection, self.collection_name)
        vectors = info.config.params.vectors
        params = vectors.get(VECTOR_NAME) if isinstance(vectors, dict) else None
        if params is None:
            raise StoreError(f"Collection '{self.collection_name}' has no '{VECTOR_NAME}' vector")
        if params.size != self.vector_size:
            raise StoreError(
                f"Collection vector size ({params.size}) doesn't match configured dimensions ({self.vector_size})"
            )

    async def _ensure_payload_indexes(self, loop: asyncio.AbstractEventLoop) -> None:
        # Idempotent; Qdrant ignores an index that already exists with the same schema
        for field_name, schema in PAYLOAD_INDEXES.items():
            await loop.run_in_executor(
                None,
                lambda f=field_name, s=schema: self.client.create_payload_index(
                    collection_name=self.collection_name, field_name=f, field_schema=s
                ),
            )
        logger.info(f"Ensured payload indexes: {', '.join(PAYLOAD_INDEXES)}")

    async def _max_id(self, loop: asyncio.AbstractEventLoop) -> int:
        max_id = 0
        offset = None
        while True:
            points, offset = await loop.run_in_executor(
                None,
                lambda o=offset: self.client.scroll(
                    collection_name=self.collection_name,
                    limit=SCROLL_PAGE_SIZE,
                    offset=o,
                    with_payload=False,
                    with_vectors=False,
                ),
            )
            for point in points:
                max_id = max(max_id, int(point.id))
            if offset is None:
                return max_id

    async def close(self) -> None:
        if self.client is not None:
            await asyncio.get_running_loop().run_in_executor(None, self.client.close)
            self.client = None
        self._initialized = False
        logger.info("QdrantMemoStore closed")

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _check_circuit_breaker(self) -> None:
        """
        Fail fast while the circuit is open.

        Raises:
            StoreError: If the circuit breaker is open
        """
        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise StoreError(f"Circuit breaker is open until {retry_time}. Record store temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        self._failure_count += 1
        logger.warning(f"Recorded failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
            self._failure_count = 0
            self._circuit_open_until = None

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _execute(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        """
        Run a blocking client call under the circuit breaker.

        Raises:
            StoreError: On any client failure or while the circuit is open
        """
        if not self._initialized or self.client is None:
            raise StoreError("Record store is not initialized")
        self._check_circuit_breaker()
        try:
            result = await self._execute(fn)
        except Exception as e:
            self._record_failure()
            logger.error(f"Qdrant {operation} failed: {e}")
            raise StoreError(f"Record store {operation} failed: {e}") from e
        self._record_success()
        return result

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _payload(record: MemoRecord) -> dict[str, Any]:
        return {
            "owner_id": record.owner_id,
            "content": record.content,
            "summary": record.summary,
            "tags": list(record.tags),
            "author_role": record.author_role,
            "importance": record.importance,
            "access_count": record.access_count,
            "session_id": record.session_id,
            "created_at": _to_timestamp(record.created_at),
            "updated_at": _to_timestamp(record.updated_at),
            "has_embedding": record.has_embedding,
        }

    def _point(self, record: MemoRecord) -> PointStruct:
        vector = {VECTOR_NAME: record.embedding} if record.embedding is not None else {}
        return PointStruct(id=record.id, vector=vector, payload=self._payload(record))

    @staticmethod
    def _extract_vector(point: Any) -> list[float] | None:
        vector = getattr(point, "vector", None)
        if isinstance(vector, dict):
            vector = vector.get(VECTOR_NAME)
        return list(vector) if vector else None

    def _point_to_record(self, point: Any) -> MemoRecord:
        payload = point.payload or {}
        has_embedding = bool(payload.get("has_embedding"))
        embedding = self._extract_vector(point) if has_embedding else None
        return MemoRecord(
            id=int(point.id),
            owner_id=payload["owner_id"],
            content=payload.get("content", ""),
            summary=payload.get("summary"),
            tags=payload.get("tags") or [],
            author_role=payload.get("author_role", "user"),
            importance=float(payload.get("importance", 1.0)),
            access_count=int(payload.get("access_count", 0)),
            session_id=payload.get("session_id"),
            embedding=embedding,
            has_embedding=has_embedding,
            created_at=_from_timestamp(payload["created_at"]),
            updated_at=_from_timestamp(payload["updated_at"]),
        )

    async def _fetch(self, memo_id: int, with_vectors: bool = True) -> Any | None:
        points = await self._call(
            "retrieve",
            lambda: self.client.retrieve(
                collection_name=self.collection_name, ids=[memo_id], with_payload=True, with_vectors=with_vectors
            ),
        )
        return points[0] if points else None

    async def _fetch_owned(self, owner_id: str, memo_id: int) -> MemoRecord | None:
        point = await self._fetch(memo_id)
        if point is None or (point.payload or {}).get("owner_id") != owner_id:
            return None
        return self._point_to_record(point)

    async def _upsert(self, record: MemoRecord) -> None:
        point = self._point(record)
        await self._call("upsert", lambda: self.client.upsert(collection_name=self.collection_name, points=[point]))

    async def _scroll_all(self, scroll_filter: Filter | None, with_vectors: bool, limit: int | None = None) -> list[Any]:
        points: list[Any] = []
        offset = None
        while limit is None or len(points) < limit:
            page = SCROLL_PAGE_SIZE if limit is None else min(SCROLL_PAGE_SIZE, limit - len(points))
            batch, offset = await self._call(
                "scroll",
                lambda o=offset, p=page: self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=scroll_filter,
                    limit=p,
                    offset=o,
                    with_payload=True,
                    with_vectors=with_vectors,
                ),
            )
            points.extend(batch)
            if offset is None or not batch:
                break
        return points

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, owner_id: str, fields: dict[str, Any], embedding: list[float] | None = None) -> MemoRecord:
        async with self._write_lock:
            now = utcnow()
            record = MemoRecord(
                id=self._next_id,
                owner_id=owner_id,
                embedding=embedding,
                created_at=now,
                updated_at=now,
                **fields,
            )
            await self._upsert(record)
            self._next_id += 1

        logger.debug(f"Stored memo {record.id} for owner {owner_id} (embedding={'yes' if embedding else 'no'})")
        return record

    async def get(self, owner_id: str, memo_id: int) -> MemoRecord | None:
        return await self._fetch_owned(owner_id, memo_id)

    async def list(
        self, owner_id: str, session_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[MemoRecord]:
        conditions = [FieldCondition(key="owner_id", match=MatchValue(value=owner_id))]
        if session_id is not None:
            conditions.append(FieldCondition(key="session_id", match=MatchValue(value=session_id)))

        points = await self._scroll_all(Filter(must=conditions), with_vectors=True)
        records = sorted((self._point_to_record(p) for p in points), key=lambda r: r.updated_at, reverse=True)
        return records[offset : offset + limit]

    async def update(
        self,
        owner_id: str,
        memo_id: int,
        changes: dict[str, Any],
        embedding: list[float] | None = None,
        clear_embedding: bool = False,
    ) -> MemoRecord | None:
        async with self._write_lock:
            current = await self._fetch_owned(owner_id, memo_id)
            if current is None:
                return None

            data = current.model_dump()
            data.update(changes)
            if clear_embedding:
                data["embedding"] = None
            elif embedding is not None:
                data["embedding"] = embedding
            else:
                data["embedding"] = current.embedding
            data["has_embedding"] = data["embedding"] is not None
            data["updated_at"] = utcnow()

            updated = MemoRecord(**data)
            await self._upsert(updated)
        return updated

    async def delete(self, owner_id: str, memo_id: int) -> bool:
        async with self._write_lock:
            if await self._fetch_owned(owner_id, memo_id) is None:
                return False
            await self._call(
                "delete",
                lambda: self.client.delete(collection_name=self.collection_name, points_selector=[memo_id]),
            )
        logger.debug(f"Deleted memo {memo_id} for owner {owner_id}")
        return True

    async def increment_access_count(self, owner_id: str, memo_id: int) -> MemoRecord | None:
        async with self._write_lock:
            current = await self._fetch_owned(owner_id, memo_id)
            if current is None:
                return None
            count = current.access_count + 1
            await self._call(
                "set_payload",
                lambda: self.client.set_payload(
                    collection_name=self.collection_name, payload={"access_count": count}, points=[memo_id]
                ),
            )
        return current.model_copy(update={"access_count": count})

    # ------------------------------------------------------------------
    # Search support
    # ------------------------------------------------------------------

    async def query_records(self, owner_id: str, predicates: list[Predicate], limit: int | None = None) -> list[MemoRecord]:
        if not any(p.column == "owner_id" for p in predicates):
            predicates = [Predicate("owner_id", Operator.EQ, owner_id), *predicates]

        points = await self._scroll_all(build_filter(predicates), with_vectors=True, limit=limit)
        records = [self._point_to_record(p) for p in points]
        records.sort(key=lambda r: r.id)
        return records

    async def vector_similarities(
        self,
        owner_id: str,
        embedding: list[float],
        predicates: list[Predicate],
        min_similarity: float,
        limit: int,
    ) -> dict[int, float]:
        if not any(p.column == "owner_id" for p in predicates):
            predicates = [Predicate("owner_id", Operator.EQ, owner_id), *predicates]
        query_filter = build_filter(predicates, extra=[FieldCondition(key="has_embedding", match=MatchValue(value=True))])

        response = await self._call(
            "query_points",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=embedding,
                using=VECTOR_NAME,
                query_filter=query_filter,
                score_threshold=min_similarity,
                limit=limit,
                with_payload=False,
                with_vectors=False,
            ),
        )
        # Cosine score is the similarity itself
        return {int(p.id): float(p.score) for p in response.points}

    # ------------------------------------------------------------------
    # Embedding backfill
    # ------------------------------------------------------------------

    async def list_missing_embeddings(self, limit: int) -> list[MemoRecord]:
        points = await self._scroll_all(
            Filter(must=[FieldCondition(key="has_embedding", match=MatchValue(value=False))]),
            with_vectors=False,
            limit=limit,
        )
        return sorted((self._point_to_record(p) for p in points), key=lambda r: r.id)

    async def set_embedding(self, memo_id: int, embedding: list[float], source_text: str | None = None) -> bool:
        if len(embedding) != self.vector_size:
            raise ValueError(f"Embedding dimension mismatch: expected {self.vector_size}, got {len(embedding)}")

        async with self._write_lock:
            point = await self._fetch(memo_id, with_vectors=False)
            if point is None:
                return False
            if source_text is not None:
                current = self._point_to_record(point)
                if current.has_embedding or current.embedding_text() != source_text:
                    logger.info(f"Memo {memo_id} changed since it was read; discarding stale embedding")
                    return False
            await self._call(
                "update_vectors",
                lambda: self.client.update_vectors(
                    collection_name=self.collection_name,
                    points=[PointVectors(id=memo_id, vector={VECTOR_NAME: embedding})],
                ),
            )
            await self._call(
                "set_payload",
                lambda: self.client.set_payload(
                    collection_name=self.collection_name, payload={"has_embedding": True}, points=[memo_id]
                ),
            )
        return True

    async def get_stats(self) -> dict[str, Any]:
        total = await self._call(
            "count", lambda: self.client.count(collection_name=self.collection_name, exact=True).count
        )
        missing = await self._call(
            "count",
            lambda: self.client.count(
                collection_name=self.collection_name,
                count_filter=Filter(must=[FieldCondition(key="has_embedding", match=MatchValue(value=False))]),
                exact=True,
            ).count,
        )
        return {
            "backend": "qdrant",
            "mode": self.mode,
            "collection": self.collection_name,
            "vector_size": self.vector_size,
            "total_memos": total,
            "missing_embeddings": missing,
            "circuit_breaker": {
                "status": "open" if self._circuit_open_until else "closed",
                "failure_count": self._failure_count,
            },
        }
