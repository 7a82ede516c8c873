"""
Milvus knowledge graph store.
Keeps chunks, key concepts and atomic facts in three collections and answers
the repository lookups the contextualiser needs.
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from pymilvus import DataType, MilvusClient
from pymilvus.exceptions import MilvusException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import (
    ATOMIC_FACT_COLLECTION,
    CHUNK_COLLECTION,
    EMBEDDING_DIM,
    KEY_CONCEPT_COLLECTION,
    MAX_ATOMIC_FACTS,
    MAX_CHUNKS,
    MAX_KEY_CONCEPTS,
    MILVUS_HOST,
    MILVUS_PORT,
)
from .embeddings import generate_embeddings
from .models import AtomicFact, Chunk, ConceptMetadata, KeyConcept

logger = logging.getLogger(__name__)

# Thread pool for running sync Milvus ops in async context
_executor = ThreadPoolExecutor(max_workers=4)

Embedder = Callable[[List[str]], Awaitable[List[List[float]]]]

SEARCH_PARAMS = {"metric_type": "COSINE", "params": {"nprobe": 10}}
CHUNK_FIELDS = ["id", "content", "document_id", "position"]
CONCEPT_FIELDS = ["id", "value", "metadata"]
FACT_FIELDS = ["id", "content", "chunk_id"]


def _limit(limits: Optional[Mapping[str, Any]], key: str, default: int) -> int:
    return int((limits or {}).get(key, default))


def _to_chunk(row: Dict[str, Any]) -> Chunk:
    return Chunk(
        id=row["id"],
        content=row.get("content", ""),
        document_id=row.get("document_id", ""),
        position=row.get("position", 0),
    )


def _to_concept(row: Dict[str, Any]) -> KeyConcept:
    items = (row.get("metadata") or {}).get("items", [])
    return KeyConcept(
        value=row["value"],
        id=row.get("id", ""),
        metadata=tuple(
            ConceptMetadata(id=item["id"], type=item.get("type", ""), data=item.get("data", {}))
            for item in items
        ),
    )


class MilvusGraphStore:
    """Milvus wrapper implementing the concept, atomic fact and chunk repositories."""

    def __init__(self, embed: Embedder = generate_embeddings):
        self.client: Optional[MilvusClient] = None
        self.embed = embed

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(MilvusException),
    )
    def connect(self) -> None:
        """Connect to Milvus."""
        uri = f"http://{MILVUS_HOST}:{MILVUS_PORT}"
        logger.info(f"Connecting to Milvus at {uri}")
        self.client = MilvusClient(uri=uri)
        logger.info("Connected to Milvus")

    def _check_connection(self):
        if self.client is None:
            raise RuntimeError("Not connected to Milvus. Call connect() first.")

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, fn, *args)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _base_schema(self):
        schema = self.client.create_schema(auto_id=False, enable_dynamic_field=False)
        schema.add_field(field_name="id", datatype=DataType.VARCHAR, is_primary=True, max_length=128)
        schema.add_field(field_name="dense_vector", datatype=DataType.FLOAT_VECTOR, dim=EMBEDDING_DIM)
        return schema

    def _chunk_schema(self):
        schema = self._base_schema()
        schema.add_field(field_name="content", datatype=DataType.VARCHAR, max_length=65535)
        schema.add_field(field_name="document_id", datatype=DataType.VARCHAR, max_length=512)
        schema.add_field(field_name="position", datatype=DataType.INT64)
        return schema

    def _concept_schema(self):
        schema = self._base_schema()
        schema.add_field(field_name="value", datatype=DataType.VARCHAR, max_length=2048)
        schema.add_field(field_name="metadata", datatype=DataType.JSON)
        schema.add_field(
            field_name="related",
            datatype=DataType.ARRAY,
            element_type=DataType.VARCHAR,
            max_capacity=256,
            max_length=2048,
        )
        return schema

    def _fact_schema(self):
        schema = self._base_schema()
        schema.add_field(field_name="content", datatype=DataType.VARCHAR, max_length=65535)
        schema.add_field(field_name="chunk_id", datatype=DataType.VARCHAR, max_length=128)
        schema.add_field(
            field_name="key_concepts",
            datatype=DataType.ARRAY,
            element_type=DataType.VARCHAR,
            max_capacity=256,
            max_length=2048,
        )
        return schema

    def ensure_collections(self) -> None:
        """Create the three collections if they don't exist."""
        self._check_connection()

        builders = {
            CHUNK_COLLECTION: self._chunk_schema,
            KEY_CONCEPT_COLLECTION: self._concept_schema,
            ATOMIC_FACT_COLLECTION: self._fact_schema,
        }
        for name, build_schema in builders.items():
            if self.client.has_collection(name):
                logger.info(f"Collection '{name}' exists")
                continue

            logger.info(f"Creating collection '{name}'")
            index_params = self.client.prepare_index_params()
            index_params.add_index(
                field_name="dense_vector",
                index_type="IVF_FLAT",
                metric_type="COSINE",
                params={"nlist": 128},
            )
            self.client.create_collection(
                collection_name=name,
                schema=build_schema(),
                index_params=index_params,
            )
            logger.info(f"Collection '{name}' created")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_sync(self, collection: str, data: List[Dict[str, Any]]) -> int:
        """Sync insert."""
        self._check_connection()

        if not data:
            return 0

        result = self.client.insert(collection_name=collection, data=data)
        count = len(result["ids"]) if isinstance(result, dict) else len(data)
        logger.info(f"Inserted {count} rows into '{collection}'")
        return count

    async def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        embeddings = await self.embed([chunk.content for chunk in chunks])
        data = [
            {
                "id": chunk.id,
                "content": chunk.content,
                "document_id": chunk.document_id,
                "position": chunk.position,
                "dense_vector": embedding,
            }
            for chunk, embedding in zip(chunks, embeddings)
        ]
        return await self._run(self._insert_sync, CHUNK_COLLECTION, data)

    async def add_key_concepts(
        self,
        concepts: Sequence[KeyConcept],
        related: Optional[Mapping[str, List[str]]] = None,
    ) -> int:
        """Insert key concepts. ``related`` maps a concept value to its neighbouring concept values."""
        related = related or {}
        embeddings = await self.embed([concept.value for concept in concepts])
        data = [
            {
                "id": concept.id or concept.value,
                "value": concept.value,
                "metadata": {
                    "items": [{"id": m.id, "type": m.type, "data": dict(m.data)} for m in concept.metadata]
                },
                "related": list(related.get(concept.value, [])),
                "dense_vector": embedding,
            }
            for concept, embedding in zip(concepts, embeddings)
        ]
        return await self._run(self._insert_sync, KEY_CONCEPT_COLLECTION, data)

    async def add_atomic_facts(
        self,
        facts: Sequence[AtomicFact],
        key_concepts: Optional[Mapping[str, List[str]]] = None,
    ) -> int:
        """Insert atomic facts. ``key_concepts`` maps a fact id to the concept values it mentions."""
        key_concepts = key_concepts or {}
        embeddings = await self.embed([fact.content for fact in facts])
        data = [
            {
                "id": fact.id,
                "content": fact.content,
                "chunk_id": fact.chunk_id,
                "key_concepts": list(key_concepts.get(fact.id, [])),
                "dense_vector": embedding,
            }
            for fact, embedding in zip(facts, embeddings)
        ]
        return await self._run(self._insert_sync, ATOMIC_FACT_COLLECTION, data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _search_sync(
        self,
        collection: str,
        embedding: List[float],
        limit: int,
        output_fields: List[str],
        filter_expr: str = "",
        filter_params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Sync search, returns the matching entities best first."""
        self._check_connection()

        kwargs: Dict[str, Any] = {}
        if filter_expr:
            kwargs["filter"] = filter_expr
            kwargs["filter_params"] = filter_params or {}

        results = self.client.search(
            collection_name=collection,
            data=[embedding],
            anns_field="dense_vector",
            search_params=SEARCH_PARAMS,
            limit=limit,
            output_fields=output_fields,
            **kwargs,
        )

        rows = []
        for hits in results:
            for hit in hits:
                rows.append(dict(hit["entity"]))
        return rows

    def _query_sync(
        self,
        collection: str,
        filter_expr: str,
        filter_params: Dict[str, Any],
        output_fields: List[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Sync scalar query."""
        self._check_connection()

        kwargs: Dict[str, Any] = {}
        if limit is not None:
            kwargs["limit"] = limit

        return self.client.query(
            collection_name=collection,
            filter=filter_expr,
            filter_params=filter_params,
            output_fields=output_fields,
            **kwargs,
        )

    async def find_potential_key_concepts(
        self, question: str, limits: Optional[Mapping[str, Any]] = None
    ) -> List[KeyConcept]:
        [embedding] = await self.embed([question])
        rows = await self._run(
            self._search_sync,
            KEY_CONCEPT_COLLECTION,
            embedding,
            _limit(limits, "max_key_concepts", MAX_KEY_CONCEPTS),
            CONCEPT_FIELDS,
        )
        logger.info(f"[KnowledgeBase] {len(rows)} key concepts near the question")
        return [_to_concept(row) for row in rows]

    async def find_neighbours_by_key_concepts(
        self, key_concepts: Sequence[str], limits: Optional[Mapping[str, Any]] = None
    ) -> List[KeyConcept]:
        if not key_concepts:
            return []

        sources = await self._run(
            self._query_sync,
            KEY_CONCEPT_COLLECTION,
            "value in {values}",
            {"values": list(key_concepts)},
            ["value", "related"],
        )
        explored = set(key_concepts)
        neighbours: List[str] = []
        for row in sources:
            for value in row.get("related") or []:
                if value not in explored and value not in neighbours:
                    neighbours.append(value)

        if not neighbours:
            logger.info("[KnowledgeBase] No neighbouring key concepts")
            return []

        rows = await self._run(
            self._query_sync,
            KEY_CONCEPT_COLLECTION,
            "value in {values}",
            {"values": neighbours},
            CONCEPT_FIELDS,
            _limit(limits, "max_key_concepts", MAX_KEY_CONCEPTS),
        )
        # Keep the order in which the neighbours were discovered
        by_value = {row["value"]: row for row in rows}
        concepts = [_to_concept(by_value[value]) for value in neighbours if value in by_value]
        logger.info(f"[KnowledgeBase] {len(concepts)} neighbouring key concepts")
        return concepts

    async def find_atomic_facts_by_key_concepts(
        self,
        key_concepts: Sequence[str],
        skip_chunk_ids: Sequence[str] = (),
        skip_fact_ids: Sequence[str] = (),
        limits: Optional[Mapping[str, Any]] = None,
    ) -> List[AtomicFact]:
        if not key_concepts:
            return []

        clauses = ["ARRAY_CONTAINS_ANY(key_concepts, {key_concepts})"]
        params: Dict[str, Any] = {"key_concepts": list(key_concepts)}
        if skip_chunk_ids:
            clauses.append("chunk_id not in {skip_chunk_ids}")
            params["skip_chunk_ids"] = list(skip_chunk_ids)
        if skip_fact_ids:
            clauses.append("id not in {skip_fact_ids}")
            params["skip_fact_ids"] = list(skip_fact_ids)

        rows = await self._run(
            self._query_sync,
            ATOMIC_FACT_COLLECTION,
            " and ".join(clauses),
            params,
            FACT_FIELDS,
            _limit(limits, "max_atomic_facts", MAX_ATOMIC_FACTS),
        )
        logger.info(f"[KnowledgeBase] {len(rows)} atomic facts for {len(key_concepts)} key concepts")
        return [AtomicFact(id=row["id"], content=row.get("content", ""), chunk_id=row["chunk_id"]) for row in rows]

    async def _chunk_rows(self, filter_expr: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._run(self._query_sync, CHUNK_COLLECTION, filter_expr, params, CHUNK_FIELDS, 1)

    async def find_chunk_by_id(self, chunk_id: str) -> Optional[Chunk]:
        rows = await self._chunk_rows("id == {chunk_id}", {"chunk_id": chunk_id})
        return _to_chunk(rows[0]) if rows else None

    async def _adjacent_chunk_id(self, chunk_id: str, offset: int) -> Optional[str]:
        chunk = await self.find_chunk_by_id(chunk_id)
        if chunk is None:
            return None
        rows = await self._chunk_rows(
            "document_id == {document_id} and position == {position}",
            {"document_id": chunk.document_id, "position": chunk.position + offset},
        )
        return rows[0]["id"] if rows else None

    async def find_subsequent_chunk_id(self, chunk_id: str) -> Optional[str]:
        return await self._adjacent_chunk_id(chunk_id, 1)

    async def find_previous_chunk_id(self, chunk_id: str) -> Optional[str]:
        return await self._adjacent_chunk_id(chunk_id, -1)

    async def find_potential_chunks(
        self, question: str, limits: Optional[Mapping[str, Any]] = None
    ) -> List[Chunk]:
        [embedding] = await self.embed([question])
        filter_expr, params = "", None
        document_ids = (limits or {}).get("document_ids")
        if document_ids:
            filter_expr, params = "document_id in {document_ids}", {"document_ids": list(document_ids)}

        rows = await self._run(
            self._search_sync,
            CHUNK_COLLECTION,
            embedding,
            _limit(limits, "max_chunks", MAX_CHUNKS),
            CHUNK_FIELDS,
            filter_expr,
            params,
        )
        logger.info(f"[KnowledgeBase] {len(rows)} chunks near the question")
        return [_to_chunk(row) for row in rows]

    def drop_collections(self) -> None:
        """Drop all collections (useful for resetting)."""
        self._check_connection()
        for name in (CHUNK_COLLECTION, KEY_CONCEPT_COLLECTION, ATOMIC_FACT_COLLECTION):
            if self.client.has_collection(name):
                self.client.drop_collection(name)
                logger.info(f"Dropped collection '{name}'")

    def close(self) -> None:
        """Close connection."""
        if self.client:
            self.client.close()
            logger.info("Milvus connection closed")
