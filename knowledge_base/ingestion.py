"""
Knowledge graph ingestion pipeline.
Loads a JSON graph export, embeds every node and stores it in Milvus.

Expected file layout::

    {
      "chunks": [{"id", "content", "document_id", "position"}],
      "key_concepts": [{"value", "id", "metadata": [{"id", "type", "data"}], "related": [...]}],
      "atomic_facts": [{"id", "content", "chunk_id", "key_concepts": [...]}]
    }
"""
import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .models import AtomicFact, Chunk, ConceptMetadata, KeyConcept

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=1)


@dataclass
class GraphExport:
    chunks: List[Chunk] = field(default_factory=list)
    key_concepts: List[KeyConcept] = field(default_factory=list)
    related: Dict[str, List[str]] = field(default_factory=dict)
    atomic_facts: List[AtomicFact] = field(default_factory=list)
    fact_concepts: Dict[str, List[str]] = field(default_factory=dict)


def parse_graph(raw: Dict[str, Any]) -> GraphExport:
    """Turn the raw JSON document into graph entities."""
    export = GraphExport()

    for item in raw.get("chunks", []):
        export.chunks.append(Chunk(
            id=str(item["id"]),
            content=item.get("content", ""),
            document_id=str(item.get("document_id", "")),
            position=int(item.get("position", 0)),
        ))

    for item in raw.get("key_concepts", []):
        concept = KeyConcept(
            value=item["value"],
            id=str(item.get("id", "")),
            metadata=tuple(
                ConceptMetadata(id=str(m["id"]), type=m.get("type", ""), data=m.get("data", {}))
                for m in item.get("metadata", [])
            ),
        )
        export.key_concepts.append(concept)
        export.related[concept.value] = list(item.get("related", []))

    chunk_ids = {chunk.id for chunk in export.chunks}
    for item in raw.get("atomic_facts", []):
        fact = AtomicFact(id=str(item["id"]), content=item.get("content", ""), chunk_id=str(item["chunk_id"]))
        if fact.chunk_id not in chunk_ids:
            logger.warning(f"Atomic fact {fact.id} points to unknown chunk {fact.chunk_id}")
        export.atomic_facts.append(fact)
        export.fact_concepts[fact.id] = list(item.get("key_concepts", []))

    return export


def _load_graph_sync(file_path: str) -> GraphExport:
    """Load graph export - runs in thread pool."""
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    if path.suffix.lower() != ".json":
        raise ValueError(f"Unsupported file type: {path.suffix}. Supported: .json")

    logger.info(f"Loading: {path.name}")
    with path.open(encoding="utf-8") as f:
        export = parse_graph(json.load(f))

    logger.info(
        f"Loaded {len(export.chunks)} chunks, {len(export.key_concepts)} key concepts, "
        f"{len(export.atomic_facts)} atomic facts from {path.name}"
    )
    return export


async def load_graph(file_path: str) -> GraphExport:
    """Async graph loader."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, _load_graph_sync, file_path)


async def ingest_graph(file_path: str, store) -> int:
    """
    Full pipeline: load -> embed -> store.
    Returns number of nodes stored.
    """
    logger.info(f"Starting ingestion: {file_path}")

    export = await load_graph(file_path)
    if not (export.chunks or export.key_concepts or export.atomic_facts):
        logger.warning(f"No nodes in {file_path}")
        return 0

    # Make sure collections exist
    store.ensure_collections()

    count = await store.add_chunks(export.chunks)
    count += await store.add_key_concepts(export.key_concepts, export.related)
    count += await store.add_atomic_facts(export.atomic_facts, export.fact_concepts)

    logger.info(f"Ingested {count} nodes from {file_path}")
    return count
