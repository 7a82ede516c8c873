import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_base.ingestion import ingest_graph, parse_graph
from knowledge_base.models import AtomicFact, Chunk, ConceptMetadata, KeyConcept

EXPORT = {
    "chunks": [
        {"id": "c1", "content": "Tides are caused by the moon.", "document_id": "doc", "position": 0},
        {"id": "c2", "content": "The sun matters too.", "document_id": "doc", "position": 1},
    ],
    "key_concepts": [
        {"value": "moon", "id": "k1", "metadata": [{"id": "doc", "type": "document"}], "related": ["tide"]},
        {"value": "tide", "id": "k2"},
    ],
    "atomic_facts": [
        {"id": "f1", "content": "The moon pulls the sea.", "chunk_id": "c1", "key_concepts": ["moon", "tide"]},
    ],
}


def test_parse_graph():
    export = parse_graph(EXPORT)

    assert export.chunks[1] == Chunk("c2", "The sun matters too.", "doc", 1)
    assert export.key_concepts[0] == KeyConcept("moon", "k1", (ConceptMetadata("doc", "document"),))
    assert export.related == {"moon": ["tide"], "tide": []}
    assert export.atomic_facts == [AtomicFact("f1", "The moon pulls the sea.", "c1")]
    assert export.fact_concepts == {"f1": ["moon", "tide"]}


def make_store():
    store = MagicMock()
    store.add_chunks = AsyncMock(return_value=2)
    store.add_key_concepts = AsyncMock(return_value=2)
    store.add_atomic_facts = AsyncMock(return_value=1)
    return store


def test_ingest_graph_stores_every_node(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(EXPORT), encoding="utf-8")
    store = make_store()

    count = asyncio.run(ingest_graph(str(path), store))

    assert count == 5
    store.ensure_collections.assert_called_once_with()
    store.add_key_concepts.assert_awaited_once()
    assert store.add_atomic_facts.await_args.args[1] == {"f1": ["moon", "tide"]}


def test_empty_export_stores_nothing(tmp_path):
    path = tmp_path / "graph.json"
    path.write_text("{}", encoding="utf-8")
    store = make_store()

    assert asyncio.run(ingest_graph(str(path), store)) == 0
    store.ensure_collections.assert_not_called()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        asyncio.run(ingest_graph(str(tmp_path / "missing.json"), make_store()))


def test_unsupported_file(tmp_path):
    path = tmp_path / "graph.csv"
    path.write_text("id,content", encoding="utf-8")

    with pytest.raises(ValueError):
        asyncio.run(ingest_graph(str(path), make_store()))
