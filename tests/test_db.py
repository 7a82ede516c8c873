import asyncio
from unittest.mock import MagicMock

import pytest

from knowledge_base.config import ATOMIC_FACT_COLLECTION, CHUNK_COLLECTION, KEY_CONCEPT_COLLECTION
from knowledge_base.db import MilvusGraphStore
from knowledge_base.models import AtomicFact, Chunk, ConceptMetadata, KeyConcept


async def fake_embed(texts):
    return [[0.1, 0.2] for _ in texts]


@pytest.fixture
def store():
    store = MilvusGraphStore(embed=fake_embed)
    store.client = MagicMock()
    return store


def test_requires_connection():
    with pytest.raises(RuntimeError):
        asyncio.run(MilvusGraphStore(embed=fake_embed).find_chunk_by_id("c1"))


def test_ensure_collections_creates_missing_ones(store):
    store.client.has_collection.side_effect = lambda name: name == CHUNK_COLLECTION

    store.ensure_collections()

    created = [call.kwargs["collection_name"] for call in store.client.create_collection.call_args_list]
    assert created == [KEY_CONCEPT_COLLECTION, ATOMIC_FACT_COLLECTION]


def test_add_key_concepts_stores_metadata_and_neighbours(store):
    store.client.insert.return_value = {"ids": ["k1"]}
    concept = KeyConcept("moon", id="k1", metadata=(ConceptMetadata("doc-1", "document"),))

    count = asyncio.run(store.add_key_concepts([concept], {"moon": ["tide"]}))

    assert count == 1
    [row] = store.client.insert.call_args.kwargs["data"]
    assert row["value"] == "moon"
    assert row["related"] == ["tide"]
    assert row["metadata"] == {"items": [{"id": "doc-1", "type": "document", "data": {}}]}
    assert row["dense_vector"] == [0.1, 0.2]


def test_find_potential_key_concepts(store):
    store.client.search.return_value = [[
        {"id": "k1", "distance": 0.9, "entity": {"id": "k1", "value": "moon", "metadata": {"items": [{"id": "doc-1"}]}}},
    ]]

    concepts = asyncio.run(store.find_potential_key_concepts("Why tides?", {"max_key_concepts": 5}))

    assert concepts == [KeyConcept("moon", id="k1", metadata=(ConceptMetadata("doc-1"),))]
    kwargs = store.client.search.call_args.kwargs
    assert kwargs["collection_name"] == KEY_CONCEPT_COLLECTION
    assert kwargs["limit"] == 5


def test_find_neighbours_excludes_the_explored_concepts(store):
    store.client.query.side_effect = [
        [{"value": "moon", "related": ["tide", "gravity", "moon"]}],
        [{"id": "k3", "value": "gravity", "metadata": {"items": []}}],
    ]

    neighbours = asyncio.run(store.find_neighbours_by_key_concepts(["moon", "tide"], {}))

    assert [concept.value for concept in neighbours] == ["gravity"]
    second = store.client.query.call_args_list[1].kwargs
    assert second["filter_params"] == {"values": ["gravity"]}


def test_find_atomic_facts_filters_skipped_ids(store):
    store.client.query.return_value = [{"id": "f1", "content": "The moon pulls.", "chunk_id": "c1"}]

    facts = asyncio.run(store.find_atomic_facts_by_key_concepts(["moon"], ["c9"], [], {}))

    assert facts == [AtomicFact("f1", "The moon pulls.", "c1")]
    kwargs = store.client.query.call_args.kwargs
    assert kwargs["filter"] == "ARRAY_CONTAINS_ANY(key_concepts, {key_concepts}) and chunk_id not in {skip_chunk_ids}"
    assert kwargs["filter_params"] == {"key_concepts": ["moon"], "skip_chunk_ids": ["c9"]}


def test_find_subsequent_chunk_uses_document_position(store):
    store.client.query.side_effect = [
        [{"id": "c1", "content": "one", "document_id": "doc", "position": 4}],
        [{"id": "c2", "content": "two", "document_id": "doc", "position": 5}],
    ]

    assert asyncio.run(store.find_subsequent_chunk_id("c1")) == "c2"
    second = store.client.query.call_args_list[1].kwargs
    assert second["filter_params"] == {"document_id": "doc", "position": 5}


def test_find_previous_chunk_of_unknown_chunk(store):
    store.client.query.return_value = []

    assert asyncio.run(store.find_previous_chunk_id("nope")) is None


def test_find_potential_chunks_can_be_restricted_to_documents(store):
    store.client.search.return_value = [[
        {"id": "c1", "distance": 0.8, "entity": {"id": "c1", "content": "one", "document_id": "doc", "position": 0}},
    ]]

    chunks = asyncio.run(store.find_potential_chunks("Why tides?", {"document_ids": ["doc"]}))

    assert chunks == [Chunk("c1", "one", "doc", 0)]
    kwargs = store.client.search.call_args.kwargs
    assert kwargs["filter"] == "document_id in {document_ids}"
    assert kwargs["filter_params"] == {"document_ids": ["doc"]}
