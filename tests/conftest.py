"""
Shared fakes: a scripted scorer and an in-memory knowledge graph.
"""
import inspect
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from contextualiser.state import create_state
from contextualiser.tools import ScorerResult, Toolkit
from knowledge_base.models import AtomicFact, Chunk, KeyConcept

USAGE = {"input": 10, "output": 5}


class FakeScorer:
    """
    Scorer whose answers are produced by per-schema handlers.

    A handler receives the input params and returns a model instance, raises,
    or returns an awaitable resolving to a model instance.
    """

    def __init__(self):
        self.handlers: Dict[type, Callable[[Dict[str, Any]], Any]] = {}
        self.calls: List[tuple] = []

    def on(self, schema: type, handler: Callable[[Dict[str, Any]], Any]) -> "FakeScorer":
        self.handlers[schema] = handler
        return self

    def script(self, schema: type, *outputs: Any) -> "FakeScorer":
        """Answer successive calls for ``schema`` with ``outputs`` in order."""
        pending = list(outputs)

        def handler(params):
            item = pending.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item

        return self.on(schema, handler)

    def calls_for(self, schema: type) -> List[Dict[str, Any]]:
        return [params for called, params in self.calls if called is schema]

    async def call(self, input_params, output_schema, system_prompt, temperature=0.1):
        self.calls.append((output_schema, input_params))
        handler = self.handlers.get(output_schema)
        if handler is None:
            raise AssertionError(f"Unexpected {output_schema.__name__} call")
        output = handler(input_params)
        if inspect.isawaitable(output):
            output = await output
        return ScorerResult(output=output, token_usage=dict(USAGE))


class FakeGraph:
    """In-memory concept, atomic fact and chunk repository."""

    def __init__(
        self,
        concepts: Sequence[KeyConcept] = (),
        neighbours: Optional[Dict[str, List[KeyConcept]]] = None,
        facts: Optional[Dict[str, List[AtomicFact]]] = None,
        chunks: Sequence[Chunk] = (),
        similar: Sequence[Chunk] = (),
    ):
        self.concepts = list(concepts)
        self.neighbours = dict(neighbours or {})
        self.facts = dict(facts or {})
        self.chunks = {chunk.id: chunk for chunk in chunks}
        self.similar = list(similar)
        self.next_ids: Dict[str, str] = {}
        self.previous_ids: Dict[str, str] = {}
        self.broken: set = set()
        self.fact_queries: List[tuple] = []

    async def find_potential_key_concepts(self, question, limits):
        return list(self.concepts)

    async def find_neighbours_by_key_concepts(self, key_concepts, limits):
        found = []
        for value in key_concepts:
            found.extend(self.neighbours.get(value, []))
        return found

    async def find_atomic_facts_by_key_concepts(self, key_concepts, skip_chunk_ids, skip_fact_ids, limits):
        self.fact_queries.append((list(key_concepts), list(skip_chunk_ids), list(skip_fact_ids)))
        found = []
        for value in key_concepts:
            for fact in self.facts.get(value, []):
                if fact.chunk_id not in skip_chunk_ids and fact.id not in skip_fact_ids:
                    found.append(fact)
        return found

    async def find_chunk_by_id(self, chunk_id):
        if chunk_id in self.broken:
            raise ConnectionError("graph unavailable")
        return self.chunks.get(chunk_id)

    async def find_subsequent_chunk_id(self, chunk_id):
        return self.next_ids.get(chunk_id)

    async def find_previous_chunk_id(self, chunk_id):
        return self.previous_ids.get(chunk_id)

    async def find_potential_chunks(self, question, limits):
        return list(self.similar)


class RecordingNotifier:
    def __init__(self):
        self.sent: List[tuple] = []

    def notify(self, user_id, channel, payload):
        self.sent.append((user_id, channel, payload))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def tools(scorer, graph):
    return Toolkit(scorer=scorer, concepts=graph, atomic_facts=graph, chunks=graph)


@pytest.fixture
def make_state():
    def _make(question="What drives tides?", **fields):
        state = create_state(question)
        state.update(fields)
        return state
    return _make
