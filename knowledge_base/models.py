"""
Graph entities and the repository contracts the contextualiser depends on.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple


@dataclass(frozen=True)
class ConceptMetadata:
    id: str
    type: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class KeyConcept:
    value: str
    id: str = ""
    metadata: Tuple[ConceptMetadata, ...] = ()


@dataclass(frozen=True)
class AtomicFact:
    id: str
    content: str
    chunk_id: str


@dataclass(frozen=True)
class Chunk:
    id: str
    content: str
    document_id: str = ""
    position: int = 0


class ConceptRepository(Protocol):
    async def find_potential_key_concepts(self, question: str, limits: Dict[str, Any]) -> List[KeyConcept]:
        ...

    async def find_neighbours_by_key_concepts(
        self, key_concepts: List[str], limits: Dict[str, Any]
    ) -> List[KeyConcept]:
        ...


class AtomicFactRepository(Protocol):
    async def find_atomic_facts_by_key_concepts(
        self,
        key_concepts: List[str],
        skip_chunk_ids: List[str],
        skip_fact_ids: List[str],
        limits: Dict[str, Any],
    ) -> List[AtomicFact]:
        ...


class ChunkRepository(Protocol):
    async def find_chunk_by_id(self, chunk_id: str) -> Optional[Chunk]:
        ...

    async def find_subsequent_chunk_id(self, chunk_id: str) -> Optional[str]:
        ...

    async def find_previous_chunk_id(self, chunk_id: str) -> Optional[str]:
        ...

    async def find_potential_chunks(self, question: str, limits: Dict[str, Any]) -> List[Chunk]:
        ...
