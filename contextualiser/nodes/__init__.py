"""
Graph nodes - one stage of the retrieval per module.

Every stage is ``async (state, tools) -> StageOutput`` and never mutates the
state it is given.
"""
from .atomic_facts import filter_atomic_facts
from .chunk_vector import retrieve_chunks_by_vector
from .chunks import evaluate_chunks
from .key_concepts import select_key_concepts
from .question_refiner import refine_question
from .rational_plan import plan_rationally

__all__ = [
    "filter_atomic_facts",
    "retrieve_chunks_by_vector",
    "evaluate_chunks",
    "select_key_concepts",
    "refine_question",
    "plan_rationally",
]
