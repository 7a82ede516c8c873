"""
Bounded multi-hop retrieval over a knowledge graph.
"""
from .graph import Contextualiser, run_contextualiser
from .state import ContextualiserResponse, NextStep, RetrievalState, create_state

__all__ = [
    "Contextualiser",
    "run_contextualiser",
    "ContextualiserResponse",
    "NextStep",
    "RetrievalState",
    "create_state",
]
