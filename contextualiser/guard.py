"""
Termination guard shared by all stages.

The hard hop budget is enforced by the orchestrator. Stages stop expanding a
fixed safety margin before it, and the chunk loop has its own cap.
"""
import logging
from typing import Any, Dict

from .config import CHUNK_LEVEL_CAP, HOP_SOFT_LIMIT
from .state import NextStep, RetrievalState

logger = logging.getLogger(__name__)


def approaching_hop_budget(state: RetrievalState, soft_limit: int = HOP_SOFT_LIMIT) -> bool:
    return state["hops"] >= soft_limit


def chunk_loop_exhausted(state: RetrievalState, cap: int = CHUNK_LEVEL_CAP) -> bool:
    return state["chunk_level"] > cap


def halt(state: RetrievalState, stage: str, **extra: Any) -> Dict[str, Any]:
    """Update that ends exploration: no new queues, straight to the answer."""
    logger.warning(f"[Guard] {stage} stopped at hop {state['hops']}, forcing answer")
    update = {
        "hops": state["hops"] + 1,
        "queued_key_concepts": [],
        "queued_chunks": [],
        "next_step": NextStep.ANSWER,
    }
    update.update(extra)
    return update
