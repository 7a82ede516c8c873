"""
Score candidate key concepts and queue the most relevant ones.

Runs in two modes, picked by the step that dispatched it:
  - key_concepts: concepts matching the question
  - neighbouring_nodes: concepts adjacent to the ones already processed
"""
import logging
from typing import Any, Dict, List

from knowledge_base.models import KeyConcept

from ..config import KEY_CONCEPT_QUEUE_SIZE
from ..guard import approaching_hop_budget, halt
from ..notifications import Notification
from ..prompts import KEY_CONCEPTS_PROMPT
from ..schemas import KeyConceptScores, ScoredKeyConcept
from ..state import NextStep, RetrievalState, StageOutput
from ..tools import Toolkit

logger = logging.getLogger(__name__)


def _describe(concept: KeyConcept) -> Dict[str, Any]:
    return {
        "key_concept": concept.value,
        "metadata": [{"id": m.id, "type": m.type, "data": m.data} for m in concept.metadata],
    }


def rank_key_concepts(
    scored: List[ScoredKeyConcept], candidates: List[KeyConcept], limit: int = KEY_CONCEPT_QUEUE_SIZE
) -> List[ScoredKeyConcept]:
    """
    Keep scores for known candidates only, best first.

    Ties keep the candidate order. Anything the scorer named that is not a
    candidate is dropped.
    """
    position = {concept.value: index for index, concept in enumerate(candidates)}
    kept: Dict[str, ScoredKeyConcept] = {}
    for item in scored:
        if item.key_concept in position and item.key_concept not in kept:
            kept[item.key_concept] = item

    dropped = len(scored) - len(kept)
    if dropped:
        logger.debug(f"[KeyConcepts] Ignored {dropped} unknown or repeated concepts from scorer")

    ranked = sorted(kept.values(), key=lambda item: (-item.score, position[item.key_concept]))
    return ranked[:limit]


async def select_key_concepts(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """Score candidate key concepts and queue the best ones."""
    mode = state["next_step"]
    update: Dict[str, Any] = {}

    if mode == NextStep.NEIGHBOURING_NODES:
        update["neighbouring_already_explored"] = True

    if approaching_hop_budget(state):
        return StageOutput(halt(state, "KeyConcepts", **update))

    if mode == NextStep.NEIGHBOURING_NODES:
        found = await tools.concepts.find_neighbours_by_key_concepts(
            list(state["processed_key_concepts"]), state["limits"]
        )
    elif mode == NextStep.KEY_CONCEPTS:
        found = await tools.concepts.find_potential_key_concepts(state["question"], state["limits"])
    else:
        raise ValueError(f"Key concept selection cannot run for step '{mode}'")

    processed = set(state["processed_key_concepts"])
    candidates: List[KeyConcept] = []
    seen = set()
    for concept in found:
        if concept.value not in processed and concept.value not in seen:
            seen.add(concept.value)
            candidates.append(concept)

    logger.info(f"[KeyConcepts] {mode.value}: {len(candidates)} candidates ({len(found)} found)")

    if not candidates:
        update.update({
            "hops": state["hops"] + 1,
            "queued_key_concepts": [],
            "next_step": NextStep.ANSWER,
        })
        return StageOutput(update)

    result = await tools.scorer.call(
        input_params={
            "question": state["question"],
            "rational_plan": state["rational_plan"],
            "key_concepts": [_describe(concept) for concept in candidates],
        },
        output_schema=KeyConceptScores,
        system_prompt=KEY_CONCEPTS_PROMPT,
    )
    scores = result.output

    by_value = {concept.value: concept for concept in candidates}
    ranked = rank_key_concepts(scores.key_concepts, candidates)
    ontology = [
        metadata.id
        for item in rank_key_concepts(scores.key_concepts, candidates, limit=len(candidates))
        if item.is_used_as_source
        for metadata in by_value[item.key_concept].metadata
    ]
    queue = [item.key_concept for item in ranked]

    logger.info(f"[KeyConcepts] Queued {len(queue)}: {queue}")

    update.update({
        "hops": state["hops"] + 1,
        "queued_key_concepts": queue,
        "ontology": ontology,
        "next_step": NextStep.ATOMIC_FACTS,
        "status": [scores.status],
        "tokens": result.token_usage,
    })
    return StageOutput(update, [Notification(scores.status)])
