"""
Evaluate the atomic facts tied to newly queued key concepts and derive the
chunks worth reading.
"""
import logging
from typing import Any, Dict, List, Sequence, Tuple

from knowledge_base.models import AtomicFact

from ..config import ATOMIC_FACT_BATCH_SIZE
from ..guard import approaching_hop_budget, halt
from ..notifications import Notification
from ..prompts import ATOMIC_FACTS_PROMPT
from ..schemas import AtomicFactReview
from ..state import NextStep, RetrievalState, StageOutput, TokenUsage, add_tokens, ordered_union
from ..tools import ScorerResult, Toolkit, score_as_completed

logger = logging.getLogger(__name__)


def batched(items: Sequence[AtomicFact], size: int) -> List[List[AtomicFact]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _pass_through(state: RetrievalState, **extra: Any) -> Dict[str, Any]:
    update = {
        "hops": state["hops"] + 1,
        "queued_key_concepts": [],
        "next_step": NextStep.CHUNKS if state["queued_chunks"] else NextStep.ANSWER,
    }
    update.update(extra)
    return update


async def _review_batch(
    state: RetrievalState, tools: Toolkit, batch: List[AtomicFact]
) -> Tuple[ScorerResult[AtomicFactReview], List[str]]:
    result = await tools.scorer.call(
        input_params={
            "question": state["question"],
            "rational_plan": state["rational_plan"],
            "atomic_facts": [{"chunk_id": fact.chunk_id, "fact": fact.content} for fact in batch],
        },
        output_schema=AtomicFactReview,
        system_prompt=ATOMIC_FACTS_PROMPT,
    )
    # Only chunks the batch actually points at
    allowed = {fact.chunk_id for fact in batch}
    chunk_ids = [chunk_id for chunk_id in ordered_union([], result.output.chunks_to_analyse) if chunk_id in allowed]
    return result, chunk_ids


async def filter_atomic_facts(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """Review facts of the newly queued key concepts and queue the chunks they point to."""
    processed_concepts = set(state["processed_key_concepts"])
    delta = [c for c in ordered_union([], state["queued_key_concepts"]) if c not in processed_concepts]

    if approaching_hop_budget(state):
        return StageOutput(halt(state, "AtomicFacts", processed_key_concepts=delta))

    if not delta:
        logger.info("[AtomicFacts] No new key concepts, passing through")
        return StageOutput(_pass_through(state))

    processed_chunks = set(state["processed_chunks"])
    processed_facts = set(state["processed_atomic_facts"])

    found = await tools.atomic_facts.find_atomic_facts_by_key_concepts(
        delta,
        list(state["processed_chunks"]),
        list(state["processed_atomic_facts"]),
        state["limits"],
    )
    facts: List[AtomicFact] = []
    seen = set()
    for fact in found:
        if fact.id in processed_facts or fact.chunk_id in processed_chunks or fact.id in seen:
            continue
        seen.add(fact.id)
        facts.append(fact)

    logger.info(f"[AtomicFacts] {len(facts)} facts for {len(delta)} key concepts")

    if not facts:
        return StageOutput(_pass_through(state, processed_key_concepts=delta))

    batches = batched(facts, ATOMIC_FACT_BATCH_SIZE)
    reviews = await score_as_completed(
        "AtomicFacts", [_review_batch(state, tools, batch) for batch in batches]
    )

    annotations: List[str] = []
    statuses: List[str] = []
    candidates: List[str] = []
    tokens: TokenUsage = {"input": 0, "output": 0}
    for result, chunk_ids in reviews:
        review = result.output
        if review.annotations:
            annotations.append(review.annotations)
        if review.status:
            statuses = ordered_union(statuses, [review.status])
        candidates = ordered_union(candidates, chunk_ids)
        tokens = add_tokens(tokens, result.token_usage)

    candidates = [chunk_id for chunk_id in candidates if chunk_id not in processed_chunks]

    if candidates:
        next_step = NextStep.CHUNKS
    elif not state["processed_key_concepts"] or state["neighbouring_already_explored"]:
        next_step = NextStep.ANSWER
    else:
        next_step = NextStep.NEIGHBOURING_NODES

    logger.info(
        f"[AtomicFacts] {len(batches)} batches, {len(candidates)} chunks queued, next: {next_step.value}"
    )

    return StageOutput(
        {
            "hops": state["hops"] + 1,
            "annotations": "\n".join(annotations),
            "processed_key_concepts": delta,
            "processed_atomic_facts": [fact.id for fact in facts],
            "queued_key_concepts": [],
            "queued_chunks": candidates,
            "status": statuses,
            "next_step": next_step,
            "tokens": tokens,
        },
        [Notification(status) for status in statuses],
    )
