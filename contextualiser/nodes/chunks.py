"""
Read queued chunks, take notes, and decide where to look next.
"""
import asyncio
import logging
from typing import List, Optional, Tuple

from knowledge_base.models import Chunk

from ..guard import approaching_hop_budget, chunk_loop_exhausted
from ..notifications import Notification
from ..prompts import CHUNK_PROMPT
from ..schemas import ChunkAction, ChunkReview
from ..state import NextStep, NotebookEntry, RetrievalState, StageOutput, TokenUsage, add_tokens, ordered_union
from ..tools import ScorerResult, Toolkit, score_all

logger = logging.getLogger(__name__)


def _fallback_step(state: RetrievalState) -> NextStep:
    return NextStep.ANSWER if state["neighbouring_already_explored"] else NextStep.NEIGHBOURING_NODES


async def _resolve(tools: Toolkit, chunk_id: str) -> Optional[Chunk]:
    try:
        return await tools.chunks.find_chunk_by_id(chunk_id)
    except Exception as e:
        logger.warning(f"[Chunks] Could not resolve chunk {chunk_id}: {e}")
        return None


async def _adjacent(tools: Toolkit, chunk_id: str, action: ChunkAction) -> Optional[str]:
    try:
        if action == ChunkAction.QUEUE_NEXT_CHUNK:
            return await tools.chunks.find_subsequent_chunk_id(chunk_id)
        if action == ChunkAction.QUEUE_PREVIOUS_CHUNK:
            return await tools.chunks.find_previous_chunk_id(chunk_id)
    except Exception as e:
        logger.warning(f"[Chunks] Neighbour lookup failed for {chunk_id}: {e}")
    return None


async def _review_chunk(
    state: RetrievalState, tools: Toolkit, chunk: Chunk
) -> Tuple[Chunk, ScorerResult[ChunkReview]]:
    result = await tools.scorer.call(
        input_params={
            "question": state["question"],
            "rational_plan": state["rational_plan"],
            "text": chunk.content,
        },
        output_schema=ChunkReview,
        system_prompt=CHUNK_PROMPT,
    )
    return chunk, result


async def evaluate_chunks(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """Read queued chunks, take notes and pick the next step."""
    processed = set(state["processed_chunks"])
    delta = [c for c in ordered_union([], state["queued_chunks"]) if c not in processed]
    chunk_level = state["chunk_level"] + 1
    stopped = approaching_hop_budget(state) or chunk_loop_exhausted(state)

    if not delta:
        logger.info("[Chunks] Nothing queued, moving on")
        update = {
            "hops": state["hops"] + 1,
            "chunk_level": chunk_level,
            "queued_chunks": [],
            "next_step": NextStep.ANSWER if stopped else _fallback_step(state),
        }
        if stopped:
            update["queued_key_concepts"] = []
        return StageOutput(update)

    resolved = await asyncio.gather(*[_resolve(tools, chunk_id) for chunk_id in delta])
    chunks = [chunk for chunk in resolved if chunk is not None and chunk.content and chunk.content.strip()]

    reviews = await score_all("Chunks", [_review_chunk(state, tools, chunk) for chunk in chunks])

    notes: List[NotebookEntry] = []
    statuses: List[str] = []
    events: List[Notification] = []
    tokens: TokenUsage = {"input": 0, "output": 0}
    for chunk, result in reviews:
        review = result.output
        if review.status:
            events.append(Notification(review.status))
        tokens = add_tokens(tokens, result.token_usage)
        if review.chosen_action != ChunkAction.SKIP:
            notes.append({"chunk_id": chunk.id, "content": review.note.content, "reason": review.note.reason})
        if review.chosen_action == ChunkAction.ANSWER and review.status:
            statuses = ordered_union(statuses, [review.status])

    adjacent = await asyncio.gather(*[
        _adjacent(tools, chunk.id, result.output.chosen_action) for chunk, result in reviews
    ])
    new_chunks = [chunk_id for chunk_id in adjacent if chunk_id]

    if new_chunks:
        next_step = NextStep.CHUNKS
    elif any(result.output.chosen_action == ChunkAction.ANSWER for _, result in reviews):
        next_step = NextStep.ANSWER
    else:
        next_step = _fallback_step(state)

    if stopped:
        logger.warning(
            f"[Guard] Chunks stopped at hop {state['hops']}, level {state['chunk_level']}, forcing answer"
        )
        new_chunks = []
        next_step = NextStep.ANSWER

    logger.info(
        f"[Chunks] Read {len(chunks)}/{len(delta)} chunks, {len(notes)} notes, "
        f"{len(new_chunks)} queued, next: {next_step.value}"
    )

    update = {
        "hops": state["hops"] + 1,
        "chunk_level": chunk_level,
        "notebook": notes,
        "processed_chunks": [chunk.id for chunk, _ in reviews],
        "queued_chunks": new_chunks,
        "status": statuses,
        "next_step": next_step,
        "tokens": tokens,
    }
    if stopped:
        update["queued_key_concepts"] = []
    return StageOutput(update, events)
