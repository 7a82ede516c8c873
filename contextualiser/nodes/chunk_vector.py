"""
Direct entry path: read the chunks most similar to the question, skipping the
concept graph entirely.
"""
import logging
from typing import Any, Dict, List, Tuple

from knowledge_base.models import Chunk

from ..guard import approaching_hop_budget, halt
from ..notifications import Notification
from ..prompts import CHUNK_VECTOR_PROMPT
from ..schemas import ChunkVectorReview
from ..state import NextStep, NotebookEntry, RetrievalState, StageOutput, TokenUsage, add_tokens, ordered_union
from ..tools import ScorerResult, Toolkit, score_all

logger = logging.getLogger(__name__)


async def _review_chunk(
    state: RetrievalState, tools: Toolkit, chunk: Chunk
) -> Tuple[Chunk, ScorerResult[ChunkVectorReview]]:
    result = await tools.scorer.call(
        input_params={
            "question": state["question"],
            "rational_plan": state["rational_plan"],
            "text": chunk.content,
        },
        output_schema=ChunkVectorReview,
        system_prompt=CHUNK_VECTOR_PROMPT,
    )
    return chunk, result


async def retrieve_chunks_by_vector(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """
    Evaluate similar chunks and keep every note.

    This path never queues more chunks. Unless nothing was found, the next
    step is left for the caller to decide.
    """
    if approaching_hop_budget(state):
        return StageOutput(halt(state, "ChunkVector"))

    chunks = await tools.chunks.find_potential_chunks(state["question"], state["limits"])

    if not chunks:
        logger.info("[ChunkVector] No similar chunks found")
        return StageOutput({"hops": state["hops"] + 1, "next_step": NextStep.ANSWER})

    readable = [chunk for chunk in chunks if chunk.content and chunk.content.strip()]
    reviews = await score_all("ChunkVector", [_review_chunk(state, tools, chunk) for chunk in readable])

    notes: List[NotebookEntry] = []
    statuses: List[str] = []
    tokens: TokenUsage = {"input": 0, "output": 0}
    for chunk, result in reviews:
        review = result.output
        notes.append({"chunk_id": chunk.id, "content": review.note.content, "reason": review.note.reason})
        if review.status:
            statuses = ordered_union(statuses, [review.status])
        tokens = add_tokens(tokens, result.token_usage)

    logger.info(f"[ChunkVector] {len(notes)} notes from {len(chunks)} chunks")

    update: Dict[str, Any] = {
        "hops": state["hops"] + 1,
        "processed_chunks": [chunk.id for chunk in chunks],
        "notebook": notes,
        "status": statuses,
        "tokens": tokens,
    }
    return StageOutput(update, [Notification(status) for status in statuses])
