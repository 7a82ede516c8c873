"""
Collapse a multi-turn conversation into one focused question.
"""
import logging

from ..guard import approaching_hop_budget, halt
from ..notifications import Notification
from ..prompts import QUESTION_REFINER_PROMPT
from ..schemas import RefinedQuestion
from ..state import NextStep, RetrievalState, StageOutput
from ..tools import Toolkit

logger = logging.getLogger(__name__)


async def refine_question(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """Rewrite the question using the conversation history."""
    history = state["chat_history"]

    if approaching_hop_budget(state):
        return StageOutput(halt(state, "QuestionRefiner"))

    if not history:
        logger.info("[QuestionRefiner] No history, keeping the question as is")
        return StageOutput({"hops": state["hops"] + 1, "next_step": NextStep.RATIONAL_PLAN})

    chat = [{"role": m["role"], "content": m["content"]} for m in history]
    chat.append({"role": "user", "content": state["question"]})

    result = await tools.scorer.call(
        input_params={"chat_history": chat},
        output_schema=RefinedQuestion,
        system_prompt=QUESTION_REFINER_PROMPT,
    )
    refined = result.output
    logger.info(f"[QuestionRefiner] '{state['question'][:50]}' -> '{refined.response[:50]}'")

    return StageOutput(
        {
            "hops": state["hops"] + 1,
            "question": refined.response,
            "next_step": NextStep.RATIONAL_PLAN,
            "tokens": result.token_usage,
        },
        [Notification(refined.status)],
    )
