"""
Write the plan that guides the rest of the retrieval.
"""
import logging

from ..guard import approaching_hop_budget, halt
from ..notifications import Notification
from ..prompts import RATIONAL_PLAN_PROMPT
from ..schemas import RationalPlan
from ..state import NextStep, RetrievalState, StageOutput
from ..tools import Toolkit

logger = logging.getLogger(__name__)


async def plan_rationally(state: RetrievalState, tools: Toolkit) -> StageOutput:
    """Write a rational plan for the question."""
    if approaching_hop_budget(state):
        return StageOutput(halt(state, "RationalPlan"))

    input_params = {"question": state["question"]}
    if state["previous_analysis"]:
        input_params["analysis"] = state["previous_analysis"]

    result = await tools.scorer.call(
        input_params=input_params,
        output_schema=RationalPlan,
        system_prompt=RATIONAL_PLAN_PROMPT,
    )
    plan = result.output
    logger.info(f"[RationalPlan] Plan ready ({len(plan.rational_plan)} chars)")

    return StageOutput(
        {
            "hops": state["hops"] + 1,
            "rational_plan": plan.rational_plan,
            "next_step": NextStep.KEY_CONCEPTS,
            "status": [plan.status],
            "tokens": result.token_usage,
        },
        [Notification(plan.status)],
    )
