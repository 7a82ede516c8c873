"""
LangGraph workflow definition.
Builds the bounded multi-hop retrieval loop over the knowledge graph.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from langgraph.graph import END, START, StateGraph

from .config import MAX_HOPS
from .memory import ConversationMemory
from .nodes import (
    evaluate_chunks,
    filter_atomic_facts,
    plan_rationally,
    refine_question,
    retrieve_chunks_by_vector,
    select_key_concepts,
)
from .notifications import Notification, Notifier
from .state import (
    ContextualiserResponse,
    NextStep,
    RetrievalState,
    StageOutput,
    build_response,
    create_state,
    merge_state,
    settle_queues,
)
from .tools import Toolkit

logger = logging.getLogger(__name__)

Stage = Callable[[RetrievalState, Toolkit], Awaitable[StageOutput]]

STAGES: Dict[NextStep, Stage] = {
    NextStep.QUESTION_REFINE: refine_question,
    NextStep.RATIONAL_PLAN: plan_rationally,
    NextStep.KEY_CONCEPTS: select_key_concepts,
    NextStep.NEIGHBOURING_NODES: select_key_concepts,
    NextStep.ATOMIC_FACTS: filter_atomic_facts,
    NextStep.CHUNKS: evaluate_chunks,
    NextStep.CHUNKS_VECTOR: retrieve_chunks_by_vector,
}

_unhandled = set(NextStep) - set(STAGES) - {NextStep.ANSWER}
if _unhandled:
    raise RuntimeError(f"No stage registered for {sorted(step.value for step in _unhandled)}")


def stage_for(step: NextStep) -> Stage:
    step = NextStep(step)
    if step == NextStep.ANSWER:
        raise ValueError("'answer' is terminal and has no stage")
    return STAGES[step]


class Contextualiser:
    """
    Orchestrator of the retrieval state machine.

    The only place where stage updates are merged into the state and where
    notification events are delivered.
    """

    def __init__(self, tools: Toolkit, notifier: Optional[Notifier] = None, max_hops: int = MAX_HOPS):
        self.tools = tools
        self.notifier = notifier
        self.max_hops = max_hops
        self._graph = None

    def is_finished(self, state: RetrievalState) -> bool:
        return state["next_step"] == NextStep.ANSWER or state["hops"] >= self.max_hops

    def _deliver(self, state: RetrievalState, events: Sequence[Notification]) -> None:
        if not (self.notifier and state["interactive"] and state["user_id"]):
            return
        for event in events:
            self.notifier.notify(
                state["user_id"],
                event.channel,
                {"message": event.message, "session_id": state["session_id"]},
            )

    async def step(self, state: RetrievalState) -> Dict[str, Any]:
        """Run the stage selected by ``next_step`` and return its settled update."""
        step = NextStep(state["next_step"])
        logger.info(f"[Graph] {step.value} - hop {state['hops']}/{self.max_hops}")
        output = await stage_for(step)(state, self.tools)
        self._deliver(state, output.events)
        return settle_queues(state, output.update)

    async def dispatch(self, state: RetrievalState) -> RetrievalState:
        """Advance the session by one hop."""
        if self.is_finished(state):
            logger.info(f"[Graph] Session finished at hop {state['hops']}, nothing to dispatch")
            return state
        update = await self.step(state)
        return merge_state(state, update)

    def _route_start(self, state: RetrievalState) -> str:
        if self.is_finished(state):
            return END
        return NextStep(state["next_step"]).value

    def _route_next(self, state: RetrievalState) -> str:
        if self.is_finished(state):
            if state["hops"] >= self.max_hops:
                logger.warning(f"[Graph] Hop budget of {self.max_hops} reached")
            return END
        # The vector path hands control back after one hop
        if state["next_step"] == NextStep.CHUNKS_VECTOR:
            return END
        return NextStep(state["next_step"]).value

    def build_graph(self):
        """Build and return the compiled retrieval graph."""
        workflow = StateGraph(RetrievalState)
        routes = {step.value: step.value for step in STAGES}
        routes[END] = END

        for step in STAGES:
            workflow.add_node(step.value, self.step)

        workflow.add_conditional_edges(START, self._route_start, routes)
        for step in STAGES:
            workflow.add_conditional_edges(step.value, self._route_next, routes)

        logger.info("Retrieval graph built successfully")
        return workflow.compile()

    def get_graph(self):
        """Get or create the compiled graph."""
        if self._graph is None:
            self._graph = self.build_graph()
        return self._graph

    async def run(self, state: RetrievalState) -> RetrievalState:
        """Dispatch hops until the answer step or the hop budget is reached."""
        graph = self.get_graph()
        return await graph.ainvoke(state, {"recursion_limit": self.max_hops + 2})


async def run_contextualiser(
    question: str,
    session_id: str,
    tools: Toolkit,
    *,
    user_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    memory: Optional[ConversationMemory] = None,
    previous_analysis: str = "",
    limits: Optional[Dict[str, Any]] = None,
    use_vector: bool = False,
    max_hops: int = MAX_HOPS,
) -> ContextualiserResponse:
    """
    Gather the context needed to answer a question.
    Returns what the responder needs to write the final answer.
    """
    memory = memory or ConversationMemory(session_id)
    history = memory.get_history()

    if use_vector:
        first_step = NextStep.CHUNKS_VECTOR
    elif history:
        first_step = NextStep.QUESTION_REFINE
    else:
        first_step = NextStep.RATIONAL_PLAN

    state = create_state(
        question,
        session_id=session_id,
        user_id=user_id,
        interactive=user_id is not None,
        chat_history=history,
        previous_analysis=previous_analysis,
        limits=limits,
        next_step=first_step,
    )

    logger.info(f"[Contextualiser] '{question[:50]}...' starting at {first_step.value}, history len: {len(history)}")

    final = await Contextualiser(tools, notifier=notifier, max_hops=max_hops).run(state)

    memory.add_message("user", question)

    logger.info(
        f"[Contextualiser] Done in {final['hops']} hops, {len(final['notebook'])} notes, "
        f"tokens in/out: {final['tokens']['input']}/{final['tokens']['output']}"
    )
    return build_response(final)
