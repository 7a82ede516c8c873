"""
Retrieval state threaded through every stage of the contextualiser.

Stages never mutate the state they receive. They return a partial update and
the orchestrator merges it with the reducers declared on ``RetrievalState``.
The same reducers drive the LangGraph channels and ``merge_state``.
"""
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Sequence,
    TypedDict,
    get_type_hints,
)

from .notifications import Notification


class NextStep(str, Enum):
    """The only dispatch key of the state machine."""

    QUESTION_REFINE = "question_refine"
    RATIONAL_PLAN = "rational_plan"
    KEY_CONCEPTS = "key_concepts"
    ATOMIC_FACTS = "atomic_facts"
    CHUNKS = "chunks"
    CHUNKS_VECTOR = "chunks_vector"
    NEIGHBOURING_NODES = "neighbouring_nodes"
    ANSWER = "answer"


class ChatMessage(TypedDict):
    role: str
    content: str


class NotebookEntry(TypedDict):
    chunk_id: str
    content: str
    reason: str


class TokenUsage(TypedDict):
    input: int
    output: int


# Reducers

def ordered_union(current: Optional[List[str]], update: Optional[Iterable[str]]) -> List[str]:
    """Append-only set: keeps first-seen order, drops duplicates."""
    merged = list(current or [])
    if not update:
        return merged
    seen = set(merged)
    for item in update:
        if item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


def append_notes(current: Optional[List[NotebookEntry]], update: Optional[List[NotebookEntry]]) -> List[NotebookEntry]:
    """Append notebook entries, one entry per chunk."""
    merged = list(current or [])
    if not update:
        return merged
    seen = {entry["chunk_id"] for entry in merged}
    for entry in update:
        if entry["chunk_id"] not in seen:
            seen.add(entry["chunk_id"])
            merged.append(entry)
    return merged


def join_annotations(current: Optional[str], update: Optional[str]) -> str:
    if not update:
        return current or ""
    if not current:
        return update
    if update in current:
        return current
    return f"{current}\n{update}"


def add_tokens(current: Optional[TokenUsage], update: Optional[TokenUsage]) -> TokenUsage:
    current = current or {}
    update = update or {}
    return {
        "input": current.get("input", 0) + update.get("input", 0),
        "output": current.get("output", 0) + update.get("output", 0),
    }


class RetrievalState(TypedDict):
    """State that flows through the graph."""

    # Session (set once by the caller)
    session_id: str
    user_id: Optional[str]
    interactive: bool
    chat_history: List[ChatMessage]
    previous_analysis: str
    limits: Dict[str, Any]

    # Current focus
    question: str
    rational_plan: str

    # Budget
    hops: int
    chunk_level: int
    neighbouring_already_explored: bool

    # Visited sets
    queued_key_concepts: List[str]
    processed_key_concepts: Annotated[List[str], ordered_union]
    queued_chunks: List[str]
    processed_chunks: Annotated[List[str], ordered_union]
    processed_atomic_facts: Annotated[List[str], ordered_union]

    # Accumulated evidence
    notebook: Annotated[List[NotebookEntry], append_notes]
    annotations: Annotated[str, join_annotations]
    status: Annotated[List[str], ordered_union]
    ontology: Annotated[List[str], ordered_union]
    tokens: Annotated[TokenUsage, add_tokens]

    next_step: NextStep


REDUCERS = {
    name: hint.__metadata__[0]
    for name, hint in get_type_hints(RetrievalState, include_extras=True).items()
    if hasattr(hint, "__metadata__")
}

# Queue -> processed set it must stay disjoint from
QUEUES = {
    "queued_key_concepts": "processed_key_concepts",
    "queued_chunks": "processed_chunks",
}


class StageOutput(NamedTuple):
    """What a stage hands back: a partial state update plus events to deliver."""
    update: Dict[str, Any]
    events: Sequence[Notification] = ()


def create_state(
    question: str,
    *,
    session_id: str = "",
    user_id: Optional[str] = None,
    interactive: bool = False,
    chat_history: Optional[List[ChatMessage]] = None,
    previous_analysis: str = "",
    limits: Optional[Dict[str, Any]] = None,
    preselected_chunks: Optional[List[str]] = None,
    next_step: NextStep = NextStep.RATIONAL_PLAN,
) -> RetrievalState:
    """Build the initial state for one question-answering session."""
    return {
        "session_id": session_id,
        "user_id": user_id,
        "interactive": interactive,
        "chat_history": list(chat_history or []),
        "previous_analysis": previous_analysis,
        "limits": dict(limits or {}),
        "question": question,
        "rational_plan": "",
        "hops": 0,
        "chunk_level": 0,
        "neighbouring_already_explored": False,
        "queued_key_concepts": [],
        "processed_key_concepts": [],
        "queued_chunks": ordered_union([], preselected_chunks),
        "processed_chunks": [],
        "processed_atomic_facts": [],
        "notebook": [],
        "annotations": "",
        "status": [],
        "ontology": [],
        "tokens": {"input": 0, "output": 0},
        "next_step": next_step,
    }


def settle_queues(state: RetrievalState, update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop already processed ids from the queues an update would leave behind.

    Keeps ``queued_* ∩ processed_* = ∅`` once the update is merged.
    """
    settled = dict(update)
    for queue, processed in QUEUES.items():
        done = set(ordered_union(state.get(processed), update.get(processed)))
        queued = update[queue] if queue in update else state.get(queue, [])
        remaining = [item for item in ordered_union([], queued) if item not in done]
        if queue in update or remaining != list(queued):
            settled[queue] = remaining
    return settled


def merge_state(state: RetrievalState, update: Dict[str, Any]) -> RetrievalState:
    """Return a new state with ``update`` folded in through the field reducers."""
    merged = dict(state)
    for key, value in update.items():
        reducer = REDUCERS.get(key)
        merged[key] = reducer(state.get(key), value) if reducer else value
    return merged


class ContextualiserResponse(TypedDict):
    question: str
    rational_plan: str
    annotations: str
    notebook: List[NotebookEntry]
    processed_elements: Dict[str, List[str]]
    ontology: List[str]
    status: List[str]
    hops: int
    tokens: TokenUsage


def build_response(state: RetrievalState) -> ContextualiserResponse:
    """Collect what the responder needs to write the final answer."""
    return {
        "question": state["question"],
        "rational_plan": state["rational_plan"],
        "annotations": state["annotations"],
        "notebook": list(state["notebook"]),
        "processed_elements": {
            "chunks": list(state["processed_chunks"]),
            "key_concepts": list(state["processed_key_concepts"]),
            "atomic_facts": list(state["processed_atomic_facts"]),
        },
        "ontology": list(state["ontology"]),
        "status": list(state["status"]),
        "hops": state["hops"],
        "tokens": dict(state["tokens"]),
    }
