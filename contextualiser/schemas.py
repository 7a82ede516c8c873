"""
Structured outputs expected from the scoring model.

The JSON schema of each model is sent as the response format, and the reply
is validated against it before a stage ever sees it.
"""
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator

STATUS_DESCRIPTION = (
    "A short, friendly message (max 40 characters) about your action, avoiding "
    "technical terms such as 'nodes', 'atomic facts' or 'key concepts'."
)


class RefinedQuestion(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    response: str = Field(
        description="A single question capturing the user's current intent, ending with '?'."
    )

    @field_validator("response")
    @classmethod
    def must_be_a_question(cls, value: str) -> str:
        value = value.strip()
        if not value or not value.endswith("?"):
            raise ValueError("response must be a non-empty question")
        return value


class RationalPlan(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    rational_plan: str = Field(
        description="Step-by-step plan to gather the information needed to answer the question."
    )


class ScoredKeyConcept(BaseModel):
    key_concept: str = Field(description="Name of a key concept taken from the provided list.")
    score: float = Field(ge=0, le=100, description="Relevance to the answer, from 0 to 100.")
    is_used_as_source: bool = Field(
        default=False,
        description="True when the concept metadata will be used as a source for the answer.",
    )


class KeyConceptScores(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    key_concepts: List[ScoredKeyConcept] = Field(default_factory=list)


class AtomicFactReview(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    annotations: str = Field(
        default="",
        description="New insights about the question drawn from the facts, written as notes.",
    )
    chunks_to_analyse: List[str] = Field(
        default_factory=list,
        description="Chunk ids, taken from the facts, whose text should be read.",
    )


class Note(BaseModel):
    content: str = Field(default="", description="Insights about the question from the text.")
    reason: str = Field(default="", description="How the text is relevant to the question.")


class ChunkAction(str, Enum):
    QUEUE_PREVIOUS_CHUNK = "queuePreviousChunk"
    QUEUE_NEXT_CHUNK = "queueNextChunk"
    READ_NEIGHBOURING_NODES = "readNeighbouringNodes"
    ANSWER = "answer"
    SKIP = "skip"


class ChunkReview(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    note: Note = Field(default_factory=Note)
    chosen_action: ChunkAction = Field(description="The next action to take.")


class ChunkVectorReview(BaseModel):
    status: str = Field(description=STATUS_DESCRIPTION)
    note: Note = Field(default_factory=Note)
