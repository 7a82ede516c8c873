"""
Tools for the contextualiser to interact with external services.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Generic, Iterable, List, Optional, Protocol, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from knowledge_base.models import AtomicFactRepository, ChunkRepository, ConceptRepository

from .config import LLM_MODEL, LLM_TEMPERATURE, LLM_TIMEOUT, OLLAMA_BASE_URL
from .state import TokenUsage

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)
T = TypeVar("T")


class ScorerError(RuntimeError):
    """A scoring call failed or returned output that never validated."""


class ScorerUnavailableError(ScorerError):
    """Every scoring call of a fan-out failed."""


@dataclass(frozen=True)
class ScorerResult(Generic[OutputT]):
    output: OutputT
    token_usage: TokenUsage


class Scorer(Protocol):
    async def call(
        self,
        input_params: Dict[str, Any],
        output_schema: Type[OutputT],
        system_prompt: str,
        temperature: float = LLM_TEMPERATURE,
    ) -> ScorerResult[OutputT]:
        ...


class OllamaScorer:
    """Structured LLM calls against Ollama's chat API."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = LLM_MODEL,
        timeout: float = LLM_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type((httpx.HTTPError, ValidationError)),
        reraise=True,
    )
    async def _chat(
        self, messages: List[Dict[str, str]], output_schema: Type[OutputT], temperature: float
    ) -> Tuple[OutputT, TokenUsage]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": messages,
                    "format": output_schema.model_json_schema(),
                    "options": {"temperature": temperature},
                    "stream": False,
                },
            )
            response.raise_for_status()
            data = response.json()

        output = output_schema.model_validate_json(data["message"]["content"])
        usage: TokenUsage = {
            "input": data.get("prompt_eval_count", 0),
            "output": data.get("eval_count", 0),
        }
        return output, usage

    async def call(
        self,
        input_params: Dict[str, Any],
        output_schema: Type[OutputT],
        system_prompt: str,
        temperature: float = LLM_TEMPERATURE,
    ) -> ScorerResult[OutputT]:
        """Call the model and return the validated output with its token usage."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(input_params, ensure_ascii=False)},
        ]
        try:
            output, usage = await self._chat(messages, output_schema, temperature)
        # Covers malformed bodies: JSONDecodeError and ValidationError are ValueErrors
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise ScorerError(f"{output_schema.__name__} call failed: {e}") from e
        return ScorerResult(output=output, token_usage=usage)


@dataclass(frozen=True)
class Toolkit:
    """External collaborators handed to every stage."""
    scorer: Scorer
    concepts: ConceptRepository
    atomic_facts: AtomicFactRepository
    chunks: ChunkRepository


def _raise_if_all_failed(stage: str, total: int, failures: List[BaseException]) -> None:
    if total and len(failures) == total:
        raise ScorerUnavailableError(f"{stage}: all {total} scoring calls failed") from failures[0]


async def score_all(stage: str, calls: Iterable[Awaitable[T]]) -> List[T]:
    """
    Run scoring calls concurrently and return the successful results in
    submission order.

    A failed call is logged and dropped so one bad candidate cannot sink the
    batch. If every call fails the collaborator is considered down.
    """
    calls = list(calls)
    results = await asyncio.gather(*calls, return_exceptions=True)
    succeeded: List[T] = []
    failures: List[BaseException] = []
    for result in results:
        if isinstance(result, (ScorerError, asyncio.TimeoutError)):
            logger.warning(f"[{stage}] Scoring call failed: {result}")
            failures.append(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            succeeded.append(result)
    _raise_if_all_failed(stage, len(calls), failures)
    return succeeded


async def score_as_completed(stage: str, calls: Iterable[Awaitable[T]]) -> List[T]:
    """Same as ``score_all`` but results come back in completion order."""
    calls = list(calls)
    succeeded: List[T] = []
    failures: List[BaseException] = []
    for next_done in asyncio.as_completed(calls):
        try:
            succeeded.append(await next_done)
        except (ScorerError, asyncio.TimeoutError) as e:
            logger.warning(f"[{stage}] Scoring call failed: {e}")
            failures.append(e)
    _raise_if_all_failed(stage, len(calls), failures)
    return succeeded
