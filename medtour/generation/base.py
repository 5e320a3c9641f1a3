"""
Generator contract shared by the text and image generators.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from medtour.queue.models import Job


class GenerationError(Exception):
    """
    A generator failed to produce a usable result.

    retryable=False sends the job straight to the dead-letter set instead of
    spending its remaining attempts.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PermanentGenerationError(GenerationError):
    """Failure that retrying cannot fix: bad payload, missing source record, missing credentials."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


@dataclass
class GenerationUsage:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "GenerationUsage") -> "GenerationUsage":
        return GenerationUsage(
            model=self.model,
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


@dataclass
class GenerationResult:
    """Result from a generator. `data` shape depends on the job type."""
    data: Dict[str, Any]
    usage: GenerationUsage
    elapsed_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage": self.usage.to_dict(),
            "elapsed_ms": self.elapsed_ms,
            **self.metadata,
        }


class Generator(Protocol):

    async def generate(self, job: Job) -> GenerationResult:
        ...


def usage_from_response(response: Any, model: str) -> GenerationUsage:
    """Token usage from a langchain chat response, zeros when the provider omits it."""
    usage: Optional[Dict[str, Any]] = getattr(response, "usage_metadata", None)
    if not usage:
        return GenerationUsage(model=model)
    return GenerationUsage(
        model=model,
        input_tokens=int(usage.get("input_tokens", 0)),
        output_tokens=int(usage.get("output_tokens", 0)),
    )
