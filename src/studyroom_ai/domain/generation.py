"""
Text generation capability shared by every provider variant.

The pipeline only ever sees ``TextGenerator``; the hosted API, local
inference and deterministic variants live in
``repositories.text_generators``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from .base_enums import ProviderKind


class GenerationOptions(BaseModel):
    """Per-call sampling options plus the question being answered."""

    max_tokens: int = Field(default=512, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)

    # Original question; the deterministic generator matches on it
    question: str = ""

    @classmethod
    def for_sql(cls, question: str) -> "GenerationOptions":
        return cls(max_tokens=512, temperature=0.1, question=question)

    @classmethod
    def for_formatting(cls, question: str) -> "GenerationOptions":
        return cls(max_tokens=1024, temperature=0.3, question=question)

    @classmethod
    def for_correction(cls, question: str) -> "GenerationOptions":
        return cls(max_tokens=256, temperature=0.1, question=question)


class TextGenerator(ABC):
    """
    ``generate(prompt, options) -> text``.

    Implementations raise ``ProviderError`` on any failure; the orchestrator
    turns that into a fallback step.
    """

    kind: ProviderKind

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        ...

    @abstractmethod
    async def check_available(self) -> bool:
        """Cheap readiness probe used before a mode switch commits."""

    def describe(self) -> Dict[str, Any]:
        """Configuration summary for the status endpoint."""
        return {"kind": self.kind.value}

    async def close(self) -> None:
        return None


class GenerationOutcome(BaseModel):
    """Text returned by the orchestrator and who produced it."""

    text: str
    provider: ProviderKind
    attempted: List[ProviderKind] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)
