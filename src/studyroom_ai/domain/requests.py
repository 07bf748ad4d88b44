"""
API request models for the AI chat service.

All fields include descriptions that appear in Swagger/OpenAPI documentation.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .base_enums import AIMode


class ChatQueryRequest(BaseModel):
    """Request model for a natural language question."""

    query: str = Field(
        ...,
        description="Question about students, payments, seats or expenses. "
                    "Example: 'How many active students do we have?'",
        min_length=1,
        max_length=2000,
    )


class SwitchModeRequest(BaseModel):
    """Request model for switching the primary text generation provider."""

    mode: AIMode = Field(..., description="external, local or demo")
    provider: Optional[str] = Field(
        default=None,
        description="Hosted provider for mode=external (openai, perplexity, openrouter)",
    )
    backend: Optional[str] = Field(
        default=None,
        description="Local backend for mode=local (ollama, llamacpp, gpt4all, lmstudio)",
    )
    model: Optional[str] = Field(default=None, description="Model override for the chosen provider")
