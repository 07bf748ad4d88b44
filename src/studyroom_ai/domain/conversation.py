"""
Conversation memory models.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConversationTurn(BaseModel):
    """
    One question/answer exchange kept as context for later prompts.

    ``timestamp`` is read from the store's injected clock and drives expiry;
    ``created_at`` is wall time for display only.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(..., description="Clock reading when the turn was recorded")
    user_query: str = Field(..., description="Question as asked")
    response_summary: str = Field(..., description="Presentation text, truncated")
    generated_sql: Optional[str] = Field(default=None, description="Statement that was executed, if any")
    succeeded: bool = Field(..., description="Whether the answer was successful")
    correlation_id: str = Field(..., description="Trace id of the request that produced the turn")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
