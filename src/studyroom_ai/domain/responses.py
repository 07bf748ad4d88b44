"""
Result and API response models for the AI chat service.

These models define the values passed between pipeline stages and the
structure of every outgoing API response.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .base_enums import ProviderKind
from .conversation import ConversationTurn


class ValidationStep(BaseModel):
    """Outcome of one safety check."""

    step_name: str = Field(..., description="Name of the check")
    passed: bool = Field(..., description="Whether the check passed")
    message: str = Field(..., description="Diagnostic message")
    sql_attempted: Optional[str] = Field(default=None, description="Statement that was checked")


class ExecutionResult(BaseModel):
    """
    Outcome of one statement execution.

    Normal SQL errors are carried in ``error`` rather than raised, so the
    correction loop can decide what to do with them.
    """

    success: bool = Field(..., description="Whether the statement ran")
    sql: str = Field(..., description="Statement actually sent to the database (row cap included)")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Result rows")
    column_names: List[str] = Field(default_factory=list, description="Column names in result set")
    row_count: int = Field(default=0, description="Number of rows returned")
    execution_time_ms: float = Field(default=0.0, description="Execution time in milliseconds")
    is_bulk: bool = Field(default=False, description="Whether the row cap was skipped as a bulk export")
    error: Optional[str] = Field(default=None, description="Database error text on failure")


class FormattedResult(BaseModel):
    """Presentation produced by the result formatter."""

    success: bool
    presentation: str
    provider: ProviderKind = ProviderKind.DETERMINISTIC


class AnswerMetadata(BaseModel):
    """Observability data attached to every chat answer."""

    sql: Optional[str] = Field(default=None, description="Final statement executed, if any")
    provider: Optional[ProviderKind] = Field(default=None, description="Provider that produced the statement")
    formatting_provider: Optional[ProviderKind] = Field(default=None, description="Provider that produced the presentation")
    execution_time_ms: Optional[float] = Field(default=None, description="Execution time of the final statement")
    retry_count: int = Field(default=0, description="Retry budget units consumed")
    row_count: Optional[int] = Field(default=None, description="Rows returned")
    correlation_id: str = Field(..., description="Trace id of the request")


class ChatAnswer(BaseModel):
    """Response of ``answer(question, user_id)``; failures are encoded, never raised."""

    success: bool
    presentation: str
    raw_rows: Optional[List[Dict[str, Any]]] = None
    metadata: AnswerMetadata


class FrequentQuery(BaseModel):
    """A row of the query frequency store, as shown in suggestions."""

    normalized_query: str
    readable_query: str
    example: str
    count: int
    first_used: Optional[datetime] = None
    last_used: Optional[datetime] = None


class SuggestionGroup(BaseModel):
    """A category of example questions."""

    category: str
    queries: List[str]
    is_frequent: bool = False
    is_contextual: bool = False


class SuggestionsResponse(BaseModel):
    suggestions: List[SuggestionGroup]


class HistoryResponse(BaseModel):
    user_id: str
    turns: List[ConversationTurn]
    count: int


class ClearHistoryResponse(BaseModel):
    user_id: str
    cleared: bool


class SchemaTableView(BaseModel):
    name: str
    columns: List[Dict[str, Any]]


class SchemaResponse(BaseModel):
    table_count: int
    tables: List[SchemaTableView]
    loaded_at: Optional[datetime] = None


class ProviderStatus(BaseModel):
    """Availability of one text generation variant."""

    kind: ProviderKind
    available: bool
    details: Dict[str, Any] = Field(default_factory=dict)


class AIStatusResponse(BaseModel):
    """Provider configuration and fallback state."""

    configuration: Dict[str, Any]
    primary: Optional[ProviderKind] = None
    fallback: Optional[ProviderKind] = None
    active_generation: ProviderKind
    active_formatting: ProviderKind
    providers: List[ProviderStatus]


class SwitchModeResponse(BaseModel):
    success: bool
    mode: str
    options: Dict[str, Any] = Field(default_factory=dict)
    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Health status", examples=["healthy", "degraded"])
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Application version")
    database_status: str = Field(..., description="Database connection status")
    generation_status: str = Field(..., description="Active generation provider")


class ErrorResponse(BaseModel):
    """Response model for error responses."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")
    trace_id: Optional[str] = Field(default=None, description="Trace ID for debugging")
    timestamp: datetime = Field(..., description="Error timestamp")
