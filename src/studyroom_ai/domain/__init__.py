"""
Domain package for the AI chat service.

This package contains the domain models, value objects and the
text generation interface used throughout the application.
"""

from .base_enums import (
    AIMode,
    ErrorFamily,
    ProviderKind,
    ProviderRole,
    QueryStatus,
    StatementStage,
)
from .schema import ColumnSchema, ForeignKeyRef, SchemaSnapshot, TableSchema
from .conversation import ConversationTurn
from .statement import GeneratedStatement, strip_code_fences
from .generation import GenerationOptions, GenerationOutcome, TextGenerator
from .requests import ChatQueryRequest, SwitchModeRequest
from .responses import (
    AIStatusResponse,
    AnswerMetadata,
    ChatAnswer,
    ErrorResponse,
    ExecutionResult,
    FormattedResult,
    FrequentQuery,
    HealthResponse,
    ProviderStatus,
    SuggestionGroup,
    ValidationStep,
)

__all__ = [
    # Enums
    "AIMode",
    "ErrorFamily",
    "ProviderKind",
    "ProviderRole",
    "QueryStatus",
    "StatementStage",

    # Schema
    "ColumnSchema",
    "ForeignKeyRef",
    "SchemaSnapshot",
    "TableSchema",

    # Pipeline values
    "ConversationTurn",
    "GeneratedStatement",
    "strip_code_fences",
    "GenerationOptions",
    "GenerationOutcome",
    "TextGenerator",

    # Requests
    "ChatQueryRequest",
    "SwitchModeRequest",

    # Responses
    "AIStatusResponse",
    "AnswerMetadata",
    "ChatAnswer",
    "ErrorResponse",
    "ExecutionResult",
    "FormattedResult",
    "FrequentQuery",
    "HealthResponse",
    "ProviderStatus",
    "SuggestionGroup",
    "ValidationStep",
]
