from enum import Enum


class ProviderKind(str, Enum):
    """The closed set of text generation variants."""
    HOSTED_API = "hosted_api"
    LOCAL_INFERENCE = "local_inference"
    DETERMINISTIC = "deterministic"


class ProviderRole(str, Enum):
    """What a generation call is for; each role tracks its own active provider."""
    GENERATION = "generation"
    FORMATTING = "formatting"


class AIMode(str, Enum):
    """Modes accepted by the mode-switch operation."""
    EXTERNAL = "external"
    LOCAL = "local"
    DEMO = "demo"


class ErrorFamily(str, Enum):
    """Classification of an execution error for the correction loop."""
    SYNTAX = "syntax"
    CLAUSE_ORDER = "clause_order"
    UNKNOWN_IDENTIFIER = "unknown_identifier"
    UNKNOWN_FUNCTION = "unknown_function"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def correctable(self) -> bool:
        return self in (
            ErrorFamily.SYNTAX,
            ErrorFamily.CLAUSE_ORDER,
            ErrorFamily.UNKNOWN_IDENTIFIER,
            ErrorFamily.UNKNOWN_FUNCTION,
        )


class StatementStage(str, Enum):
    """Stages a generated statement passes through."""
    RAW = "raw"
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    FILTERED = "filtered"
    EXECUTED = "executed"
    CORRECTED = "corrected"


class QueryStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
