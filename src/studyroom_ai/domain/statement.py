"""
GeneratedStatement: provider output annotated as it moves through the pipeline.

Every stage returns a new instance (``model_copy``); no stage edits the
value produced by an earlier one.
"""

import re
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .base_enums import ProviderKind, StatementStage

# ```sql ... ``` or ``` ... ``` anywhere in the text
_FENCE_PATTERN = re.compile(r"```[ \t]*(?:sql|postgresql|postgres)?[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL | re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """
    Remove markdown code-fence markup around generated SQL.

    When a fenced block is present its body is the statement; otherwise the
    text is returned trimmed, prose included, and left to the validator.

    Example:
        >>> strip_code_fences("```sql\\nSELECT 1 FROM t\\n```")
        'SELECT 1 FROM t'
    """
    cleaned = (text or "").strip()
    match = _FENCE_PATTERN.search(cleaned)
    if match:
        return match.group(1).strip()

    # Unterminated fence
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[ \t]*(?:sql|postgresql|postgres)?", "", cleaned, flags=re.IGNORECASE)
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


class GeneratedStatement(BaseModel):
    """
    A statement and the annotations added by each pipeline stage.

    Attributes:
        raw_text: Provider output before extraction
        sql: Statement text as of the latest stage
        stage: Latest stage reached
        provider: Provider that produced the raw text
        is_safe: Safety verdict once validated
        original_sql: Statement before the default filter was injected
        filter_injected: Whether the injector changed the statement
        execution_error: Error text of the latest failed execution
        corrections: Statements replaced by the correction loop, oldest first
    """

    model_config = ConfigDict(frozen=True)

    raw_text: str
    sql: str
    stage: StatementStage = StatementStage.RAW
    provider: ProviderKind = ProviderKind.DETERMINISTIC
    is_safe: Optional[bool] = None
    original_sql: Optional[str] = None
    filter_injected: bool = False
    execution_error: Optional[str] = None
    corrections: Tuple[str, ...] = Field(default_factory=tuple)

    @classmethod
    def from_provider(cls, raw_text: str, provider: ProviderKind) -> "GeneratedStatement":
        return cls(raw_text=raw_text, sql=raw_text, provider=provider)

    def extracted(self) -> "GeneratedStatement":
        return self.model_copy(update={
            "sql": strip_code_fences(self.raw_text),
            "stage": StatementStage.EXTRACTED,
        })

    def validated(self, is_safe: bool, normalized_sql: Optional[str] = None) -> "GeneratedStatement":
        update = {"is_safe": is_safe, "stage": StatementStage.VALIDATED}
        if normalized_sql is not None:
            update["sql"] = normalized_sql
        return self.model_copy(update=update)

    def filtered(self, filtered_sql: str) -> "GeneratedStatement":
        return self.model_copy(update={
            "original_sql": self.sql,
            "sql": filtered_sql,
            "filter_injected": filtered_sql != self.sql,
            "stage": StatementStage.FILTERED,
        })

    def executed(self, error: Optional[str] = None) -> "GeneratedStatement":
        return self.model_copy(update={"execution_error": error, "stage": StatementStage.EXECUTED})

    def corrected(self, corrected_sql: str) -> "GeneratedStatement":
        return self.model_copy(update={
            "sql": corrected_sql,
            "corrections": self.corrections + (self.sql,),
            "execution_error": None,
            "stage": StatementStage.CORRECTED,
        })

    @property
    def correction_count(self) -> int:
        return len(self.corrections)
