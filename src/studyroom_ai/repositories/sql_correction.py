"""
Syntax Correction Loop.

Executing -> (error) -> Correcting -> Executing -> ... -> Succeeded | Exhausted

Each failed execution is classified. Transient errors retry the same
statement; correctable errors get a corrected statement, either from a
text generator or from deterministic rewrites; anything else is fatal.
Every retry takes one unit from the request's shared RetryBudget.
"""

import re
from typing import Optional, Tuple

from ..domain.base_enums import ErrorFamily
from ..domain.errors import CorrectionExhausted, ExecutionError
from ..domain.generation import GenerationOptions
from ..domain.responses import ExecutionResult
from ..domain.retry import RetryBudget
from ..domain.schema import SchemaSnapshot
from ..domain.statement import GeneratedStatement
from ..utils.logging import get_module_logger
from ..utils.sql_text import CLAUSE_ORDER, split_clauses
from ..utils.tracing import current_trace_id
from .filter_injection import DefaultFilterInjector
from .prompt_builder import PromptBuilder
from .provider_orchestrator import ProviderOrchestrator
from .sql_execution import QueryExecutor
from .sql_validation import SafetyValidator, normalize_statement

logger = get_module_logger()

# Checked in order; the first family with a matching substring wins
_ERROR_FAMILIES = [
    (ErrorFamily.CLAUSE_ORDER, ('near "limit"', 'near "order"', 'near "group"', 'near "having"', 'near "offset"')),
    (ErrorFamily.SYNTAX, ("syntax error", "invalid input syntax", "unexpected token", "missing from")),
    (ErrorFamily.UNKNOWN_FUNCTION, ("function", )),
    (ErrorFamily.UNKNOWN_IDENTIFIER, ("column", "relation", "table", "operator")),
]

_TRANSIENT_MARKERS = ("connection", "timeout", "timed out", "network", "econnreset", "etimedout")

_MISSING_COLUMN = re.compile(r'column "([^"]+)" does not exist', re.IGNORECASE)

# Double-quoted text on the right of a comparison
_QUOTED_COMPARISON = re.compile(
    r'(?P<op><>|!=|<=|>=|=|<|>|\bi?like\b)\s*"(?P<value>[^"]*)"',
    re.IGNORECASE,
)

# Nonstandard date/null functions and their PostgreSQL equivalents
_FUNCTION_REWRITES = [
    (re.compile(r"\bMONTH\s*\(", re.IGNORECASE), "DATE_TRUNC('month', "),
    (re.compile(r"\bYEAR\s*\(", re.IGNORECASE), "DATE_TRUNC('year', "),
    (re.compile(r"\bNOW\s*\(\s*\)", re.IGNORECASE), "CURRENT_DATE"),
    (re.compile(r"\bGETDATE\s*\(\s*\)", re.IGNORECASE), "CURRENT_DATE"),
    (re.compile(r"\bCURDATE\s*\(\s*\)", re.IGNORECASE), "CURRENT_DATE"),
    (re.compile(r"\bIFNULL\s*\(", re.IGNORECASE), "COALESCE("),
]


def classify_error(error: Optional[str]) -> ErrorFamily:
    """
    Map a database error message to an ErrorFamily.

    Correctable families are checked first so an identifier that happens to
    contain a transient word ("connection_id") is still treated as unknown.
    A "does not exist" error is never transient.

    Example:
        >>> classify_error('syntax error at or near "LIMIT"')
        <ErrorFamily.CLAUSE_ORDER: 'clause_order'>
        >>> classify_error('column "connection_id" does not exist')
        <ErrorFamily.UNKNOWN_IDENTIFIER: 'unknown_identifier'>
    """
    text = (error or "").lower()
    missing = "does not exist" in text

    for family, markers in _ERROR_FAMILIES:
        if family in (ErrorFamily.UNKNOWN_FUNCTION, ErrorFamily.UNKNOWN_IDENTIFIER) and not missing:
            continue
        if any(marker in text for marker in markers):
            return family

    if not missing and any(marker in text for marker in _TRANSIENT_MARKERS):
        return ErrorFamily.TRANSIENT
    return ErrorFamily.FATAL


def reorder_clauses(sql: str) -> str:
    """Put top-level WHERE/GROUP BY/HAVING/ORDER BY/LIMIT/OFFSET in dialect order."""
    head, clauses = split_clauses(sql)
    if not clauses:
        return sql
    ordered = sorted(clauses, key=lambda clause: CLAUSE_ORDER.index(clause[0]))
    return " ".join([head] + [text for _, text in ordered])


def _quoted_values_to_literals(sql: str, error: str) -> str:
    """
    Turn ``"value"`` into ``'value'`` where PostgreSQL read a string as an identifier.

    Only double-quoted text right after a comparison operator is touched, and
    for a "column ... does not exist" error only the name the error reports.
    Quoted identifiers in the select list or FROM clause keep their quotes.
    """
    missing = _MISSING_COLUMN.search(error)
    name = missing.group(1) if missing else None

    def replace(match: "re.Match[str]") -> str:
        if name is not None and match.group("value") != name:
            return match.group(0)
        return f"{match.group('op')} '{match.group('value')}'"

    return _QUOTED_COMPARISON.sub(replace, sql)


def apply_rule_corrections(sql: str, error: str) -> str:
    """
    Deterministic rewrites for common dialect mistakes.

    Never adds or removes predicates; only moves clauses, normalizes quoting
    and replaces function names.
    """
    corrected = sql
    family = classify_error(error)
    lowered = error.lower()

    if family in (ErrorFamily.CLAUSE_ORDER, ErrorFamily.SYNTAX):
        corrected = reorder_clauses(corrected)

    if "invalid input syntax" in lowered or _MISSING_COLUMN.search(error):
        corrected = _quoted_values_to_literals(corrected, error)

    if family in (ErrorFamily.UNKNOWN_FUNCTION, ErrorFamily.SYNTAX):
        for pattern, replacement in _FUNCTION_REWRITES:
            corrected = pattern.sub(replacement, corrected)

    return re.sub(r"\s+", " ", corrected).strip()


class SyntaxCorrectionLoop:
    """
    Runs a statement to success or exhaustion.

    Usage:
        loop = SyntaxCorrectionLoop(executor, orchestrator, prompt_builder, validator, injector)
        result, statement = await loop.run(statement, question, budget)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        orchestrator: ProviderOrchestrator,
        prompt_builder: PromptBuilder,
        validator: SafetyValidator,
        injector: DefaultFilterInjector
    ):
        self.executor = executor
        self.orchestrator = orchestrator
        self.prompt_builder = prompt_builder
        self.validator = validator
        self.injector = injector

    async def run(
        self,
        statement: GeneratedStatement,
        question: str,
        budget: RetryBudget,
        snapshot: Optional[SchemaSnapshot] = None
    ) -> Tuple[ExecutionResult, GeneratedStatement]:
        """
        Execute, correcting on failure until success or the budget runs out.

        Raises:
            ExecutionError: Error is neither transient nor correctable
            CorrectionExhausted: Budget spent, or no correction could be produced
        """
        trace_id = current_trace_id()
        current = statement

        while True:
            result = await self.executor.execute(current.sql, question)
            if result.success:
                return result, current.executed()

            error = result.error or "unknown error"
            current = current.executed(error)
            family = classify_error(error)

            logger.info(
                "Execution failed",
                error_family=family.value,
                corrections=current.correction_count,
                budget_remaining=budget.remaining,
                trace_id=trace_id
            )

            if family == ErrorFamily.FATAL:
                raise ExecutionError(
                    "Query execution failed",
                    details={"error": error, "sql": result.sql, "family": family.value}
                )

            if not await budget.consume(f"{family.value}: {error[:80]}"):
                raise CorrectionExhausted(
                    "Query could not be corrected within the retry budget",
                    details={"error": error, "sql": result.sql, "family": family.value}
                )

            if family == ErrorFamily.TRANSIENT:
                continue

            corrected_sql = await self._correct(current.sql, error, question, snapshot)
            if corrected_sql is None:
                raise CorrectionExhausted(
                    "No valid correction could be produced",
                    details={"error": error, "sql": result.sql, "family": family.value}
                )

            logger.info(
                "Statement corrected",
                original=current.sql[:200],
                corrected=corrected_sql[:200],
                trace_id=trace_id
            )
            current = current.corrected(corrected_sql)

    async def _correct(
        self,
        sql: str,
        error: str,
        question: str,
        snapshot: Optional[SchemaSnapshot]
    ) -> Optional[str]:
        """A safe statement different from ``sql``, or None."""
        prompt = self.prompt_builder.build_correction_prompt(sql, error, snapshot)
        outcome = await self.orchestrator.try_generate(prompt, GenerationOptions.for_correction(question))
        if outcome is not None:
            candidate = self._accept(outcome.text, sql, question)
            if candidate is not None:
                return candidate
            logger.info("Generated correction rejected, using rewrite rules", provider=outcome.provider.value, trace_id=current_trace_id())

        return self._accept(apply_rule_corrections(sql, error), sql, question)

    def _accept(self, text: str, previous_sql: str, question: str) -> Optional[str]:
        if not self.validator.is_safe(text):
            return None
        candidate = self.injector.inject(normalize_statement(text), question)
        if candidate == previous_sql:
            return None
        return candidate
