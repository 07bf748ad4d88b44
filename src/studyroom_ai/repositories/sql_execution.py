"""
Query Executor.

Executes statements that have passed the safety validator against the
relational store.

Safety Features:
- Re-validation: the statement is checked again right before execution
- Read-only enforcement: every statement runs with read_only=True
- Timeout protection: configurable statement timeout
- Row cap: ``LIMIT <default_row_limit>`` is appended to non-bulk statements
  that have no explicit limit

Bulk operations (contact lists, SMS exports, "all" requests) are exempt
from the row cap because a truncated contact list is a wrong answer.

Error Handling:
- Database errors are returned in ExecutionResult.error, never raised;
  the correction loop decides what happens next
- UnsafeStatementError is raised: an unsafe statement must never reach here
"""

import re
from datetime import datetime, timezone
from typing import Optional

from ..domain.errors import DatabaseError
from ..domain.responses import ExecutionResult
from ..infrastructure.database_client import DatabaseClient
from ..utils.logging import get_module_logger
from ..utils.sql_text import mask_nested
from ..utils.tracing import current_trace_id
from .sql_validation import SafetyValidator

logger = get_module_logger()

# Communication/export intent, matched against the question and the statement
BULK_KEYWORDS = [
    "expired", "expire", "sms", "mobile", "contact_number", "phone",
    "membership_till < current_date", "membership_status = 'expired'",
    "for sms", "send sms", "bulk", "contact information", "get contact",
    "information", "details", "contact number",
]

_ALL_PATTERN = re.compile(r"\ball\b")

# Any row-limiting clause: LIMIT n, LIMIT ALL, LIMIT $1, FETCH FIRST|NEXT
_LIMIT_PATTERN = re.compile(r"\blimit\b|\bfetch\s+(?:first|next)\b", re.IGNORECASE)


def is_bulk_operation(sql: str, question: str = "") -> bool:
    """
    True when the question or statement signals a full export.

    Example:
        >>> is_bulk_operation("SELECT name FROM students", "send sms to expired students")
        True
        >>> is_bulk_operation("SELECT name FROM students ORDER BY random()", "show me 5 random students")
        False
    """
    lowered_sql = sql.lower()
    lowered_question = question.lower()
    if any(keyword in lowered_sql or keyword in lowered_question for keyword in BULK_KEYWORDS):
        return True
    return bool(_ALL_PATTERN.search(lowered_question))


def has_explicit_limit(sql: str) -> bool:
    return bool(_LIMIT_PATTERN.search(mask_nested(sql)))


class QueryExecutor:
    """
    Executes validated statements with read-only enforcement.

    Usage:
        executor = QueryExecutor(db_client, validator, default_row_limit=100)
        result = await executor.execute(sql, question="list students")
        if result.success:
            print(result.row_count, result.execution_time_ms)
        else:
            print(result.error)
    """

    def __init__(
        self,
        db_client: DatabaseClient,
        validator: Optional[SafetyValidator] = None,
        default_row_limit: int = 100,
        timeout_seconds: Optional[int] = None
    ):
        self.db_client = db_client
        self.validator = validator or SafetyValidator()
        self.default_row_limit = default_row_limit
        self.timeout_seconds = timeout_seconds

    def prepare(self, sql: str, question: str = "") -> ExecutionResult:
        """Validate and apply the row cap without executing."""
        statement = self.validator.validate(sql)
        bulk = is_bulk_operation(statement, question)
        if not bulk and not has_explicit_limit(statement):
            statement = f"{statement} LIMIT {self.default_row_limit}"
        return ExecutionResult(success=False, sql=statement, is_bulk=bulk)

    async def execute(self, sql: str, question: str = "") -> ExecutionResult:
        """
        Execute a statement and report rows or the database error.

        Raises:
            UnsafeStatementError: If the statement fails re-validation
        """
        trace_id = current_trace_id()
        prepared = self.prepare(sql, question)
        statement = prepared.sql

        logger.info(
            "Executing SQL query",
            sql=statement[:200],
            is_bulk=prepared.is_bulk,
            trace_id=trace_id,
        )

        start_time = datetime.now(timezone.utc)
        try:
            rows = await self.db_client.execute_query(
                query=statement,
                timeout=self.timeout_seconds,
                read_only=True,
            )
        except DatabaseError as e:
            execution_time_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            logger.warning(
                "SQL execution failed",
                error=e.message,
                error_code=e.error_code,
                sql=statement[:200],
                trace_id=trace_id,
            )
            return ExecutionResult(
                success=False,
                sql=statement,
                is_bulk=prepared.is_bulk,
                execution_time_ms=execution_time_ms,
                error=e.message,
            )

        execution_time_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        column_names = list(rows[0].keys()) if rows else []

        logger.info(
            "SQL execution successful",
            row_count=len(rows),
            execution_time_ms=round(execution_time_ms, 2),
            trace_id=trace_id,
        )

        return ExecutionResult(
            success=True,
            sql=statement,
            rows=rows,
            column_names=column_names,
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
            is_bulk=prepared.is_bulk,
        )
