"""
SQL Safety Validator.

Every generated statement passes through here before it is executed, and
again after every correction.

Validation Checks (in order):
1. Shape Check: text starts with SELECT and contains a FROM clause
2. Single Statement Check: no statement separator except one trailing ";",
   no SQL comments
3. Dangerous Keywords Check: no mutating or DDL verb as a whole identifier token

Security Philosophy:
- Reject outright; never rewrite an unsafe statement into a "safer" one
- Whole-token matching, so CURRENT_DATE or a column named create_date
  pass while a bare CREATE does not
- The database client's read-only transaction is the second layer

Usage:
    validator = SafetyValidator()
    steps = validator.check(generated_text)      # List[ValidationStep]
    sql = validator.validate(generated_text)     # raises UnsafeStatementError
"""

import re
from typing import List

from ..domain.errors import UnsafeStatementError
from ..domain.responses import ValidationStep
from ..domain.statement import strip_code_fences
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()

# Mutating and DDL verbs rejected as whole tokens
DANGEROUS_KEYWORDS = {
    "drop", "delete", "insert", "update", "alter", "truncate",
    "create", "grant", "revoke", "exec", "execute",
}

# Identifier-shaped tokens; current_date stays one token, so it never reads as "create"
_TOKEN_PATTERN = re.compile(r"[a-z_][a-z0-9_]*")
_FROM_PATTERN = re.compile(r"\bfrom\b", re.IGNORECASE)


def normalize_statement(text: str) -> str:
    """Strip code fences, surrounding whitespace and one trailing semicolon."""
    sql = strip_code_fences(text)
    if sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql


class SafetyValidator:
    """
    Static safety checks for generated SQL.

    Pure functions over text; no database access.
    """

    def check(self, text: str) -> List[ValidationStep]:
        """
        Run every check and return one ValidationStep per check.

        Checks run in order and stop at the first failure.
        """
        sql = normalize_statement(text)
        steps: List[ValidationStep] = []

        for check in (self._check_shape, self._check_single_statement, self._check_dangerous_keywords):
            step = check(sql)
            steps.append(step)
            if not step.passed:
                break
        return steps

    def is_safe(self, text: str) -> bool:
        return all(step.passed for step in self.check(text))

    def validate(self, text: str) -> str:
        """
        Return the normalized statement if it is a single safe SELECT.

        Raises:
            UnsafeStatementError: On the first failed check
        """
        steps = self.check(text)
        failed = next((step for step in steps if not step.passed), None)
        if failed is not None:
            logger.warning(
                "Generated statement rejected",
                check=failed.step_name,
                reason=failed.message,
                sql=(failed.sql_attempted or "")[:200],
                trace_id=current_trace_id()
            )
            raise UnsafeStatementError(
                failed.message,
                details={"check": failed.step_name}
            )
        return normalize_statement(text)

    def _check_shape(self, sql: str) -> ValidationStep:
        """Verify SQL is a SELECT ... FROM statement."""
        lowered = sql.lower()

        if not lowered.startswith("select"):
            return ValidationStep(
                step_name="shape_check",
                passed=False,
                message="Query must be a SELECT statement",
                sql_attempted=sql,
            )

        if not _FROM_PATTERN.search(lowered):
            return ValidationStep(
                step_name="shape_check",
                passed=False,
                message="Query must contain a FROM clause",
                sql_attempted=sql,
            )

        return ValidationStep(
            step_name="shape_check",
            passed=True,
            message="SELECT shape check passed",
            sql_attempted=sql,
        )

    def _check_single_statement(self, sql: str) -> ValidationStep:
        """Reject statement separators and comments."""
        if ";" in sql:
            return ValidationStep(
                step_name="single_statement_check",
                passed=False,
                message="Query must be a single statement",
                sql_attempted=sql,
            )

        if "--" in sql or "/*" in sql:
            return ValidationStep(
                step_name="single_statement_check",
                passed=False,
                message="Query must not contain SQL comments",
                sql_attempted=sql,
            )

        return ValidationStep(
            step_name="single_statement_check",
            passed=True,
            message="Single statement check passed",
            sql_attempted=sql,
        )

    def _check_dangerous_keywords(self, sql: str) -> ValidationStep:
        """Check for dangerous SQL keywords as whole tokens."""
        tokens = set(_TOKEN_PATTERN.findall(sql.lower()))
        found_keywords = sorted(tokens & DANGEROUS_KEYWORDS)

        if found_keywords:
            return ValidationStep(
                step_name="dangerous_keyword_check",
                passed=False,
                message=f"SQL contains dangerous keywords: {', '.join(k.upper() for k in found_keywords)}",
                sql_attempted=sql,
            )

        return ValidationStep(
            step_name="dangerous_keyword_check",
            passed=True,
            message="No dangerous keywords found",
            sql_attempted=sql,
        )
