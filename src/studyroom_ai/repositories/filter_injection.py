"""
Default Filter Injector.

Most questions implicitly mean "currently active" records. Instead of
trusting the generator to remember that every time, the injector adds
``<table-or-alias>.<status column> = 'active'`` to statements over tables
that carry a status column.

Contract:
- Only ever adds one predicate per status table; nothing else changes
- Idempotent: inject(inject(sql)) == inject(sql)
- Statements that already select non-active rows are left untouched
- Questions that explicitly ask for inactive/expired/all records are left untouched
- UNION/INTERSECT/EXCEPT statements are left untouched
"""

import re
from typing import Dict, List, Optional, Tuple

from ..utils.logging import get_module_logger
from ..utils.sql_text import mask_nested, top_level_clauses
from ..utils.tracing import current_trace_id

logger = get_module_logger()

# Question asks for non-active or all rows
_INACTIVE_INTENT_PATTERNS = [
    re.compile(r"\b(expired|inactive|suspended)\s+(students?|users?|members?)\b"),
    re.compile(r"\b(show|list|get)(?:\s+\w+)?\s+all\s+(students?|users?|records?)\b"),
    re.compile(r"\ball\s+(students?|users?|records?|members?)\b"),
    re.compile(r"\binclude\s+(inactive|expired|all)\b"),
]

# Statement already filters a status column to a non-active value
_INACTIVE_FILTER_PATTERNS = [
    re.compile(r"membership_status\s*=\s*'(expired|inactive|suspended)'", re.IGNORECASE),
    re.compile(r"membership_status\s+in\s*\([^)]*'(expired|inactive|suspended)'", re.IGNORECASE),
    re.compile(r"status\s*=\s*'(inactive|suspended)'", re.IGNORECASE),
]

# Words that can follow a table name but are not aliases
_NOT_ALIASES = {
    "where", "join", "inner", "left", "right", "full", "outer", "cross", "on",
    "group", "order", "having", "limit", "offset", "union", "intersect", "except",
    "using", "natural",
}

# Makes every table before it nullable
_NULLS_PRECEDING = re.compile(r"\b(?:right|full)\s+(?:outer\s+)?join\b", re.IGNORECASE)

_SET_OPERATION = re.compile(r"\b(?:union|intersect|except)\b", re.IGNORECASE)


def wants_inactive(question: str) -> bool:
    """True when the question explicitly overrides the active-only default."""
    lowered = question.lower()
    return any(pattern.search(lowered) for pattern in _INACTIVE_INTENT_PATTERNS)


def has_inactive_filter(sql: str) -> bool:
    return any(pattern.search(sql) for pattern in _INACTIVE_FILTER_PATTERNS)


def has_set_operation(sql: str) -> bool:
    """True for a top-level UNION/INTERSECT/EXCEPT; each branch has its own WHERE."""
    return bool(_SET_OPERATION.search(mask_nested(sql)))


def find_table_reference(sql: str, table: str) -> Optional[str]:
    """
    Alias (or name) of ``table`` in a top-level FROM/JOIN, or None.

    Tables on the nullable side of an outer join return None: a WHERE
    predicate on them would turn the outer join into an inner one. That is
    the joined table of a LEFT/FULL join, and every table before a
    RIGHT/FULL join.
    """
    masked = mask_nested(sql)
    pattern = re.compile(
        r"\b(?:(?P<outer>left|full)\s+(?:outer\s+)?join|join|from)\s+"
        rf"(?:\w+\.)?(?P<table>{re.escape(table)})\b"
        r"(?:\s+(?:as\s+)?(?P<alias>\w+))?",
        re.IGNORECASE,
    )
    for match in pattern.finditer(masked):
        if match.group("outer"):
            continue
        if _NULLS_PRECEDING.search(masked, match.end("table")):
            continue
        alias = match.group("alias")
        if alias and alias.lower() not in _NOT_ALIASES:
            return sql[match.start("alias"):match.end("alias")]
        return sql[match.start("table"):match.end("table")]
    return None


def has_active_filter(sql: str, ref: str, column: str) -> bool:
    pattern = re.compile(
        rf"(?:\b{re.escape(ref)}\.|(?<![\w.])){re.escape(column)}\s*=\s*'active'",
        re.IGNORECASE,
    )
    return bool(pattern.search(sql))


def add_predicate(sql: str, predicate: str) -> str:
    """
    Add ``predicate`` to the top-level WHERE clause.

    - Existing WHERE: ``WHERE <predicate> AND <condition>``; a condition with a
      top-level OR is parenthesised so the predicate binds to all of it
    - No WHERE: a new WHERE goes before the first GROUP BY/HAVING/ORDER BY/
      LIMIT/OFFSET, or at the end
    """
    clauses = top_level_clauses(sql)
    where = next(((start, end) for name, start, end in clauses if name == "where"), None)

    if where is not None:
        _, where_end = where
        following = [start for name, start, _ in clauses if start > where_end]
        cond_end = following[0] if following else len(sql)
        cond_start = where_end
        while cond_start < cond_end and sql[cond_start].isspace():
            cond_start += 1
        condition = sql[cond_start:cond_end].rstrip()
        trailing = sql[cond_start + len(condition):cond_end]

        if re.search(r"\bor\b", mask_nested(condition), re.IGNORECASE):
            condition = f"({condition})"
        return f"{sql[:cond_start]}{predicate} AND {condition}{trailing}{sql[cond_end:]}"

    if clauses:
        insert_at = clauses[0][1]
        return f"{sql[:insert_at].rstrip()} WHERE {predicate} {sql[insert_at:]}"

    return f"{sql.rstrip()} WHERE {predicate}"


class DefaultFilterInjector:
    """
    Applies the default active filter for each configured status table.

    Usage:
        injector = DefaultFilterInjector({"students": "membership_status", "users": "status"})
        sql = injector.inject("SELECT name FROM students ORDER BY name", "list students")
        # SELECT name FROM students WHERE students.membership_status = 'active' ORDER BY name
    """

    def __init__(self, status_columns: Dict[str, str]):
        self.status_columns = status_columns

    def inject(self, sql: str, question: str) -> str:
        trace_id = current_trace_id()

        if wants_inactive(question):
            logger.debug("Active filter skipped, question overrides default", trace_id=trace_id)
            return sql

        if has_inactive_filter(sql):
            logger.debug("Active filter skipped, statement filters inactive rows", trace_id=trace_id)
            return sql

        if has_set_operation(sql):
            logger.debug("Active filter skipped, statement combines several SELECTs", trace_id=trace_id)
            return sql

        result = sql
        injected: List[Tuple[str, str]] = []
        for table, column in self.status_columns.items():
            ref = find_table_reference(result, table)
            if ref is None or has_active_filter(result, ref, column):
                continue
            result = add_predicate(result, f"{ref}.{column} = 'active'")
            injected.append((table, column))

        if injected:
            logger.info(
                "Default active filter injected",
                tables=[table for table, _ in injected],
                trace_id=trace_id
            )
        return result
