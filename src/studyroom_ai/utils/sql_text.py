"""
Text helpers for locating top-level SQL clauses without a parser.

Generated statements are constrained to a single SELECT by the safety
validator, so clause keywords only need to be found outside string
literals and parentheses.
"""

import re
from typing import List, Optional, Tuple

# Clause keywords in the order PostgreSQL requires after FROM
CLAUSE_ORDER = ["where", "group by", "having", "order by", "limit", "offset"]

_CLAUSE_PATTERN = re.compile(r"\b(where|group\s+by|having|order\s+by|limit|offset)\b", re.IGNORECASE)


def mask_nested(sql: str) -> str:
    """
    Blank out string literals, quoted identifiers and parenthesised text.

    The result has the same length as the input, so match positions found
    in the mask are valid in the original text.

    Example:
        >>> mask_nested("SELECT (a) FROM t WHERE x = 'b c'")
        'SELECT     FROM t WHERE x =      '
    """
    out: List[str] = []
    depth = 0
    quote: Optional[str] = None
    for ch in sql:
        if quote:
            out.append(" ")
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(" ")
            continue
        if ch == "(":
            depth += 1
            out.append(" ")
            continue
        if ch == ")":
            depth = max(0, depth - 1)
            out.append(" ")
            continue
        out.append(" " if depth else ch)
    return "".join(out)


def top_level_clauses(sql: str) -> List[Tuple[str, int, int]]:
    """
    Top-level clause keywords as ``(name, start, end)``, in textual order.

    ``name`` is normalised to lowercase with single spaces ("order by").
    """
    masked = mask_nested(sql)
    return [
        (" ".join(match.group(1).lower().split()), match.start(), match.end())
        for match in _CLAUSE_PATTERN.finditer(masked)
    ]


def split_clauses(sql: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Split a statement into its head (SELECT ... FROM ...) and top-level clauses.

    Returns:
        (head, [(clause_name, clause_text_including_keyword), ...])
    """
    clauses = top_level_clauses(sql)
    if not clauses:
        return sql.strip(), []

    head = sql[:clauses[0][1]].strip()
    parts: List[Tuple[str, str]] = []
    for index, (name, start, _) in enumerate(clauses):
        end = clauses[index + 1][1] if index + 1 < len(clauses) else len(sql)
        parts.append((name, sql[start:end].strip()))
    return head, parts
