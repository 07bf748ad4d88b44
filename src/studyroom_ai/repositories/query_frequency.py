"""
Query frequency analytics.

Questions are normalized so that "revenue for march" and "revenue for june"
count as the same query, then upserted into ``ai_query_frequency``. The
most used normalized queries feed the suggestions list.

Table (created by migration, not by this module):

    ai_query_frequency(
        id serial primary key,
        user_id text,
        normalized_query text,
        original_query_example text,
        frequency_count integer,
        first_used_at timestamptz,
        last_used_at timestamptz,
        unique (user_id, normalized_query)
    )
"""

import re
from typing import List, Protocol

from ..domain.responses import FrequentQuery
from ..infrastructure.database_client import DatabaseClient
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()

MAX_NORMALIZED_LENGTH = 100
MAX_EXAMPLE_LENGTH = 200

_NORMALIZATIONS = [
    (re.compile(r"\d+"), "X"),
    (re.compile(r"\b(january|february|march|april|may|june|july|august|september|october|november|december)\b"), "MONTH"),
    (re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"), "DAY"),
    (re.compile(r"\b(today|yesterday|tomorrow|this week|last week|this month|last month)\b"), "TIMEREF"),
]

# Placeholders are uppercase, so ordinary words like "month" are left alone
_READABLE = [
    (re.compile(r"\bX\b"), "[number]"),
    (re.compile(r"\bMONTH\b"), "[month]"),
    (re.compile(r"\bDAY\b"), "[day]"),
    (re.compile(r"\bTIMEREF\b"), "[time]"),
]

_UPSERT_QUERY = """
    INSERT INTO ai_query_frequency (
        user_id, normalized_query, original_query_example,
        frequency_count, first_used_at, last_used_at
    ) VALUES ($1, $2, $3, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT (user_id, normalized_query)
    DO UPDATE SET
        frequency_count = ai_query_frequency.frequency_count + 1,
        last_used_at = CURRENT_TIMESTAMP,
        original_query_example = CASE
            WHEN LENGTH($3) < LENGTH(ai_query_frequency.original_query_example) THEN $3
            ELSE ai_query_frequency.original_query_example
        END
    RETURNING frequency_count
"""

_TRIM_QUERY = """
    DELETE FROM ai_query_frequency
    WHERE user_id = $1
    AND id NOT IN (
        SELECT id FROM ai_query_frequency
        WHERE user_id = $1
        ORDER BY last_used_at DESC
        LIMIT $2
    )
"""

_TOP_N_QUERY = """
    SELECT normalized_query, original_query_example, frequency_count,
           first_used_at, last_used_at
    FROM ai_query_frequency
    WHERE user_id = $1
    ORDER BY frequency_count DESC, last_used_at DESC
    LIMIT $2
"""


def normalize_query(question: str) -> str:
    """
    Collapse a question to its intent for frequency counting.

    Example:
        >>> normalize_query("Revenue for March 2024")
        'revenue for MONTH X'
    """
    normalized = question.lower().strip()
    for pattern, placeholder in _NORMALIZATIONS:
        normalized = pattern.sub(placeholder, normalized)
    return normalized[:MAX_NORMALIZED_LENGTH]


def denormalize_query(normalized: str) -> str:
    readable = normalized
    for pattern, label in _READABLE:
        readable = pattern.sub(label, readable)
    return readable[:1].upper() + readable[1:]


class FrequencyStore(Protocol):
    async def upsert(self, user_id: str, normalized_query: str, example: str) -> int:
        ...

    async def top_n(self, user_id: str, n: int) -> List[FrequentQuery]:
        ...


class QueryFrequencyRepository:
    """
    Postgres-backed FrequencyStore.

    Usage:
        repo = QueryFrequencyRepository(db_client, retention=50)
        count = await repo.upsert(user_id, normalize_query(q), q)
        top = await repo.top_n(user_id, 5)
    """

    def __init__(self, db_client: DatabaseClient, retention: int = 50):
        self.db_client = db_client
        self.retention = retention

    async def upsert(self, user_id: str, normalized_query: str, example: str) -> int:
        """
        Count one use of ``normalized_query`` and trim the user's records.

        Returns:
            The updated use count
        """
        rows = await self.db_client.execute_query(
            _UPSERT_QUERY,
            params=[user_id, normalized_query, example[:MAX_EXAMPLE_LENGTH]],
            read_only=False,
        )
        await self.db_client.execute_command(_TRIM_QUERY, params=[user_id, self.retention])

        count = int(rows[0]["frequency_count"]) if rows else 1
        logger.info(
            "Query frequency tracked",
            normalized_query=normalized_query[:50],
            count=count,
            trace_id=current_trace_id()
        )
        return count

    async def top_n(self, user_id: str, n: int) -> List[FrequentQuery]:
        rows = await self.db_client.execute_query(_TOP_N_QUERY, params=[user_id, n], read_only=True)
        return [
            FrequentQuery(
                normalized_query=row["normalized_query"],
                readable_query=denormalize_query(row["normalized_query"]),
                example=row["original_query_example"],
                count=row["frequency_count"],
                first_used=row["first_used_at"],
                last_used=row["last_used_at"],
            )
            for row in rows
        ]
