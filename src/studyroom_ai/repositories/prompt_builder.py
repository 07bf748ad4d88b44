"""
Prompt construction for SQL generation, correction and result formatting.

All prompts are pure functions of their inputs: the same schema, history
and question always yield the same text.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from ..domain.conversation import ConversationTurn
from ..domain.schema import SchemaSnapshot
from ..utils.token_utils import truncate_text


# Turns embedded in a SQL generation prompt
MAX_HISTORY_TURNS = 10

# Turns embedded in a formatting prompt
MAX_FORMATTING_TURNS = 3

# Rows serialized into a formatting prompt
MAX_FORMATTING_ROWS = 10


DIALECT_RULES = """CRITICAL SQL SYNTAX REQUIREMENTS:
- Use proper PostgreSQL syntax and functions
- Always validate clause ordering: SELECT -> FROM -> WHERE -> GROUP BY -> HAVING -> ORDER BY -> LIMIT
- Use DATE_TRUNC() for date operations, not MONTH() or YEAR()
- Use CURRENT_DATE instead of NOW() for date comparisons
- Ensure balanced parentheses in all expressions
- Use single quotes for string literals, not double quotes
- Always use proper JOIN syntax when accessing multiple tables
- Be careful with NULL values and use appropriate handling
- For bulk operations (SMS, contact lists, expired students), DO NOT add a LIMIT clause
- Use meaningful column aliases for better presentation"""

SPECIAL_CASES = """Special Cases:
- If the query mentions "expired students" with "SMS", "mobile", "contact", "information", "details" or "all", return ALL results without LIMIT
- If the query is for communication purposes, include contact_number and ensure it is not NULL
- For expired students use "(membership_status IN ('expired', 'inactive') OR (membership_status = 'active' AND membership_till < CURRENT_DATE))\""""

CONTEXT_RULES = """Context Awareness:
- Consider the conversation history when interpreting the current query
- If the user refers to "them", "those" or "previous results", use context from recent queries
- If the user asks for "more details" or "show more", expand on the previous query"""


def render_filter_policy(status_columns: Dict[str, str]) -> str:
    """Describe the default active filter so the generator leaves it to post-processing."""
    lines = ["Default Active Filters (applied automatically after generation):"]
    for table, column in status_columns.items():
        lines.append(
            f"- '{table}' rows are restricted to {column} = 'active' UNLESS the question explicitly asks "
            f"for expired, inactive or suspended {table}, or for \"all {table}\""
        )
    lines.append("- Do NOT add these active conditions yourself")
    lines.append("- Only write explicit status conditions when the user asks for inactive/expired records")
    return "\n".join(lines)


def render_history(turns: Sequence[ConversationTurn], limit: int = MAX_HISTORY_TURNS) -> str:
    """
    Render the most recent turns as question -> SQL -> truncated result.

    Example:
        1. User: "How many students?"
           SQL: SELECT COUNT(*) FROM students
           Result: 📊 **Student Overview**...
    """
    if not turns:
        return ""
    lines = ["Conversation History (for context):"]
    for index, turn in enumerate(list(turns)[-limit:], start=1):
        lines.append(f'{index}. User: "{turn.user_query}"')
        if turn.generated_sql:
            lines.append(f"   SQL: {turn.generated_sql}")
        lines.append(f"   Result: {truncate_text(turn.response_summary, 100, suffix='...')}")
    return "\n".join(lines)


class PromptBuilder:
    """
    Builds every prompt the pipeline sends to a text generator.

    Usage:
        builder = PromptBuilder(status_columns={"students": "membership_status"})
        prompt = builder.build_sql_prompt(question, snapshot, history)
    """

    def __init__(self, status_columns: Optional[Dict[str, str]] = None):
        self.status_columns = status_columns or {}

    def build_sql_prompt(
        self,
        question: str,
        snapshot: SchemaSnapshot,
        history: Sequence[ConversationTurn] = ()
    ) -> str:
        sections = [
            "You are a SQL expert for a study room management system. "
            "Convert the following natural language query to a PostgreSQL query.",
            f"Database Schema:\n{snapshot.describe()}",
            DIALECT_RULES,
            render_filter_policy(self.status_columns),
            SPECIAL_CASES,
            CONTEXT_RULES,
        ]
        rendered_history = render_history(history)
        if rendered_history:
            sections.append(rendered_history)
        sections.append(f'Current Query: "{question}"')
        sections.append(
            "Return ONLY the SQL query without any explanation or markdown formatting. "
            "Ensure it follows all PostgreSQL syntax rules."
        )
        return "\n\n".join(sections)

    def build_strict_prompt(
        self,
        question: str,
        snapshot: SchemaSnapshot,
        history: Sequence[ConversationTurn] = (),
        rejected_sql: Optional[str] = None
    ) -> str:
        """Regeneration prompt used after the safety validator rejected a statement."""
        base = self.build_sql_prompt(question, snapshot, history)
        rejection = ""
        if rejected_sql:
            rejection = f"\n\nThe previous answer was rejected as unsafe:\n{rejected_sql}"
        return (
            f"{base}{rejection}\n\n"
            "STRICT OUTPUT RULES:\n"
            "- Output exactly one read-only SELECT statement\n"
            "- No semicolons, no comments, no DROP/DELETE/INSERT/UPDATE/ALTER/TRUNCATE/CREATE\n"
            "- No prose before or after the statement"
        )

    def build_correction_prompt(self, sql: str, error: str, snapshot: Optional[SchemaSnapshot] = None) -> str:
        schema_section = f"\n\nDatabase Schema:\n{snapshot.describe()}" if snapshot else ""
        return (
            "You are a PostgreSQL expert. Fix the SQL error in the following query.\n\n"
            f"Original SQL Query:\n{sql}\n\n"
            f"Error Message:\n{error}"
            f"{schema_section}\n\n"
            "Common PostgreSQL syntax rules:\n"
            "- Use DATE_TRUNC for date operations\n"
            "- INTERVAL syntax: INTERVAL '1 month'\n"
            "- Single quotes for strings, double quotes for identifiers\n"
            "- LIMIT clause must come after ORDER BY\n"
            "- Column names must exist in tables\n\n"
            "Provide ONLY the corrected SQL query. It must keep the original intent "
            "and be a single valid SELECT statement."
        )

    def build_formatting_prompt(
        self,
        question: str,
        rows: List[Dict[str, Any]],
        history: Sequence[ConversationTurn] = ()
    ) -> str:
        sample = json.dumps(rows[:MAX_FORMATTING_ROWS], indent=2, default=str)
        more = ""
        if len(rows) > MAX_FORMATTING_ROWS:
            more = f"\n... and {len(rows) - MAX_FORMATTING_ROWS} more rows"

        context = ""
        recent = list(history)[-MAX_FORMATTING_TURNS:]
        if recent:
            lines = ["Conversation Context:"]
            for index, turn in enumerate(recent, start=1):
                lines.append(f'{index}. Previous Query: "{turn.user_query}"')
                lines.append(f"   Previous Result: {truncate_text(turn.response_summary, 150, suffix='...')}")
            context = "\n\n" + "\n".join(lines)

        return (
            "You are a data analyst for a study room management system. "
            "Format the following query results in a clear, professional manner.\n\n"
            f'Original Question: "{question}"\n\n'
            f"Query Results ({len(rows)} rows):\n{sample}{more}\n\n"
            "FORMATTING RULES:\n"
            "- Start with a one-line summary that answers the question\n"
            "- Use markdown tables for tabular data\n"
            "- Format dates as readable text (e.g. \"Oct 4, 2025\")\n"
            "- Format amounts with thousand separators"
            f"{context}\n\n"
            "Return ONLY the formatted response."
        )
