"""
Result Formatter.

Turns an ExecutionResult into the presentation string shown to the user.

- Failure: fixed message plus likely causes matched on the error text
- Zero rows: fixed "no results" message, no generation call
- Rows: generation-based formatting through the provider chain, with a
  templated summary keyed on the result shape as the floor
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..domain.base_enums import ProviderRole
from ..domain.conversation import ConversationTurn
from ..domain.generation import GenerationOptions
from ..domain.responses import ExecutionResult, FormattedResult
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from .prompt_builder import PromptBuilder
from .provider_orchestrator import ProviderOrchestrator

logger = get_module_logger()

Row = Dict[str, Any]

NO_RESULTS_MESSAGE = (
    "📊 **No Results Found**\n\n"
    "Your query executed successfully but returned no data. This might mean:\n"
    "- The criteria didn't match any records\n"
    "- The table is empty\n"
    "- The date range or filters were too restrictive"
)

_DEFAULT_GUIDANCE = "Please try rephrasing your question or be more specific about the data you want."

# (required substrings, guidance); first full match wins
_ERROR_GUIDANCE = [
    (("column", "does not exist"),
     "A column name was not found. Please check:\n"
     "- Column names are spelled correctly\n"
     "- You're referring to the right table"),
    (("relation", "does not exist"),
     "Table not found. Available tables include:\n"
     "- students (membership info)\n"
     "- payments (payment records)\n"
     "- seats (seating arrangements)\n"
     "- expenses (expense tracking)"),
    (("table", "does not exist"),
     "Table not found. Available tables include:\n"
     "- students (membership info)\n"
     "- payments (payment records)\n"
     "- seats (seating arrangements)\n"
     "- expenses (expense tracking)"),
    (("function", "does not exist"),
     "Database function error. Try asking with:\n"
     "- Plain date ranges (\"this month\", \"last 6 months\")\n"
     "- Standard totals and counts"),
    (("syntax error", ),
     "There was a SQL syntax error and automatic correction did not succeed. Please try:\n"
     "- Rephrasing your question in simpler terms\n"
     "- Being more specific about what data you want"),
]


def error_guidance(error: Optional[str]) -> str:
    """Likely causes for an execution error, chosen by substring matching."""
    text = (error or "").lower()
    for needles, guidance in _ERROR_GUIDANCE:
        if all(needle in text for needle in needles):
            return guidance
    return _DEFAULT_GUIDANCE


def failure_message(error: Optional[str], correlation_id: str, headline: str = "I couldn't run a query for that question.") -> str:
    return (
        f"❌ **Query Error**\n\n{headline}\n\n"
        f"{error_guidance(error)}\n\n"
        f"*Reference: {correlation_id}*"
    )


def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _number(value: Any, decimals: int = 0) -> str:
    if value is None:
        return "0"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    return f"{number:,.{decimals}f}"


def _json_sample(rows: List[Row], row_count: int) -> str:
    if len(rows) <= 5:
        body = json.dumps(rows, indent=2, default=str)
        return f"📊 **Query Results** ({row_count} rows)\n\n```\n{body}\n```"
    body = json.dumps(rows[:3], indent=2, default=str)
    return (
        f"📊 **Query Results** ({row_count} rows)\n\n"
        f"**Sample Results:**\n```\n{body}\n```\n"
        f"*... and {len(rows) - 3} more rows*"
    )


def _markdown_table(rows: List[Row], columns: List[tuple]) -> str:
    header = "| " + " | ".join(title for title, _ in columns) + " |"
    divider = "|" + "|".join("---" for _ in columns) + "|"
    body = ["| " + " | ".join(render(row) for _, render in columns) + " |" for row in rows]
    return "\n".join([header, divider] + body)


class ResultFormatter:
    """
    Produces presentation strings for execution results.

    Usage:
        formatter = ResultFormatter(orchestrator, prompt_builder)
        formatted = await formatter.format(question, execution_result, history)
        formatted.presentation, formatted.provider
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        prompt_builder: PromptBuilder,
        today: Callable[[], date] = date.today
    ):
        self.orchestrator = orchestrator
        self.prompt_builder = prompt_builder
        self.today = today

    async def format(
        self,
        question: str,
        result: ExecutionResult,
        history: Sequence[ConversationTurn] = (),
        correlation_id: str = ""
    ) -> FormattedResult:
        if not result.success:
            return FormattedResult(success=False, presentation=failure_message(result.error, correlation_id))

        if not result.rows:
            return FormattedResult(success=True, presentation=NO_RESULTS_MESSAGE)

        prompt = self.prompt_builder.build_formatting_prompt(question, result.rows, history)
        outcome = await self.orchestrator.generate(
            prompt,
            GenerationOptions.for_formatting(question),
            role=ProviderRole.FORMATTING,
            floor=lambda: self.templated(result.rows, question, result.row_count),
        )

        logger.info(
            "Results formatted",
            provider=outcome.provider.value,
            row_count=result.row_count,
            trace_id=current_trace_id()
        )
        return FormattedResult(success=True, presentation=outcome.text, provider=outcome.provider)

    def templated(self, rows: List[Row], question: str, row_count: Optional[int] = None) -> str:
        """Deterministic summary keyed on recognisable result shapes."""
        first = rows[0]
        row_count = row_count if row_count is not None else len(rows)

        if "total_active_students" in first:
            return (
                "📊 **Active Students Count**\n\n"
                f"You currently have **{first['total_active_students']} active students**.\n\n"
                "✅ This counts students with active membership status."
            )

        if "total_students" in first:
            return self._student_overview(first)

        if "total_revenue" in first and "month" not in first:
            return self._revenue_summary(first)

        if "occupied_seats" in first:
            return self._occupancy(first)

        if "sex" in first and "count" in first:
            lines = ["👥 **Gender Distribution**", ""]
            for row in rows:
                label = str(row.get("sex") or "unknown").capitalize()
                lines.append(f"• **{label}:** {row['count']} students ({row.get('percentage', '?')}%)")
            return "\n".join(lines)

        if "membership_till" in first and first.get("contact_number") is not None:
            return self._contact_list(rows, question)

        if "membership_till" in first:
            lines = [
                "⚠️ **Students with Expiring Memberships**",
                "",
                f"Found **{len(rows)} students** whose memberships expire soon:",
                "",
            ]
            for row in rows[:5]:
                till = _to_date(row.get("membership_till"))
                lines.append(f"• **{row.get('name', '?')}** - Expires: {till.strftime('%d %b %Y') if till else '?'}")
            lines.append("")
            lines.append("💡 Consider sending renewal reminders to these students.")
            return "\n".join(lines)

        if "month" in first and "total_revenue" in first:
            lines = ["📈 **Monthly Revenue Trends**", ""]
            for row in rows:
                month = _to_date(row.get("month"))
                label = month.strftime("%B %Y") if month else str(row.get("month"))
                lines.append(f"• **{label}:** ₹{_number(row.get('total_revenue'))} ({row.get('payment_count', 0)} payments)")
            return "\n".join(lines)

        return _json_sample(rows, row_count)

    def _student_overview(self, row: Row) -> str:
        total = row.get("total_students") or 0
        if "active_students" not in row:
            return f"📊 **Student Count**\n\nYou have **{total} students** in total."

        active = row.get("active_students") or 0
        with_seats = row.get("students_with_seats") or 0
        active_rate = round(active / total * 100) if total else 0
        seat_rate = round(with_seats / active * 100) if active else 0
        return (
            "📊 **Student Overview**\n\n"
            f"• **Total Students:** {total}\n"
            f"• **Active Students:** {active}\n"
            f"• **Students with Seats:** {with_seats}\n\n"
            "📈 **Quick Insights:**\n"
            f"- Active rate: {active_rate}%\n"
            f"- Seat assignment rate: {seat_rate}%"
        )

    def _revenue_summary(self, row: Row) -> str:
        revenue = row.get("total_revenue") or Decimal(0)
        payments = row.get("total_payments") or 0
        average = float(revenue) / payments if payments else 0
        return (
            "💰 **Revenue Summary**\n\n"
            f"• **Total Revenue:** ₹{_number(revenue)}\n"
            f"• **Total Payments:** {payments}\n"
            f"• **Average Payment:** ₹{_number(average)}"
        )

    def _occupancy(self, row: Row) -> str:
        rate = float(row.get("occupancy_rate") or 0)
        if rate > 80:
            note = "🔴 High occupancy - consider adding more seats"
        elif rate > 60:
            note = "🟡 Good occupancy level"
        else:
            note = "🟢 Low occupancy - capacity available"
        return (
            "🪑 **Seat Occupancy Report**\n\n"
            f"• **Occupied Seats:** {row.get('occupied_seats')}\n"
            f"• **Total Seats:** {row.get('total_seats')}\n"
            f"• **Occupancy Rate:** {_number(rate, 2)}%\n\n"
            f"{note}"
        )

    def _contact_list(self, rows: List[Row], question: str) -> str:
        today = self.today()
        lowered = question.lower()
        is_contact_request = any(word in lowered for word in ("contact", "information", "details"))

        def is_expired(row: Row) -> bool:
            till = _to_date(row.get("membership_till"))
            return row.get("membership_status") == "expired" or (till is not None and till < today)

        expired = [row for row in rows if is_expired(row)]
        expiring = [row for row in rows if not is_expired(row)]

        if is_contact_request:
            lines = [f"📇 **Contact Information for Expired Students** ({len(expired)} students found)", ""]
        else:
            lines = [f"📱 **Expired Students for SMS** ({len(expired)} expired out of {len(rows)} total)", ""]

        if expired:
            lines.append(f"🔴 **Expired Memberships ({len(expired)}):**")
            lines.append("")
            lines.append(_markdown_table(expired[:15], [
                ("ID", lambda r: str(r.get("id", ""))),
                ("Name", lambda r: str(r.get("name", ""))),
                ("Father's Name", lambda r: str(r.get("father_name") or "")),
                ("Contact Number", lambda r: str(r.get("contact_number") or "")),
                ("Expiry Date", lambda r: self._date_label(r.get("membership_till"))),
                ("Days Expired", lambda r: self._days_since(r.get("membership_till"), today)),
            ]))
            if len(expired) > 15:
                lines.append(f"*... and {len(expired) - 15} more expired students*")

        if expiring:
            lines.append("")
            lines.append(f"🟡 **Expiring Soon ({len(expiring)}):**")
            lines.append("")
            lines.append(_markdown_table(expiring[:5], [
                ("Name", lambda r: str(r.get("name", ""))),
                ("Contact Number", lambda r: str(r.get("contact_number") or "")),
                ("Expiry Date", lambda r: self._date_label(r.get("membership_till"))),
            ]))
            if len(expiring) > 5:
                lines.append(f"*... and {len(expiring) - 5} more expiring students*")

        lines.append("")
        if is_contact_request:
            lines.append("📞 **Contact Summary:**")
            lines.append(f"• Total contacts: {len(expired)}")
        else:
            numbers = ", ".join(str(r["contact_number"]) for r in expired if r.get("contact_number"))
            lines.append("📋 **SMS Contact List:**")
            lines.append(f"```\n{numbers}\n```")
            lines.append("")
            lines.append("💡 **Ready for bulk SMS!** Copy the numbers above.")
        return "\n".join(lines)

    @staticmethod
    def _date_label(value: Any) -> str:
        parsed = _to_date(value)
        return parsed.strftime("%d/%m/%Y") if parsed else ""

    @staticmethod
    def _days_since(value: Any, today: date) -> str:
        parsed = _to_date(value)
        if parsed is None:
            return ""
        return f"{(today - parsed).days} days ago"
