"""
TextGenerator variants: hosted API, local inference and deterministic.

The hosted and local variants wrap the infrastructure clients and map
every failure to ProviderError. The deterministic variant pattern-matches
the question text against known study room questions; it makes no
network call and cannot fail.
"""

from typing import Any, Dict, List, Tuple

from ..config_constants import SYSTEM_PROMPT
from ..infrastructure.llm_client import LLMClient
from ..infrastructure.local_llm_client import LocalLLMClient
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.base_enums import ProviderKind
from ..domain.errors import AIChatException, ProviderError
from ..domain.generation import GenerationOptions, TextGenerator


logger = get_module_logger()


class HostedAPIGenerator(TextGenerator):
    """Text generation through an OpenAI-compatible hosted provider."""

    kind = ProviderKind.HOSTED_API

    def __init__(self, client: LLMClient):
        self.client = client

    async def _ensure_connected(self) -> None:
        if self.client.is_connected():
            return
        try:
            await self.client.connect()
        except AIChatException as e:
            raise ProviderError(e.message, details=e.details) from e

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        await self._ensure_connected()
        return await self.client.generate(
            prompt,
            system_prompt=SYSTEM_PROMPT,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )

    async def check_available(self) -> bool:
        if not self.client.has_api_key:
            return False
        try:
            await self._ensure_connected()
        except ProviderError:
            return False
        return True

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, **self.client.describe()}

    async def close(self) -> None:
        await self.client.close()


class LocalInferenceGenerator(TextGenerator):
    """Text generation through a locally hosted model server."""

    kind = ProviderKind.LOCAL_INFERENCE

    def __init__(self, client: LocalLLMClient):
        self.client = client

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        return await self.client.generate(
            prompt,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )

    async def check_available(self) -> bool:
        return await self.client.check_available()

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, **self.client.describe()}

    async def close(self) -> None:
        await self.client.close()


# Shared by the expired-student patterns below
_EXPIRED_CONDITION = (
    "(membership_status IN ('expired', 'inactive') "
    "OR (membership_status = 'active' AND membership_till < CURRENT_DATE))"
)
_EXPIRED_CONTACT_LIST = (
    "SELECT id, name, father_name, contact_number, membership_till, membership_status "
    f"FROM students WHERE {_EXPIRED_CONDITION} AND contact_number IS NOT NULL ORDER BY membership_till"
)
_EXPIRED_LIST = (
    "SELECT id, name, father_name, contact_number, membership_till, membership_status "
    f"FROM students WHERE {_EXPIRED_CONDITION} ORDER BY membership_till"
)
_OVERVIEW = (
    "SELECT COUNT(*) as total_students, "
    "COUNT(CASE WHEN membership_status = 'active' THEN 1 END) as active_students, "
    "COUNT(CASE WHEN seat_number IS NOT NULL THEN 1 END) as students_with_seats FROM students"
)

_CONTACT_WORDS = ("contact", "phone", "mobile", "information", "details", "sms")


def _has(text: str, *words: str) -> bool:
    return any(word in text for word in words)


def deterministic_sql(question: str) -> str:
    """
    Map a question to a fixed statement by keyword matching.

    More specific patterns are checked first; anything unrecognised gets a
    student overview.

    Example:
        >>> deterministic_sql("How many active students do we have?")
        "SELECT COUNT(*) as total_active_students FROM students WHERE membership_status = 'active'"
    """
    q = question.lower()
    is_count = _has(q, "count", "how many")

    if "student" in q and "expired" in q:
        if _has(q, *_CONTACT_WORDS):
            return _EXPIRED_CONTACT_LIST
        if not is_count:
            return _EXPIRED_LIST

    if "student" in q and is_count:
        if "active" in q and "inactive" not in q:
            return "SELECT COUNT(*) as total_active_students FROM students WHERE membership_status = 'active'"
        if "expired" in q:
            return f"SELECT COUNT(*) as total_expired_students FROM students WHERE {_EXPIRED_CONDITION}"
        return "SELECT COUNT(*) as total_students FROM students"

    if "student" in q and "expire" in q:
        return (
            "SELECT id, name, father_name, contact_number, membership_till FROM students "
            "WHERE membership_till < CURRENT_DATE + INTERVAL '30 days' AND membership_status = 'active' "
            "ORDER BY membership_till LIMIT 10"
        )

    if "student" in q and "seat" in q and "without" in q:
        return (
            "SELECT id, name, father_name, contact_number, membership_status FROM students "
            "WHERE seat_number IS NULL AND membership_status = 'active' LIMIT 10"
        )

    if _has(q, "payment", "revenue"):
        if "month" in q:
            return (
                "SELECT DATE_TRUNC('month', payment_date) as month, SUM(amount) as total_revenue, "
                "COUNT(*) as payment_count FROM payments "
                "WHERE payment_date >= CURRENT_DATE - INTERVAL '6 months' GROUP BY month ORDER BY month DESC"
            )
        if _has(q, "total", "sum"):
            return (
                "SELECT SUM(amount) as total_revenue, COUNT(*) as total_payments FROM payments "
                "WHERE payment_date >= CURRENT_DATE - INTERVAL '1 month'"
            )
        return (
            "SELECT student_id, SUM(amount) as total_paid, COUNT(*) as payment_count FROM payments "
            "GROUP BY student_id ORDER BY total_paid DESC LIMIT 10"
        )

    if "seat" in q:
        if _has(q, "occupied", "occupancy"):
            return (
                "SELECT COUNT(CASE WHEN st.seat_number IS NOT NULL THEN 1 END) as occupied_seats, "
                "COUNT(s.seat_number) as total_seats, "
                "ROUND(COUNT(CASE WHEN st.seat_number IS NOT NULL THEN 1 END) * 100.0 / COUNT(s.seat_number), 2) "
                "as occupancy_rate FROM seats s LEFT JOIN students st ON s.seat_number = st.seat_number"
            )
        if _has(q, "available", "empty"):
            return (
                "SELECT s.seat_number, s.occupant_sex FROM seats s "
                "LEFT JOIN students st ON s.seat_number = st.seat_number "
                "WHERE st.seat_number IS NULL ORDER BY s.seat_number LIMIT 20"
            )
        return (
            "SELECT s.seat_number, s.occupant_sex, st.name as student_name, st.membership_status "
            "FROM seats s LEFT JOIN students st ON s.seat_number = st.seat_number "
            "ORDER BY s.seat_number LIMIT 20"
        )

    if "expense" in q:
        return (
            "SELECT ec.name as category, SUM(e.amount) as total_amount, COUNT(*) as expense_count "
            "FROM expenses e JOIN expense_categories ec ON e.expense_category_id = ec.id "
            "WHERE e.expense_date >= CURRENT_DATE - INTERVAL '3 months' "
            "GROUP BY ec.name ORDER BY total_amount DESC"
        )

    if _has(q, "gender", "male", "female"):
        return (
            "SELECT sex, COUNT(*) as count, "
            "ROUND(COUNT(*) * 100.0 / (SELECT COUNT(*) FROM students WHERE membership_status = 'active'), 2) "
            "as percentage FROM students WHERE membership_status = 'active' GROUP BY sex"
        )

    if "student" in q and _has(q, "list", "show", "get", "display"):
        return (
            "SELECT id, name, father_name, contact_number, seat_number, membership_status, membership_till "
            "FROM students ORDER BY name"
        )

    return _OVERVIEW


class DeterministicGenerator(TextGenerator):
    """
    Network-free floor of the fallback chain.

    Matches on ``options.question`` and ignores the prompt, so it answers
    the same way for generation, regeneration and correction prompts.
    """

    kind = ProviderKind.DETERMINISTIC

    # (pattern keywords, example) pairs surfaced by the status endpoint
    examples: List[Tuple[str, str]] = [
        ("count + active + student", "How many active students do we have?"),
        ("expired + student + sms", "Send SMS to expired students"),
        ("payment + month", "Show monthly revenue"),
        ("seat + occupancy", "What is the seat occupancy?"),
    ]

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        sql = deterministic_sql(options.question or prompt)
        logger.info(
            "Deterministic statement selected",
            sql=sql[:200],
            trace_id=current_trace_id()
        )
        return sql

    async def check_available(self) -> bool:
        return True

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "patterns": [keywords for keywords, _ in self.examples]}
