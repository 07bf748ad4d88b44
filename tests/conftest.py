"""
Shared fakes for unit tests.

Nothing here touches the network or a database: the relational store,
schema introspector, frequency store, text generators, clock and sleep are
all replaced with in-memory doubles.
"""

from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from studyroom_ai.config import AIChatConfig
from studyroom_ai.domain.base_enums import ProviderKind, ProviderRole
from studyroom_ai.domain.errors import DatabaseQueryError, ProviderError
from studyroom_ai.domain.generation import GenerationOptions, TextGenerator
from studyroom_ai.domain.responses import FrequentQuery
from studyroom_ai.repositories.conversation_store import ConversationMemory
from studyroom_ai.repositories.provider_orchestrator import FallbackState, ProviderOrchestrator
from studyroom_ai.repositories.query_frequency import denormalize_query
from studyroom_ai.repositories.schema_repository import SchemaSnapshotLoader
from studyroom_ai.repositories.sql_execution import QueryExecutor
from studyroom_ai.repositories.text_generators import DeterministicGenerator
from studyroom_ai.services.chat_service import AIChatService


STUDYROOM_SCHEMA: Dict[str, Any] = {
    "tables": [
        {
            "name": "students",
            "columns": [
                {"name": "id", "type": "integer", "nullable": False},
                {"name": "name", "type": "character varying", "nullable": False},
                {"name": "father_name", "type": "character varying", "nullable": True},
                {"name": "contact_number", "type": "character varying", "nullable": True},
                {"name": "sex", "type": "character varying", "nullable": True},
                {"name": "seat_number", "type": "integer", "nullable": True,
                 "references": {"table": "seats", "column": "seat_number"}},
                {"name": "membership_status", "type": "character varying", "nullable": True},
                {"name": "membership_till", "type": "date", "nullable": True},
            ],
        },
        {
            "name": "payments",
            "columns": [
                {"name": "id", "type": "integer", "nullable": False},
                {"name": "student_id", "type": "integer", "nullable": False,
                 "references": {"table": "students", "column": "id"}},
                {"name": "amount", "type": "numeric", "nullable": False},
                {"name": "payment_date", "type": "date", "nullable": False},
            ],
        },
        {
            "name": "seats",
            "columns": [
                {"name": "seat_number", "type": "integer", "nullable": False},
                {"name": "occupant_sex", "type": "character varying", "nullable": True},
            ],
        },
    ]
}


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


Response = Union[str, Exception, Callable[[str, GenerationOptions], str]]


class FakeGenerator(TextGenerator):
    """
    Scripted text generator.

    ``responses`` are consumed in order; the last one repeats. An exception
    instance is raised instead of returned.
    """

    def __init__(self, kind: ProviderKind, responses: List[Response], available: bool = True):
        self.kind = kind
        self.responses = list(responses)
        self.available = available
        self.prompts: List[str] = []
        self.closed = False

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt, options)
        return response

    async def check_available(self) -> bool:
        return self.available

    async def close(self) -> None:
        self.closed = True


def failing_generator(kind: ProviderKind = ProviderKind.HOSTED_API) -> FakeGenerator:
    return FakeGenerator(kind, [ProviderError("upstream unavailable")])


class FakeIntrospector:
    def __init__(self, payload: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.payload = payload if payload is not None else STUDYROOM_SCHEMA
        self.error = error
        self.calls = 0

    async def introspect(self) -> Dict[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


DatabaseResponse = Union[List[Dict[str, Any]], Exception]


class FakeDatabase:
    """
    Stand-in for DatabaseClient.execute_query.

    ``responses`` are consumed in order (the last repeats); ``handler``, when
    given, computes the response from the statement instead.
    """

    def __init__(
        self,
        responses: Optional[List[DatabaseResponse]] = None,
        handler: Optional[Callable[[str], DatabaseResponse]] = None,
    ):
        self.responses = list(responses or [[{"total_students": 3, "active_students": 2, "students_with_seats": 1}]])
        self.handler = handler
        self.queries: List[str] = []
        self.read_only_flags: List[Optional[bool]] = []

    async def execute_query(self, query, params=None, timeout=None, read_only=None):
        self.queries.append(query)
        self.read_only_flags.append(read_only)
        if self.handler is not None:
            response = self.handler(query)
        else:
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def query_error(message: str) -> DatabaseQueryError:
    return DatabaseQueryError(message)


class FakeFrequencyStore:
    def __init__(self):
        self.records: Dict[tuple, Dict[str, Any]] = {}

    async def upsert(self, user_id: str, normalized_query: str, example: str) -> int:
        record = self.records.setdefault(
            (user_id, normalized_query), {"count": 0, "example": example}
        )
        record["count"] += 1
        if len(example) < len(record["example"]):
            record["example"] = example
        return record["count"]

    async def top_n(self, user_id: str, n: int) -> List[FrequentQuery]:
        rows = [
            FrequentQuery(
                normalized_query=normalized,
                readable_query=denormalize_query(normalized),
                example=record["example"],
                count=record["count"],
            )
            for (owner, normalized), record in self.records.items()
            if owner == user_id
        ]
        rows.sort(key=lambda row: row.count, reverse=True)
        return rows[:n]


def make_orchestrator(
    primary: Optional[TextGenerator] = None,
    fallback: Optional[TextGenerator] = None,
    config: Optional[AIChatConfig] = None,
) -> ProviderOrchestrator:
    """Orchestrator whose chain is made of the given generators."""
    orchestrator = ProviderOrchestrator(config or AIChatConfig(demo_mode=True))
    start = primary.kind if primary else ProviderKind.DETERMINISTIC
    orchestrator.state = FallbackState(
        deterministic=DeterministicGenerator(),
        primary=primary,
        fallback=fallback,
        active={ProviderRole.GENERATION: start, ProviderRole.FORMATTING: start},
    )
    return orchestrator


def make_service(
    database: Optional[FakeDatabase] = None,
    primary: Optional[TextGenerator] = None,
    fallback: Optional[TextGenerator] = None,
    introspector: Optional[FakeIntrospector] = None,
    clock: Optional[FakeClock] = None,
    frequency_store: Optional[FakeFrequencyStore] = None,
    **config_overrides: Any,
) -> AIChatService:
    config = AIChatConfig(retry_delay_seconds=0.0, **config_overrides)
    clock = clock or FakeClock()
    database = database or FakeDatabase()
    return AIChatService(
        config=config,
        schema_loader=SchemaSnapshotLoader(introspector or FakeIntrospector(), clock=clock),
        orchestrator=make_orchestrator(primary, fallback, config),
        executor=QueryExecutor(database, default_row_limit=config.default_row_limit),
        memory=ConversationMemory(config.max_context_messages, config.context_expiry_seconds, clock=clock),
        frequency_store=frequency_store,
        sleep=FakeSleep(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def introspector() -> FakeIntrospector:
    return FakeIntrospector()
