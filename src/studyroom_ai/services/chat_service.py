"""
AI Chat Service - orchestrator for the question-to-answer pipeline.

This service is a thin orchestrator over the repositories:
1. SchemaSnapshotLoader - cached schema snapshot
2. ConversationMemory - per-user recent turns
3. PromptBuilder / ProviderOrchestrator - SQL generation with fallback
4. SafetyValidator / DefaultFilterInjector - statement checks and defaults
5. SyntaxCorrectionLoop / QueryExecutor - execution with bounded correction
6. ResultFormatter - presentation
7. FrequencyStore - optional query analytics

``answer()`` never raises: every failure is returned as ``success=False``
with a presentation that carries the request's correlation id.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

from ..config import AIChatConfig
from ..domain.base_enums import AIMode, ProviderKind, QueryStatus
from ..domain.conversation import ConversationTurn
from ..domain.errors import (
    DatabaseError,
    ExecutionError,
    SchemaLoadError,
    UnsafeStatementError,
)
from ..domain.generation import GenerationOptions
from ..domain.responses import (
    AIStatusResponse,
    AnswerMetadata,
    ChatAnswer,
    ClearHistoryResponse,
    ExecutionResult,
    FormattedResult,
    HistoryResponse,
    SchemaResponse,
    SchemaTableView,
    SuggestionGroup,
    SuggestionsResponse,
    SwitchModeResponse,
)
from ..domain.retry import RetryBudget
from ..domain.schema import SchemaSnapshot
from ..domain.statement import GeneratedStatement
from ..repositories.conversation_store import ConversationMemory
from ..repositories.filter_injection import DefaultFilterInjector
from ..repositories.prompt_builder import PromptBuilder
from ..repositories.provider_orchestrator import ProviderOrchestrator
from ..repositories.query_frequency import FrequencyStore, normalize_query
from ..repositories.result_formatting import ResultFormatter, failure_message
from ..repositories.schema_repository import SchemaSnapshotLoader
from ..repositories.sql_correction import SyntaxCorrectionLoop
from ..repositories.sql_execution import QueryExecutor
from ..repositories.sql_validation import SafetyValidator
from ..utils.logging import get_module_logger
from ..utils.token_utils import truncate_text
from ..utils.tracing import get_trace_id

logger = get_module_logger()

SleepFn = Callable[[float], Awaitable[None]]

FREQUENT_QUERY_LIMIT = 5

BASE_SUGGESTIONS: List[Tuple[str, List[str]]] = [
    ("Students", [
        "How many active students do we have?",
        "Show me students whose membership expires this month",
        "List all students without assigned seats",
        "Find students with overdue payments",
        "Show gender distribution of students",
    ]),
    ("Payments", [
        "What is our total revenue this month?",
        "Show payment trends for the last 6 months",
        "List students with pending payments",
        "Compare revenue between male and female students",
        "Show average payment amounts by membership type",
    ]),
    ("Seats", [
        "How many seats are currently occupied?",
        "Show seat occupancy rate by gender",
        "List all available seats",
        "Find seats with gender restrictions",
        "Show seat utilization statistics",
    ]),
]

# (topic keywords, follow-up questions) for the most recent turn
CONTEXTUAL_SUGGESTIONS: List[Tuple[Tuple[str, ...], List[str]]] = [
    (("student",), [
        "Show more details about those students",
        "Get contact information for them",
        "Show their payment history",
        "Find their seat assignments",
    ]),
    (("payment", "revenue"), [
        "Break down by payment method",
        "Compare with previous months",
        "Show top paying students",
        "Analyze payment patterns",
    ]),
    (("seat",), [
        "Show student details for occupied seats",
        "Find seats by gender preference",
        "Show seat utilization trends",
        "List recent seat assignments",
    ]),
]


def _last_used_label(last_used: Optional[datetime], now: datetime) -> str:
    if last_used is None:
        return "over a week ago"
    if last_used.tzinfo is None:
        last_used = last_used.replace(tzinfo=timezone.utc)
    days = (now - last_used).days
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"
    return "over a week ago"


class AIChatService:
    """
    Main orchestrator for the AI chat pipeline.

    Coordinates repositories to answer a question:
    1. Schema snapshot (cached)
    2. Contextual prompt (history + schema + dialect rules)
    3. Generation (provider chain, deterministic floor)
    4. Validation (regenerate strictly once, else deterministic)
    5. Default active filter
    6. Execution with correction
    7. Formatting
    8. Memory and frequency bookkeeping
    """

    def __init__(
        self,
        config: AIChatConfig,
        schema_loader: SchemaSnapshotLoader,
        orchestrator: ProviderOrchestrator,
        executor: QueryExecutor,
        memory: ConversationMemory,
        frequency_store: Optional[FrequencyStore] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        validator: Optional[SafetyValidator] = None,
        injector: Optional[DefaultFilterInjector] = None,
        formatter: Optional[ResultFormatter] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config
        self.schema_loader = schema_loader
        self.orchestrator = orchestrator
        self.executor = executor
        self.memory = memory
        self.frequency_store = frequency_store
        self.prompt_builder = prompt_builder or PromptBuilder(config.status_columns)
        self.validator = validator or SafetyValidator()
        self.injector = injector or DefaultFilterInjector(config.status_columns)
        self.formatter = formatter or ResultFormatter(orchestrator, self.prompt_builder)
        self.correction_loop = SyntaxCorrectionLoop(
            executor, orchestrator, self.prompt_builder, self.validator, self.injector
        )
        self._sleep = sleep

        logger.info(
            "AIChatService initialized",
            max_retries=config.max_retries,
            max_context_messages=config.max_context_messages,
            track_query_frequency=config.track_query_frequency,
        )

    # =========================================================================
    # Answer pipeline
    # =========================================================================

    async def answer(self, question: str, user_id: str) -> ChatAnswer:
        """
        Answer a natural-language question for ``user_id``.

        Returns:
            ChatAnswer; ``success=False`` for every failure mode
        """
        correlation_id = get_trace_id()
        start_time = datetime.now(timezone.utc)

        logger.info(
            "Starting AI chat pipeline",
            query_length=len(question),
            trace_id=correlation_id,
        )

        budget = RetryBudget(self.config.max_retries, self.config.retry_delay_seconds, sleep=self._sleep)
        statement: Optional[GeneratedStatement] = None

        try:
            try:
                snapshot = await self.schema_loader.load()
            except SchemaLoadError as e:
                logger.error("Schema unavailable, aborting request", error=e.message, trace_id=correlation_id)
                presentation = failure_message(
                    None, correlation_id, headline="The database schema could not be loaded. Please try again shortly."
                )
                return self._finish(question, user_id, correlation_id, presentation, False, budget)

            history = self.memory.read(user_id)

            statement = await self._generate_statement(question, snapshot, history, budget)
            statement = statement.filtered(self.injector.inject(statement.sql, question))

            result, statement = await self._execute(statement, question, budget, snapshot)

            formatted = await self.formatter.format(question, result, history, correlation_id)
            answer = self._finish(
                question, user_id, correlation_id, formatted.presentation,
                formatted.success, budget, statement, result, formatted,
            )

            if formatted.success:
                await self._track_frequency(user_id, question)

            logger.info(
                "AI chat pipeline finished",
                status=(QueryStatus.COMPLETED if formatted.success else QueryStatus.FAILED).value,
                provider=statement.provider.value,
                retry_count=budget.used,
                duration_ms=round((datetime.now(timezone.utc) - start_time).total_seconds() * 1000, 2),
                trace_id=correlation_id,
            )
            return answer

        except Exception as e:
            logger.error(
                "AI chat pipeline failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=correlation_id,
                exc_info=True,
            )
            presentation = failure_message(None, correlation_id, headline="Something went wrong while answering.")
            return self._finish(question, user_id, correlation_id, presentation, False, budget, statement)

    async def _generate_statement(
        self,
        question: str,
        snapshot: SchemaSnapshot,
        history: List[ConversationTurn],
        budget: RetryBudget,
    ) -> GeneratedStatement:
        """
        A validated statement, from the provider chain or the deterministic floor.

        A rejected statement gets one regeneration with the strict prompt
        (one budget unit); if that is rejected too, the deterministic
        statement for the question is used instead.
        """
        trace_id = get_trace_id()
        options = GenerationOptions.for_sql(question)

        prompt = self.prompt_builder.build_sql_prompt(question, snapshot, history)
        outcome = await self.orchestrator.generate(prompt, options)
        statement = GeneratedStatement.from_provider(outcome.text, outcome.provider).extracted()

        checked = self._validate(statement)
        if checked is not None:
            return checked

        if outcome.provider != ProviderKind.DETERMINISTIC and await budget.consume("unsafe statement"):
            strict = self.prompt_builder.build_strict_prompt(question, snapshot, history, rejected_sql=statement.sql)
            retry = await self.orchestrator.try_generate(strict, options)
            if retry is not None:
                checked = self._validate(GeneratedStatement.from_provider(retry.text, retry.provider).extracted())
                if checked is not None:
                    return checked

        logger.warning("Using deterministic statement after rejection", trace_id=trace_id)
        text = await self.orchestrator.state.deterministic.generate(prompt, options)
        fallback = GeneratedStatement.from_provider(text, ProviderKind.DETERMINISTIC).extracted()
        return fallback.validated(True, self.validator.validate(fallback.sql))

    def _validate(self, statement: GeneratedStatement) -> Optional[GeneratedStatement]:
        try:
            return statement.validated(True, self.validator.validate(statement.sql))
        except UnsafeStatementError:
            return None

    async def _execute(
        self,
        statement: GeneratedStatement,
        question: str,
        budget: RetryBudget,
        snapshot: SchemaSnapshot,
    ) -> Tuple[ExecutionResult, GeneratedStatement]:
        try:
            return await self.correction_loop.run(statement, question, budget, snapshot)
        except ExecutionError as e:
            # CorrectionExhausted included; the formatter renders the last error
            logger.warning(
                "Statement could not be executed",
                error_code=e.error_code,
                family=e.details.get("family"),
                trace_id=get_trace_id(),
            )
            failed = ExecutionResult(
                success=False,
                sql=e.details.get("sql") or statement.sql,
                error=e.details.get("error") or e.message,
            )
            return failed, statement.executed(failed.error)

    def _finish(
        self,
        question: str,
        user_id: str,
        correlation_id: str,
        presentation: str,
        success: bool,
        budget: RetryBudget,
        statement: Optional[GeneratedStatement] = None,
        result: Optional[ExecutionResult] = None,
        formatted: Optional[FormattedResult] = None,
    ) -> ChatAnswer:
        executed_sql = result.sql if result is not None else (statement.sql if statement else None)
        self.memory.record(user_id, ConversationTurn(
            timestamp=self.memory.now(),
            user_query=question,
            response_summary=truncate_text(presentation, self.config.response_summary_chars),
            generated_sql=executed_sql,
            succeeded=success,
            correlation_id=correlation_id,
        ))

        return ChatAnswer(
            success=success,
            presentation=presentation,
            raw_rows=result.rows if result is not None and result.success else None,
            metadata=AnswerMetadata(
                sql=executed_sql,
                provider=statement.provider if statement else None,
                formatting_provider=formatted.provider if formatted and formatted.success else None,
                execution_time_ms=result.execution_time_ms if result is not None else None,
                retry_count=budget.used,
                row_count=result.row_count if result is not None and result.success else None,
                correlation_id=correlation_id,
            ),
        )

    async def _track_frequency(self, user_id: str, question: str) -> None:
        if not self.config.track_query_frequency or self.frequency_store is None:
            return
        try:
            await self.frequency_store.upsert(user_id, normalize_query(question), question)
        except DatabaseError as e:
            # Analytics only; the answer is already complete
            logger.error("Failed to track query frequency", error=e.message, trace_id=get_trace_id())

    # =========================================================================
    # History, suggestions, schema, providers
    # =========================================================================

    def history(self, user_id: str) -> HistoryResponse:
        turns = self.memory.read(user_id)
        return HistoryResponse(user_id=user_id, turns=turns, count=len(turns))

    def clear_history(self, user_id: str) -> ClearHistoryResponse:
        self.memory.clear(user_id)
        return ClearHistoryResponse(user_id=user_id, cleared=True)

    async def suggestions(self, user_id: str) -> SuggestionsResponse:
        """Most used queries, then follow-ups for the latest turn, then fixed categories."""
        groups: List[SuggestionGroup] = []

        frequent = []
        if self.frequency_store is not None:
            try:
                frequent = await self.frequency_store.top_n(user_id, FREQUENT_QUERY_LIMIT)
            except DatabaseError as e:
                logger.error("Failed to fetch frequent queries", error=e.message, trace_id=get_trace_id())

        if frequent:
            now = datetime.now(timezone.utc)
            groups.append(SuggestionGroup(
                category="Your Most Used Queries",
                queries=[
                    f"{fq.example} (used {fq.count} times, last {_last_used_label(fq.last_used, now)})"
                    for fq in frequent
                ],
                is_frequent=True,
            ))

        history = self.memory.read(user_id)
        if history:
            recent = history[-1].user_query.lower()
            for keywords, queries in CONTEXTUAL_SUGGESTIONS:
                if any(keyword in recent for keyword in keywords):
                    groups.append(SuggestionGroup(
                        category="Based on your recent query",
                        queries=list(queries),
                        is_contextual=True,
                    ))
                    break

        groups.extend(SuggestionGroup(category=category, queries=list(queries)) for category, queries in BASE_SUGGESTIONS)
        return SuggestionsResponse(suggestions=groups)

    async def schema(self) -> SchemaResponse:
        """
        Current schema snapshot.

        Raises:
            SchemaLoadError: If no snapshot can be built
        """
        snapshot = await self.schema_loader.load()
        tables = [
            SchemaTableView(
                name=table.name,
                columns=[
                    {
                        "name": column.name,
                        "type": column.data_type,
                        "nullable": column.nullable,
                        "references": column.references.model_dump() if column.references else None,
                    }
                    for column in table.columns
                ],
            )
            for table in snapshot.tables.values()
        ]
        return SchemaResponse(table_count=len(tables), tables=tables, loaded_at=snapshot.loaded_at)

    async def status(self) -> AIStatusResponse:
        return await self.orchestrator.status()

    async def switch_mode(
        self,
        mode: AIMode,
        provider: Optional[str] = None,
        backend: Optional[str] = None,
        model: Optional[str] = None,
    ) -> SwitchModeResponse:
        """
        Change the primary provider.

        Raises:
            BadRequestError: Unknown provider or backend
            ProviderError: Candidate provider is unavailable; nothing changed
        """
        switched = await self.orchestrator.switch_mode(mode, provider=provider, backend=backend, model=model)
        return SwitchModeResponse(
            success=True,
            mode=switched["mode"],
            options=switched["options"],
            message=f"Switched to {switched['mode']} mode",
        )

    async def close(self) -> None:
        await self.orchestrator.close()
        logger.info("AIChatService closed")
