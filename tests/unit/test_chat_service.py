"""
Unit tests for AIChatService.

The whole pipeline runs against in-memory fakes: schema, database,
generators, clock and frequency store.
"""

from studyroom_ai.domain.base_enums import AIMode, ProviderKind

from conftest import (
    FakeDatabase,
    FakeFrequencyStore,
    FakeGenerator,
    FakeIntrospector,
    failing_generator,
    make_service,
    query_error,
)

ACTIVE_COUNT_SQL = "SELECT COUNT(*) as total_active_students FROM students WHERE membership_status = 'active'"


def scripted(sql: str, fixed: str = None, presentation: str = "**formatted**") -> FakeGenerator:
    """Hosted generator that answers generation, correction and formatting prompts differently."""

    def respond(prompt, options):
        if prompt.startswith("You are a data analyst"):
            return presentation
        if "Fix the SQL error" in prompt:
            return fixed or sql
        return sql

    return FakeGenerator(ProviderKind.HOSTED_API, [respond])


class TestFallback:

    async def test_answers_when_every_network_provider_fails(self):
        database = FakeDatabase([[{"total_active_students": 42}]])
        service = make_service(
            database,
            primary=failing_generator(ProviderKind.HOSTED_API),
            fallback=failing_generator(ProviderKind.LOCAL_INFERENCE),
        )

        answer = await service.answer("How many active students do we have?", "user-1")

        assert answer.success
        assert "**42 active students**" in answer.presentation
        assert answer.metadata.provider == ProviderKind.DETERMINISTIC
        assert answer.metadata.formatting_provider == ProviderKind.DETERMINISTIC
        assert database.queries == [f"{ACTIVE_COUNT_SQL} LIMIT 100"]

    async def test_hosted_answer_used(self):
        service = make_service(FakeDatabase([[{"name": "Asha"}]]), primary=scripted("SELECT name FROM students"))

        answer = await service.answer("names please", "user-1")

        assert answer.success
        assert answer.presentation == "**formatted**"
        assert answer.metadata.provider == ProviderKind.HOSTED_API
        assert answer.raw_rows == [{"name": "Asha"}]


class TestDefaultFilter:

    async def test_list_students_filtered(self):
        database = FakeDatabase([[{"name": "Asha"}]])
        service = make_service(database, primary=scripted("SELECT name FROM students ORDER BY name"))

        await service.answer("list students", "user-1")

        assert database.queries == [
            "SELECT name FROM students WHERE students.membership_status = 'active' ORDER BY name LIMIT 100"
        ]

    async def test_list_all_students_unfiltered(self):
        database = FakeDatabase([[{"name": "Asha"}]])
        service = make_service(database, primary=scripted("SELECT name FROM students ORDER BY name"))

        await service.answer("list all students", "user-1")

        assert database.queries == ["SELECT name FROM students ORDER BY name"]


class TestUnsafeGeneration:

    async def test_stacked_statement_replaced_by_deterministic(self):
        database = FakeDatabase([[{"total_active_students": 7}]])
        generator = scripted("SELECT * FROM students; DROP TABLE users")
        service = make_service(database, primary=generator)

        answer = await service.answer("How many active students do we have?", "user-1")

        assert answer.success
        assert answer.metadata.provider == ProviderKind.DETERMINISTIC
        assert answer.metadata.retry_count == 1
        assert all("DROP" not in query for query in database.queries)
        assert "STRICT OUTPUT RULES" in generator.prompts[1]

    async def test_strict_regeneration_accepted(self):
        responses = iter(["DELETE FROM students", "SELECT name FROM payments"])

        def respond(prompt, options):
            if prompt.startswith("You are a data analyst"):
                return "**formatted**"
            return next(responses)

        database = FakeDatabase([[{"name": "Asha"}]])
        service = make_service(database, primary=FakeGenerator(ProviderKind.HOSTED_API, [respond]))

        answer = await service.answer("payment names", "user-1")

        assert answer.metadata.provider == ProviderKind.HOSTED_API
        assert database.queries == ["SELECT name FROM payments LIMIT 100"]


class TestExecutionFailures:

    async def test_correction_counted_in_metadata(self):
        def handler(query):
            if "LIMIT 10 ORDER" in query:
                return query_error('syntax error at or near "ORDER"')
            return [{"name": "Asha"}]

        service = make_service(
            FakeDatabase(handler=handler),
            primary=scripted(
                "SELECT name FROM students LIMIT 10 ORDER BY name",
                fixed="SELECT name FROM students ORDER BY name LIMIT 10",
            ),
        )

        answer = await service.answer("list students", "user-1")

        assert answer.success
        assert answer.metadata.retry_count == 1
        assert answer.metadata.sql == (
            "SELECT name FROM students WHERE students.membership_status = 'active' ORDER BY name LIMIT 10"
        )

    async def test_fatal_error_reported(self):
        service = make_service(FakeDatabase([query_error("permission denied for table students")]))

        answer = await service.answer("count students", "user-1")

        assert not answer.success
        assert "❌ **Query Error**" in answer.presentation
        assert f"*Reference: {answer.metadata.correlation_id}*" in answer.presentation
        assert "permission denied" not in answer.presentation

    async def test_unexpected_exception_never_raised(self):
        def handler(query):
            raise RuntimeError("driver exploded")

        service = make_service(FakeDatabase(handler=handler))

        answer = await service.answer("count students", "user-1")

        assert not answer.success
        assert "Something went wrong" in answer.presentation

    async def test_schema_failure(self):
        service = make_service(introspector=FakeIntrospector(error=OSError("connection refused")))

        answer = await service.answer("count students", "user-1")

        assert not answer.success
        assert "schema could not be loaded" in answer.presentation
        assert answer.metadata.correlation_id in answer.presentation
        assert answer.metadata.sql is None


class TestHistory:

    async def test_turn_recorded(self):
        service = make_service()

        await service.answer("count students", "user-1")

        history = service.history("user-1")
        assert history.count == 1
        assert history.turns[0].user_query == "count students"
        assert history.turns[0].generated_sql == "SELECT COUNT(*) as total_students FROM students WHERE students.membership_status = 'active' LIMIT 100"
        assert service.history("user-2").count == 0

    async def test_failures_recorded_too(self):
        service = make_service(introspector=FakeIntrospector(error=OSError("down")))

        await service.answer("count students", "user-1")

        assert service.history("user-1").turns[0].succeeded is False

    async def test_clear(self):
        service = make_service()
        await service.answer("count students", "user-1")

        assert service.clear_history("user-1").cleared
        assert service.history("user-1").count == 0

    async def test_history_reaches_next_prompt(self):
        generator = scripted("SELECT name FROM students")
        service = make_service(FakeDatabase([[{"name": "Asha"}]]), primary=generator)

        await service.answer("list students", "user-1")
        await service.answer("and their phones?", "user-1")

        assert 'User: "list students"' in generator.prompts[-2]


class TestSuggestions:

    async def test_base_groups(self):
        response = await make_service().suggestions("user-1")
        assert [g.category for g in response.suggestions] == ["Students", "Payments", "Seats"]

    async def test_contextual_group_after_question(self):
        service = make_service()
        await service.answer("show payments", "user-1")

        response = await service.suggestions("user-1")

        assert response.suggestions[0].is_contextual
        assert "Compare with previous months" in response.suggestions[0].queries

    async def test_frequent_queries_first(self):
        store = FakeFrequencyStore()
        service = make_service(frequency_store=store, track_query_frequency=True)

        await service.answer("Revenue for March", "user-1")
        await service.answer("revenue for june", "user-1")

        assert store.records[("user-1", "revenue for MONTH")]["count"] == 2
        response = await service.suggestions("user-1")
        assert response.suggestions[0].is_frequent
        assert response.suggestions[0].queries[0].startswith("revenue for june (used 2 times")

    async def test_tracking_disabled_by_default(self):
        store = FakeFrequencyStore()
        service = make_service(frequency_store=store)

        await service.answer("count students", "user-1")

        assert store.records == {}

    async def test_failed_answer_not_tracked(self):
        store = FakeFrequencyStore()
        service = make_service(
            introspector=FakeIntrospector(error=OSError("down")),
            frequency_store=store,
            track_query_frequency=True,
        )

        await service.answer("count students", "user-1")

        assert store.records == {}


class TestSchemaAndModes:

    async def test_schema_view(self):
        response = await make_service().schema()
        assert response.table_count == 3
        assert response.tables[0].name == "students"

    async def test_switch_to_demo_closes_previous_primary(self):
        generator = scripted("SELECT name FROM students")
        service = make_service(primary=generator)

        response = await service.switch_mode(AIMode.DEMO)

        assert response.message == "Switched to demo mode"
        assert generator.closed
        assert (await service.status()).primary is None
