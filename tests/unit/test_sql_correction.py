"""
Unit tests for error classification, rewrite rules and the correction loop.
"""

import pytest

from studyroom_ai.domain.base_enums import ErrorFamily, ProviderKind
from studyroom_ai.domain.errors import CorrectionExhausted, DatabaseConnectionError, ExecutionError
from studyroom_ai.domain.retry import RetryBudget
from studyroom_ai.domain.statement import GeneratedStatement
from studyroom_ai.repositories.filter_injection import DefaultFilterInjector
from studyroom_ai.repositories.prompt_builder import PromptBuilder
from studyroom_ai.repositories.sql_correction import (
    SyntaxCorrectionLoop,
    apply_rule_corrections,
    classify_error,
    reorder_clauses,
)
from studyroom_ai.repositories.sql_execution import QueryExecutor
from studyroom_ai.repositories.sql_validation import SafetyValidator

from conftest import FakeDatabase, FakeGenerator, FakeSleep, make_orchestrator, query_error


class TestClassifyError:

    @pytest.mark.parametrize("error,family", [
        ('syntax error at or near "LIMIT"', ErrorFamily.CLAUSE_ORDER),
        ('syntax error at or near "ORDER"', ErrorFamily.CLAUSE_ORDER),
        ('syntax error at or near "FROMM"', ErrorFamily.SYNTAX),
        ('invalid input syntax for type integer: "abc"', ErrorFamily.SYNTAX),
        ('column "nme" does not exist', ErrorFamily.UNKNOWN_IDENTIFIER),
        ('relation "student" does not exist', ErrorFamily.UNKNOWN_IDENTIFIER),
        ("function month(date) does not exist", ErrorFamily.UNKNOWN_FUNCTION),
        ("Database connection error: connection reset", ErrorFamily.TRANSIENT),
        ("Query timeout exceeded: canceling statement", ErrorFamily.TRANSIENT),
        ('column "connection_id" does not exist', ErrorFamily.UNKNOWN_IDENTIFIER),
        ('relation "network_logs" does not exist', ErrorFamily.UNKNOWN_IDENTIFIER),
        ('Database connection error: database "studyroom" does not exist', ErrorFamily.FATAL),
        ("permission denied for table students", ErrorFamily.FATAL),
        (None, ErrorFamily.FATAL),
    ])
    def test_families(self, error, family):
        assert classify_error(error) == family

    def test_correctable(self):
        assert ErrorFamily.SYNTAX.correctable
        assert not ErrorFamily.FATAL.correctable


class TestRewriteRules:

    def test_reorder_clauses(self):
        assert reorder_clauses("SELECT name FROM students LIMIT 10 ORDER BY name") == (
            "SELECT name FROM students ORDER BY name LIMIT 10"
        )

    def test_double_quoted_literal(self):
        sql = 'SELECT name FROM students WHERE membership_status = "active"'
        assert apply_rule_corrections(sql, 'column "active" does not exist') == (
            "SELECT name FROM students WHERE membership_status = 'active'"
        )

    def test_quoted_identifier_kept(self):
        sql = 'SELECT "Name" FROM students'
        assert apply_rule_corrections(sql, 'column "Name" does not exist') == sql

    def test_only_reported_name_requoted(self):
        sql = 'SELECT "Name" FROM students WHERE membership_status = "active" AND "Seat" > 3'
        assert apply_rule_corrections(sql, 'column "active" does not exist') == (
            """SELECT "Name" FROM students WHERE membership_status = 'active' AND "Seat" > 3"""
        )

    def test_invalid_input_syntax_requotes_compared_values(self):
        sql = 'SELECT "Name" FROM students WHERE sex = "female"'
        assert apply_rule_corrections(sql, 'invalid input syntax for type date: "female"') == (
            """SELECT "Name" FROM students WHERE sex = 'female'"""
        )

    def test_function_rewrites(self):
        sql = "SELECT MONTH(payment_date), IFNULL(SUM(amount), 0) FROM payments WHERE payment_date < NOW()"
        assert apply_rule_corrections(sql, "function month(date) does not exist") == (
            "SELECT DATE_TRUNC('month', payment_date), COALESCE(SUM(amount), 0) "
            "FROM payments WHERE payment_date < CURRENT_DATE"
        )

    def test_never_adds_predicates(self):
        sql = "SELECT name FROM students LIMIT 10 ORDER BY name"
        corrected = apply_rule_corrections(sql, 'syntax error at or near "ORDER"')
        assert "WHERE" not in corrected.upper()


def build_loop(database, primary=None, status_columns=None):
    validator = SafetyValidator()
    return SyntaxCorrectionLoop(
        executor=QueryExecutor(database, validator),
        orchestrator=make_orchestrator(primary),
        prompt_builder=PromptBuilder(),
        validator=validator,
        injector=DefaultFilterInjector(status_columns or {}),
    )


def statement(sql: str) -> GeneratedStatement:
    return GeneratedStatement.from_provider(sql, ProviderKind.HOSTED_API).extracted()


class TestCorrectionLoop:

    async def test_success_uses_no_budget(self):
        loop = build_loop(FakeDatabase([[{"name": "Asha"}]]))
        budget = RetryBudget(3, 0.0, sleep=FakeSleep())

        result, final = await loop.run(statement("SELECT name FROM students"), "names", budget)

        assert result.success
        assert budget.used == 0
        assert final.correction_count == 0

    async def test_rule_correction_when_no_generator(self):
        def handler(query):
            if "LIMIT 10 ORDER" in query:
                return query_error('syntax error at or near "ORDER"')
            return [{"name": "Asha"}]

        database = FakeDatabase(handler=handler)
        loop = build_loop(database)
        budget = RetryBudget(3, 0.0, sleep=FakeSleep())

        result, final = await loop.run(statement("SELECT name FROM students LIMIT 10 ORDER BY name"), "names", budget)

        assert result.success
        assert final.sql == "SELECT name FROM students ORDER BY name LIMIT 10"
        assert final.correction_count == 1
        assert budget.used == 1

    async def test_generated_correction_preferred(self):
        def handler(query):
            if "nme" in query:
                return query_error('column "nme" does not exist')
            return [{"name": "Asha"}]

        generator = FakeGenerator(ProviderKind.HOSTED_API, ["```sql\nSELECT name FROM students\n```"])
        loop = build_loop(FakeDatabase(handler=handler), primary=generator)

        result, final = await loop.run(statement("SELECT nme FROM students"), "names", RetryBudget(3, 0.0, sleep=FakeSleep()))

        assert result.success
        assert final.sql == "SELECT name FROM students"
        assert "Fix the SQL error" in generator.prompts[0]

    async def test_unsafe_generated_correction_falls_back_to_rules(self):
        def handler(query):
            if '"active"' in query:
                return query_error('column "active" does not exist')
            return [{"name": "Asha"}]

        generator = FakeGenerator(ProviderKind.HOSTED_API, ["DROP TABLE students"])
        loop = build_loop(FakeDatabase(handler=handler), primary=generator)

        result, final = await loop.run(
            statement('SELECT name FROM students WHERE membership_status = "active"'),
            "active names",
            RetryBudget(3, 0.0, sleep=FakeSleep()),
        )

        assert result.success
        assert final.sql == "SELECT name FROM students WHERE membership_status = 'active'"

    async def test_corrected_statement_gets_default_filter(self):
        def handler(query):
            if "nme" in query:
                return query_error('column "nme" does not exist')
            return [{"name": "Asha"}]

        generator = FakeGenerator(ProviderKind.HOSTED_API, ["SELECT name FROM students"])
        loop = build_loop(FakeDatabase(handler=handler), primary=generator, status_columns={"students": "membership_status"})

        _, final = await loop.run(statement("SELECT nme FROM students"), "names", RetryBudget(3, 0.0, sleep=FakeSleep()))

        assert final.sql == "SELECT name FROM students WHERE students.membership_status = 'active'"

    async def test_fatal_error_not_retried(self):
        database = FakeDatabase([query_error("permission denied for table students")])
        loop = build_loop(database)
        budget = RetryBudget(3, 0.0, sleep=FakeSleep())

        with pytest.raises(ExecutionError) as exc_info:
            await loop.run(statement("SELECT name FROM students"), "names", budget)

        assert not isinstance(exc_info.value, CorrectionExhausted)
        assert budget.used == 0
        assert len(database.queries) == 1

    async def test_transient_error_retries_same_statement(self):
        database = FakeDatabase([DatabaseConnectionError("Database connection error: reset by peer"), [{"name": "Asha"}]])
        loop = build_loop(database)
        budget = RetryBudget(3, 0.0, sleep=FakeSleep())

        result, final = await loop.run(statement("SELECT name FROM students"), "names", budget)

        assert result.success
        assert database.queries[0] == database.queries[1]
        assert final.correction_count == 0
        assert budget.used == 1

    async def test_missing_column_named_like_transient_is_corrected(self):
        def handler(query):
            if "connection_id" in query:
                return query_error('column "connection_id" does not exist')
            return [{"id": 1}]

        database = FakeDatabase(handler=handler)
        generator = FakeGenerator(ProviderKind.HOSTED_API, ["SELECT id FROM students"])
        loop = build_loop(database, primary=generator)

        result, final = await loop.run(statement("SELECT connection_id FROM students"), "ids", RetryBudget(3, 0.0, sleep=FakeSleep()))

        assert result.success
        assert final.sql == "SELECT id FROM students"
        assert len(database.queries) == 2

    async def test_budget_exhaustion(self):
        counter = {"n": 0}

        def next_guess(prompt, options):
            counter["n"] += 1
            return f"SELECT col{counter['n']} FROM students"

        database = FakeDatabase([query_error('column "x" does not exist')])
        loop = build_loop(database, primary=FakeGenerator(ProviderKind.HOSTED_API, [next_guess]))
        budget = RetryBudget(2, 0.0, sleep=FakeSleep())

        with pytest.raises(CorrectionExhausted) as exc_info:
            await loop.run(statement("SELECT x FROM students"), "names", budget)

        assert len(database.queries) == 3
        assert budget.used == 2
        assert exc_info.value.details["error"] == 'column "x" does not exist'

    async def test_no_distinct_correction(self):
        database = FakeDatabase([query_error('column "nme" does not exist')])
        loop = build_loop(database)

        with pytest.raises(CorrectionExhausted):
            await loop.run(statement("SELECT nme FROM students"), "names", RetryBudget(3, 0.0, sleep=FakeSleep()))
