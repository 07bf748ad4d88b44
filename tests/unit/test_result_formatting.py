"""
Unit tests for ResultFormatter.

Failures and empty results never reach a generator; rows go through the
provider chain with the templated summary as the floor.
"""

from datetime import date

import pytest

from studyroom_ai.domain.base_enums import ProviderKind
from studyroom_ai.domain.responses import ExecutionResult
from studyroom_ai.repositories.prompt_builder import PromptBuilder
from studyroom_ai.repositories.result_formatting import (
    NO_RESULTS_MESSAGE,
    ResultFormatter,
    error_guidance,
    failure_message,
)

from conftest import FakeGenerator, failing_generator, make_orchestrator


def formatter(primary=None) -> ResultFormatter:
    return ResultFormatter(make_orchestrator(primary), PromptBuilder(), today=lambda: date(2025, 10, 10))


def rows_result(rows) -> ExecutionResult:
    return ExecutionResult(success=True, sql="SELECT 1 FROM t", rows=rows, row_count=len(rows))


class TestFailureAndEmpty:

    async def test_failure_includes_guidance_and_reference(self):
        generator = FakeGenerator(ProviderKind.HOSTED_API, ["should not be used"])
        result = ExecutionResult(success=False, sql="SELECT nme FROM students", error='column "nme" does not exist')

        formatted = await formatter(generator).format("names", result, correlation_id="trace-123")

        assert not formatted.success
        assert "A column name was not found" in formatted.presentation
        assert "*Reference: trace-123*" in formatted.presentation
        assert 'column "nme"' not in formatted.presentation
        assert generator.prompts == []

    async def test_no_rows_message(self):
        generator = FakeGenerator(ProviderKind.HOSTED_API, ["should not be used"])

        formatted = await formatter(generator).format("names", rows_result([]))

        assert formatted.success
        assert formatted.presentation == NO_RESULTS_MESSAGE
        assert generator.prompts == []

    @pytest.mark.parametrize("error,expected", [
        ('relation "studnts" does not exist', "Table not found"),
        ("function month(date) does not exist", "Database function error"),
        ('syntax error at or near "FROM"', "SQL syntax error"),
        ("something odd", "Please try rephrasing"),
        (None, "Please try rephrasing"),
    ])
    def test_error_guidance(self, error, expected):
        assert expected in error_guidance(error)

    def test_failure_message_headline(self):
        message = failure_message(None, "abc", headline="The schema could not be loaded.")
        assert message.startswith("❌ **Query Error**\n\nThe schema could not be loaded.")


class TestGeneratedFormatting:

    async def test_generator_answer_used(self):
        generator = FakeGenerator(ProviderKind.HOSTED_API, ["**3 students**"])

        formatted = await formatter(generator).format("how many", rows_result([{"total_students": 3}]))

        assert formatted.presentation == "**3 students**"
        assert formatted.provider == ProviderKind.HOSTED_API
        assert "Original Question" in generator.prompts[0]

    async def test_templated_floor_when_chain_fails(self):
        formatted = await formatter(failing_generator()).format(
            "how many active", rows_result([{"total_active_students": 42}])
        )

        assert formatted.provider == ProviderKind.DETERMINISTIC
        assert "**42 active students**" in formatted.presentation


class TestTemplates:

    def test_student_overview(self):
        text = formatter().templated([{"total_students": 10, "active_students": 8, "students_with_seats": 4}], "overview")
        assert "Active rate: 80%" in text
        assert "Seat assignment rate: 50%" in text

    def test_plain_student_count(self):
        assert "**5 students** in total" in formatter().templated([{"total_students": 5}], "count")

    def test_revenue_summary(self):
        text = formatter().templated([{"total_revenue": 15000, "total_payments": 10}], "revenue")
        assert "₹15,000" in text
        assert "Average Payment:** ₹1,500" in text

    @pytest.mark.parametrize("rate,note", [(85, "High occupancy"), (70, "Good occupancy"), (30, "Low occupancy")])
    def test_occupancy(self, rate, note):
        text = formatter().templated([{"occupied_seats": 1, "total_seats": 2, "occupancy_rate": rate}], "seats")
        assert note in text

    def test_monthly_trend(self):
        rows = [{"month": "2025-09-01T00:00:00", "total_revenue": 1200, "payment_count": 4}]
        assert "**September 2025:** ₹1,200 (4 payments)" in formatter().templated(rows, "monthly revenue")

    def test_sms_list_splits_expired(self):
        rows = [
            {"id": 1, "name": "Asha", "contact_number": "9000000001", "membership_till": "2025-09-30"},
            {"id": 2, "name": "Ravi", "contact_number": "9000000002", "membership_till": "2025-10-20"},
        ]
        text = formatter().templated(rows, "send sms to expired students")

        assert "(1 expired out of 2 total)" in text
        assert "10 days ago" in text
        assert "Expiring Soon (1)" in text
        assert "9000000001" in text.split("SMS Contact List")[1]
        assert "9000000002" not in text.split("SMS Contact List")[1]
        assert "Ready for bulk SMS!" in text

    def test_contact_request_summary(self):
        rows = [{"id": 1, "name": "Asha", "contact_number": "9000000001", "membership_till": "2025-09-30"}]
        text = formatter().templated(rows, "contact details of expired students")
        assert "Contact Information for Expired Students" in text
        assert "Total contacts: 1" in text

    def test_default_json_sample(self):
        rows = [{"id": i} for i in range(8)]
        text = formatter().templated(rows, "ids")
        assert "(8 rows)" in text
        assert "*... and 5 more rows*" in text
