"""
Unit tests for SafetyValidator.

Covers:
- Shape check (SELECT ... FROM)
- Single statement check (separators and comments)
- Dangerous keyword check (whole tokens only)
"""

import pytest

from studyroom_ai.domain.errors import UnsafeStatementError
from studyroom_ai.repositories.sql_validation import DANGEROUS_KEYWORDS, SafetyValidator, normalize_statement


@pytest.fixture
def validator():
    return SafetyValidator()


class TestShapeCheck:

    def test_select_passes(self, validator):
        assert validator.is_safe("SELECT name FROM students")

    def test_non_select_rejected(self, validator):
        with pytest.raises(UnsafeStatementError) as exc_info:
            validator.validate("WITH x AS (SELECT 1) SELECT * FROM x")
        assert exc_info.value.details["check"] == "shape_check"

    def test_missing_from_rejected(self, validator):
        assert not validator.is_safe("SELECT 1")

    def test_prose_rejected(self, validator):
        assert not validator.is_safe("Sure! Here is the query: SELECT name FROM students")


class TestSingleStatement:

    def test_stacked_statement_rejected(self, validator):
        """A valid first clause does not make a stacked statement acceptable."""
        with pytest.raises(UnsafeStatementError):
            validator.validate("SELECT * FROM students; DROP TABLE users")

    def test_trailing_semicolon_allowed(self, validator):
        assert validator.validate("SELECT name FROM students;") == "SELECT name FROM students"

    @pytest.mark.parametrize("sql", [
        "SELECT name FROM students -- comment",
        "SELECT name /* hidden */ FROM students",
    ])
    def test_comments_rejected(self, validator, sql):
        steps = validator.check(sql)
        assert steps[-1].step_name == "single_statement_check"
        assert not steps[-1].passed


class TestDangerousKeywords:

    @pytest.mark.parametrize("keyword", sorted(DANGEROUS_KEYWORDS))
    def test_whole_token_rejected(self, validator, keyword):
        assert not validator.is_safe(f"SELECT name FROM students WHERE {keyword} = 1")

    @pytest.mark.parametrize("sql", [
        "SELECT name FROM students WHERE membership_till < CURRENT_DATE",
        "SELECT created_at, updated_at FROM students",
        "SELECT create_date FROM expenses",
        "SELECT name FROM students WHERE membership_till < CURRENT_TIMESTAMP",
        "SELECT deleted_flag FROM students",
    ])
    def test_substring_of_identifier_accepted(self, validator, sql):
        assert validator.is_safe(sql)

    def test_case_insensitive(self, validator):
        assert not validator.is_safe("SELECT name FROM students WHERE Drop IS NULL")


class TestChecksStopAtFirstFailure:

    def test_steps_in_order(self, validator):
        steps = validator.check("SELECT name FROM students")
        assert [s.step_name for s in steps] == [
            "shape_check", "single_statement_check", "dangerous_keyword_check"
        ]
        assert all(s.passed for s in steps)

    def test_stops_at_first(self, validator):
        steps = validator.check("DELETE FROM students")
        assert len(steps) == 1
        assert steps[0].step_name == "shape_check"


def test_normalize_statement_strips_fences():
    assert normalize_statement("```sql\nSELECT 1 FROM t;\n```") == "SELECT 1 FROM t"
