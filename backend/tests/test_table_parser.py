"""Tests for the tolerant two-column table parser."""

import pytest

from app.services.policy_extraction.table_parser import (
    ParsedEmpty,
    ParsedError,
    ParsedOk,
    TabularResponseParser,
    is_separator_line,
    outcome_name,
    strip_fences,
)


@pytest.fixture
def parser():
    return TabularResponseParser()


def test_markdown_table_with_header(parser):
    result = parser.parse(
        "| Field Name | Value |\n"
        "|------------|-------|\n"
        "| Plan | Gold |\n"
        "| Deductible | QAR 100 |\n"
    )
    assert isinstance(result, ParsedOk)
    assert result.rows == {"Plan": "Gold", "Deductible": "QAR 100"}
    assert list(result.rows) == ["Plan", "Deductible"]


def test_fenced_table_inside_prose(parser):
    result = parser.parse(
        "Here are the values you asked for:\n"
        "```markdown\n"
        "| Field Name | Value |\n"
        "|---|---|\n"
        "| Plan | Gold |\n"
        "```\n"
        "Let me know if you need anything else."
    )
    assert result.rows == {"Plan": "Gold"}


def test_rows_without_outer_delimiters(parser):
    result = parser.parse("Plan | Gold\nDeductible | QAR 100")
    assert result.rows == {"Plan": "Gold", "Deductible": "QAR 100"}


def test_null_and_empty_values_become_none(parser):
    result = parser.parse("| Plan | null |\n| Deductible |  |\n| Dental | Covered |")
    assert isinstance(result, ParsedOk)
    assert result.rows == {"Plan": None, "Deductible": None, "Dental": "Covered"}


def test_first_non_null_value_wins(parser):
    result = parser.parse("| Plan | null |\n| Plan | Gold |\n| Plan | Silver |")
    assert result.rows == {"Plan": "Gold"}


def test_emphasis_and_extra_columns(parser):
    result = parser.parse("| **Plan** | `Gold` | see page 3 |")
    assert result.rows == {"Plan": "Gold"}


def test_unsplittable_lines_are_skipped(parser):
    result = parser.parse("| just a note |\n|  | orphan value |\n| Plan | Gold |")
    assert result.rows == {"Plan": "Gold"}


def test_only_one_header_row_is_dropped(parser):
    result = parser.parse(
        "| Field Name | Value |\n"
        "|---|---|\n"
        "| Plan Name | Value Care |\n"
        "| Deductible | QAR 100 |"
    )
    assert result.rows == {"Plan Name": "Value Care", "Deductible": "QAR 100"}


def test_headerless_table_keeps_header_like_rows(parser):
    result = parser.parse("| Plan Name | Value Care |\n| Deductible | QAR 100 |")
    assert result.rows == {"Plan Name": "Value Care", "Deductible": "QAR 100"}


@pytest.mark.parametrize("line", [
    "| Name | Result |",
    "| Label | Answer |",
    "| Attribute | Values |",
])
def test_header_needs_field_and_value_words(parser, line):
    result = parser.parse(line)
    assert len(result.rows) == 1


def test_header_only_is_empty(parser):
    result = parser.parse("| Field | Value |\n|---|---|")
    assert isinstance(result, ParsedEmpty)
    assert result.rows == {}
    assert not result.ok


def test_single_cell_table_is_empty(parser):
    assert isinstance(parser.parse("| nothing found |"), ParsedEmpty)


@pytest.mark.parametrize("text", [None, "", "   ", "I could not find these fields in the document."])
def test_no_table_is_error(parser, text):
    result = parser.parse(text)
    assert isinstance(result, ParsedError)
    assert result.reason
    assert result.rows == {}


def test_custom_delimiter():
    parser = TabularResponseParser(delimiter=';')
    assert parser.parse("Plan ; Gold").rows == {"Plan": "Gold"}


def test_empty_delimiter_rejected():
    with pytest.raises(ValueError):
        TabularResponseParser(delimiter='')


def test_outcome_name(parser):
    assert outcome_name(parser.parse("| Plan | Gold |")) == "ok"
    assert outcome_name(parser.parse("| Field | Value |")) == "empty"
    assert outcome_name(parser.parse("nothing")) == "error"


def test_strip_fences_without_closing_fence():
    assert strip_fences("```\n| Plan | Gold |") == "| Plan | Gold |"


def test_is_separator_line():
    assert is_separator_line("|---|:---:|")
    assert not is_separator_line("| Plan | Gold |")
    assert not is_separator_line("|   |   |")


def test_iter_table_rows_skips_prose_and_separators(parser):
    document = (
        "Schedule of benefits\n"
        "| Benefit | Limit |\n"
        "|---|---|\n"
        "| Dental | QAR 2,000 |\n"
        "Dental: see annex"
    )
    assert list(parser.iter_table_rows(document)) == [["Benefit", "Limit"], ["Dental", "QAR 2,000"]]
