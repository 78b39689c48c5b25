"""Tests for the cross-field rule engine."""

import pytest

from app.services.policy_extraction.domain_rules import (
    DistinctValueRule,
    DomainRuleEngine,
    RequiredMentionRule,
    SharedCellRule,
    rule_from_dict,
)
from app.services.policy_extraction.records import Classification, ExtractionRecord, FieldMap


def make_map(**values):
    """Field map from keyword values; a (value, classification) tuple sets the classification."""
    field_map = FieldMap.empty(values)
    for name, value in values.items():
        if value is None:
            continue
        classification = Classification.VALUE
        if isinstance(value, tuple):
            value, classification = value
        field_map.set(name, ExtractionRecord(name, value, 1, classification))
    return field_map


@pytest.fixture
def shared_cell():
    return DomainRuleEngine([SharedCellRule(primary="CoInsurance", secondary="Deductible")])


def test_shared_cell_copies_present_value(shared_cell):
    field_map = make_map(Deductible=None, CoInsurance="Nil")

    result, discrepancies = shared_cell.apply(field_map, pass_number=1)

    assert result.values() == {"Deductible": "Nil", "CoInsurance": "Nil"}
    assert result["Deductible"].is_value
    assert result["Deductible"].source == "rule:shared_cell"
    assert discrepancies == []


def test_shared_cell_copies_to_primary(shared_cell):
    result, _ = shared_cell.apply(make_map(Deductible="QAR 50", CoInsurance=None))
    assert result.value_of("CoInsurance") == "QAR 50"


def test_shared_cell_leaves_input_untouched(shared_cell):
    field_map = make_map(Deductible=None, CoInsurance="Nil")
    shared_cell.apply(field_map)
    assert field_map.value_of("Deductible") is None


def test_shared_cell_conflict_primary_wins(shared_cell):
    result, discrepancies = shared_cell.apply(make_map(Deductible="QAR 50", CoInsurance="20%"), pass_number=2)

    assert result.values() == {"Deductible": "20%", "CoInsurance": "20%"}
    assert len(discrepancies) == 1
    assert discrepancies[0].resolution == "primary_wins"
    assert discrepancies[0].values == {"CoInsurance": "20%", "Deductible": "QAR 50"}
    assert discrepancies[0].pass_number == 2


def test_shared_cell_conflict_better_classified_secondary_wins(shared_cell):
    field_map = make_map(
        Deductible="QAR 50",
        CoInsurance=("applies to all network providers in the state", Classification.UNKNOWN),
    )

    result, discrepancies = shared_cell.apply(field_map)

    assert result.values() == {"Deductible": "QAR 50", "CoInsurance": "QAR 50"}
    assert discrepancies[0].resolution == "secondary_better_classified"


def test_shared_cell_both_null(shared_cell):
    result, discrepancies = shared_cell.apply(make_map(Deductible=None, CoInsurance=None))
    assert result.values() == {"Deductible": None, "CoInsurance": None}
    assert discrepancies == []


def test_distinct_value_rule_sets_fallback():
    engine = DomainRuleEngine([DistinctValueRule(field="Provider", other="General")])

    result, discrepancies = engine.apply(make_map(Provider="20%", General="20% "))

    assert result.value_of("Provider") == "Not applicable"
    assert result["Provider"].classification == Classification.VALUE
    assert discrepancies[0].resolution == "fallback"


def test_distinct_value_rule_keeps_different_values():
    engine = DomainRuleEngine([DistinctValueRule(field="Provider", other="General")])
    result, discrepancies = engine.apply(make_map(Provider="10%", General="20%"))
    assert result.value_of("Provider") == "10%"
    assert discrepancies == []


@pytest.fixture
def provider_mention():
    return DomainRuleEngine([RequiredMentionRule(field="Provider", terms=("Al Ahli", "Ahli Hospital"))])


def test_required_mention_sets_fallback_for_bare_rate(provider_mention):
    result, discrepancies = provider_mention.apply(make_map(Provider="20%"), pass_number=2)

    assert result.value_of("Provider") == "Not applicable"
    assert result["Provider"].source == "rule:requires_mention"
    assert discrepancies[0].resolution == "fallback"
    assert discrepancies[0].values == {"Provider": "20%"}
    assert discrepancies[0].pass_number == 2


@pytest.mark.parametrize("value", [
    "20% at Al Ahli Hospital",
    "10 % (al ahli hospital only)",
    "Nil",
])
def test_required_mention_keeps_named_or_non_rate_values(provider_mention, value):
    result, discrepancies = provider_mention.apply(make_map(Provider=value))

    assert result.value_of("Provider") == value
    assert discrepancies == []


@pytest.mark.parametrize("values", [
    {"Deductible": None, "CoInsurance": "Nil", "Provider": "20%", "General": "20%"},
    {"Deductible": "QAR 50", "CoInsurance": "20%", "Provider": None, "General": "20%"},
    {"Deductible": None, "CoInsurance": None, "Provider": "5%", "General": "20%"},
])
def test_rules_are_idempotent(values):
    engine = DomainRuleEngine([
        SharedCellRule(primary="CoInsurance", secondary="Deductible"),
        DistinctValueRule(field="Provider", other="General"),
        RequiredMentionRule(field="Provider", terms=("Al Ahli",)),
    ])

    once, _ = engine.apply(make_map(**values))
    twice, discrepancies = engine.apply(once)

    assert twice.values() == once.values()
    assert discrepancies == []


def test_rule_from_dict():
    rule = rule_from_dict({"type": "shared_cell", "primary": "A", "secondary": "B"})
    assert rule == SharedCellRule(primary="A", secondary="B")
    assert rule_from_dict(rule.to_dict()) == rule

    distinct = rule_from_dict({"type": "distinct", "field": "A", "other": "B", "fallback": "Nil"})
    assert distinct.fallback == "Nil"

    mention = rule_from_dict({"type": "requires_mention", "field": "A", "terms": ["Al Ahli"]})
    assert mention == RequiredMentionRule(field="A", terms=("Al Ahli",))
    assert rule_from_dict(mention.to_dict()) == mention


def test_rule_from_dict_unknown_type():
    with pytest.raises(ValueError):
        rule_from_dict({"type": "sum"})
