"""Tests for document families and the catalog registry."""

import json
from pathlib import Path

import pytest

from app.services.policy_extraction import (
    CATALOG,
    DocumentFamily,
    FieldCatalogRegistry,
    FieldSpec,
    FormatHint,
    SharedCellRule,
    build_adhoc_family,
)

SHIPPED_CATALOG = Path(__file__).parent.parent / "data" / "document_families.json"


def test_builtin_families():
    assert CATALOG.names == ["QLM", "ALKOOT"]
    qlm = CATALOG.get("qlm")
    assert len(qlm.fields) == 12
    assert qlm.field_names[0] == "Insured"
    assert "qlm" in CATALOG


def test_unknown_family():
    with pytest.raises(KeyError, match="Unknown document family"):
        CATALOG.get("NOPE")


def test_family_validation():
    with pytest.raises(ValueError):
        DocumentFamily(name="EMPTY", fields=())
    with pytest.raises(ValueError):
        DocumentFamily(name="DUP", fields=(FieldSpec("A"), FieldSpec("A")))
    with pytest.raises(ValueError):
        DocumentFamily(name="RULE", fields=(FieldSpec("A"),), rules=(SharedCellRule("A", "B"),))


def test_subset_keeps_rules_inside_selection(schedule_family):
    both = schedule_family.subset(["Deductible", "Co-insurance"])
    one = schedule_family.subset(["Deductible"])

    assert both.field_names == ["Co-insurance", "Deductible"]
    assert len(both.rules) == 1
    assert one.rules == []
    assert one.format_hint("Deductible") == FormatHint.CURRENCY

    with pytest.raises(KeyError):
        schedule_family.subset(["Premium"])


def test_with_synonyms(schedule_family):
    family = schedule_family.with_synonyms({"Deductible": ["Excess"]})

    assert "Excess" in family.get_field("Deductible").synonyms
    assert family.resolver().resolve("Excess").field == "Deductible"
    assert schedule_family.with_synonyms(None) is schedule_family
    with pytest.raises(KeyError):
        schedule_family.with_synonyms({"Premium": ["Cost"]})


def test_format_rules_and_hints(schedule_family):
    rules = schedule_family.format_rules()
    assert set(rules) == {"Co-insurance", "Deductible", "Pregnancy & Childbirth"}
    assert schedule_family.synonym_hints() == {"Policy Number": ["Policy No"]}


def test_build_adhoc_family():
    family = build_adhoc_family([" Plan ", "Dental", "Plan", ""], {"Dental": ["Teeth"]})

    assert family.name == "CUSTOM"
    assert family.field_names == ["Plan", "Dental"]
    assert family.manual_synonyms() == {"Dental": ["Teeth"]}

    with pytest.raises(ValueError):
        build_adhoc_family(["", "  "])


def test_family_dict_round_trip(schedule_family):
    restored = DocumentFamily.from_dict(json.loads(json.dumps(schedule_family.to_dict())))

    assert restored.field_names == schedule_family.field_names
    assert restored.rules[0] == schedule_family.rules[0]
    assert restored.format_hint("Co-insurance") == FormatHint.PERCENTAGE


def test_load_json(tmp_path):
    path = tmp_path / "families.json"
    path.write_text(json.dumps({
        "families": [{
            "name": "Dental_Only",
            "fields": [{"name": "Dental", "format": "coverage_status", "synonyms": ["Teeth"]}],
        }]
    }))
    registry = FieldCatalogRegistry()

    loaded = registry.load_json(path)

    assert loaded == ["Dental_Only"]
    assert registry.get("DENTAL_ONLY").format_hint("Dental") == FormatHint.COVERAGE_STATUS
    assert len(registry.families) == 3


def test_load_json_rejects_bad_rule(tmp_path):
    path = tmp_path / "families.json"
    path.write_text(json.dumps({
        "families": [{"name": "BAD", "fields": [{"name": "A"}], "rules": [{"type": "sum"}]}]
    }))

    with pytest.raises(ValueError):
        FieldCatalogRegistry().load_json(path)


def test_shipped_catalog_loads():
    registry = FieldCatalogRegistry(families=())

    assert registry.load_json(SHIPPED_CATALOG) == ["OUTPATIENT_SCHEDULE"]
    family = registry.get("outpatient_schedule")
    assert family.rules[0] == SharedCellRule(primary="Co-insurance", secondary="Deductible")
