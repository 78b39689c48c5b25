"""Tests for alias derivation and label resolution."""

import pytest

from app.services.policy_extraction.synonyms import (
    MatchTier,
    SynonymResolver,
    expand_aliases,
    normalize_label,
    pluralize,
    singularize,
)


@pytest.mark.parametrize("plural, singular", [
    ("Policies", "Policy"),
    ("Benefits", "Benefit"),
    ("Glasses", "Glass"),
    ("Status", "Status"),
    ("Analysis", "Analysis"),
])
def test_singularize(plural, singular):
    assert singularize(plural) == singular


@pytest.mark.parametrize("singular, plural", [
    ("Policy", "Policies"),
    ("Benefit", "Benefits"),
    ("Glass", "Glasses"),
])
def test_pluralize(singular, plural):
    assert pluralize(singular) == plural


def test_normalize_label():
    assert normalize_label("  Co-Insurance (Inpatient) ") == "co insurance inpatient"
    assert normalize_label("") == ""


def test_expand_aliases_conjunction_and_number():
    aliases = expand_aliases("Pregnancy & Childbirth")

    assert "Pregnancy & Childbirth" in aliases
    assert "Pregnancy and Childbirth" in aliases
    assert "Pregnancies & Childbirths" in aliases
    assert "Pregnancies and Childbirths" in aliases


def test_expand_aliases_is_closed():
    name = "Vaccination & Immunization"
    aliases = expand_aliases(name)
    for alias in aliases:
        assert expand_aliases(alias) == aliases


def test_expand_aliases_single_word_field():
    assert expand_aliases("Dental Benefit") == {"Dental Benefit", "Dental Benefits"}


def test_expand_aliases_empty_name():
    assert expand_aliases("") == frozenset()
    assert expand_aliases("   ") == frozenset()


class TestSynonymResolver:

    @pytest.fixture
    def resolver(self):
        return SynonymResolver(
            [
                "Policy Number",
                "Deductible",
                "Deductible on consultation",
                "Co-insurance on all inpatient treatment",
                "Pregnancy & Childbirth",
            ],
            {"Policy Number": ["Policy No", "Contract number"]},
        )

    def test_exact(self, resolver):
        match = resolver.resolve("Deductible")
        assert match.field == "Deductible"
        assert match.tier == MatchTier.EXACT

    def test_manual_synonym(self, resolver):
        match = resolver.resolve("Policy No")
        assert match.field == "Policy Number"
        assert match.tier == MatchTier.MANUAL_SYNONYM

    def test_normalized_alias(self, resolver):
        match = resolver.resolve("pregnancies and childbirths")
        assert match.field == "Pregnancy & Childbirth"
        assert match.tier == MatchTier.NORMALIZED

    def test_longest_substring_wins(self, resolver):
        match = resolver.resolve("Deductible on consultation (per visit)")
        assert match.field == "Deductible on consultation"
        assert match.tier == MatchTier.SUBSTRING

    def test_token_overlap(self, resolver):
        match = resolver.resolve("Co-insurance for inpatient treatment")
        assert match.field == "Co-insurance on all inpatient treatment"
        assert match.tier == MatchTier.TOKEN

    def test_earlier_tier_wins(self, resolver):
        # "Deductible" is also a substring of "Deductible on consultation"
        assert resolver.resolve("Deductible").tier == MatchTier.EXACT

    @pytest.mark.parametrize("label", ["Premium", "", "   ", None])
    def test_no_match(self, resolver, label):
        assert resolver.resolve(label) is None

    def test_resolve_many(self, resolver):
        matches = resolver.resolve_many(["Policy No", "Premium"])
        assert matches["Policy No"].field == "Policy Number"
        assert matches["Premium"] is None

    def test_synonym_hints(self, resolver):
        hints = resolver.synonym_hints()
        assert "Pregnancy and Childbirth" in hints["Pregnancy & Childbirth"]
        assert "Policy No" in hints["Policy Number"]

    def test_aliases_include_manual_synonym_variants(self, resolver):
        assert "Contract numbers" in resolver.aliases("Policy Number")
