"""
Field Catalog
=============

Document families and the fields extracted from them.

A document family (one payer's benefit schedule layout) declares:
- the ordered canonical field names
- manual synonyms and a format hint per field
- its cross-field rule table

Built-in families cover the QLM and ALKOOT schedules. More families can be
loaded from a JSON file::

    {
      "families": [
        {
          "name": "OUTPATIENT_SCHEDULE",
          "description": "...",
          "fields": [
            {"name": "Deductible", "format": "currency", "synonyms": ["Excess"]}
          ],
          "rules": [
            {"type": "shared_cell", "primary": "Co-insurance", "secondary": "Deductible"},
            {"type": "distinct", "field": "A", "other": "B", "fallback": "Not applicable"}
          ]
        }
      ]
    }
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from .domain_rules import DistinctValueRule, DomainRule, RequiredMentionRule, rule_from_dict
from .formatting import FORMAT_INSTRUCTIONS, FormatHint
from .synonyms import SynonymResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSpec:
    """One extractable field. Immutable for the duration of a run."""
    canonical_name: str
    synonyms: FrozenSet[str] = frozenset()
    format_hint: Optional[FormatHint] = None
    required: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.canonical_name,
            'synonyms': sorted(self.synonyms),
            'format': self.format_hint.value if self.format_hint else None,
            'required': self.required,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldSpec":
        name = (data.get('name') or '').strip()
        if not name:
            raise ValueError("Field definition without a name")
        fmt = data.get('format')
        return cls(
            canonical_name=name,
            synonyms=frozenset(s for s in data.get('synonyms', []) if s),
            format_hint=FormatHint(fmt) if fmt else None,
            required=bool(data.get('required', False)),
            description=data.get('description', ''),
        )


@dataclass(frozen=True)
class DocumentFamily:
    """A named field catalog plus its rule table."""
    name: str
    fields: Sequence[FieldSpec]
    rules: Sequence[DomainRule] = field(default_factory=tuple)
    description: str = ""

    def __post_init__(self):
        if not self.fields:
            raise ValueError(f"Document family '{self.name}' has no fields")
        names = [spec.canonical_name for spec in self.fields]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate field names in family '{self.name}': {sorted(duplicates)}")
        for rule in self.rules:
            unknown = [f for f in rule.fields if f not in names]
            if unknown:
                raise ValueError(f"Rule {rule.name} in family '{self.name}' references unknown fields {unknown}")

    @property
    def field_names(self) -> List[str]:
        return [spec.canonical_name for spec in self.fields]

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.canonical_name == name:
                return spec
        return None

    def format_hint(self, name: str) -> Optional[FormatHint]:
        spec = self.get_field(name)
        return spec.format_hint if spec else None

    def manual_synonyms(self) -> Dict[str, List[str]]:
        return {spec.canonical_name: sorted(spec.synonyms) for spec in self.fields if spec.synonyms}

    def resolver(self) -> SynonymResolver:
        return SynonymResolver(self.field_names, self.manual_synonyms())

    def synonym_hints(self) -> Dict[str, List[str]]:
        """Manual synonyms only; derived variants are covered by the prompt rules."""
        return self.manual_synonyms()

    def format_rules(self) -> Dict[str, str]:
        return {
            spec.canonical_name: FORMAT_INSTRUCTIONS[spec.format_hint]
            for spec in self.fields
            if spec.format_hint and spec.format_hint in FORMAT_INSTRUCTIONS
        }

    def subset(self, field_names: Iterable[str]) -> "DocumentFamily":
        """Family restricted to some fields, keeping only rules fully inside them."""
        wanted = set(field_names)
        missing = wanted - set(self.field_names)
        if missing:
            raise KeyError(f"Fields not in family '{self.name}': {sorted(missing)}")
        fields = [spec for spec in self.fields if spec.canonical_name in wanted]
        rules = [rule for rule in self.rules if set(rule.fields) <= wanted]
        return DocumentFamily(name=self.name, fields=fields, rules=rules, description=self.description)

    def with_synonyms(self, extra: Optional[Dict[str, Iterable[str]]]) -> "DocumentFamily":
        """Copy of the family with caller-supplied synonyms added."""
        if not extra:
            return self
        unknown = set(extra) - set(self.field_names)
        if unknown:
            raise KeyError(f"Synonyms given for fields not in family '{self.name}': {sorted(unknown)}")
        fields = [
            replace(spec, synonyms=spec.synonyms | frozenset(s for s in extra.get(spec.canonical_name, ()) if s))
            for spec in self.fields
        ]
        return DocumentFamily(name=self.name, fields=fields, rules=self.rules, description=self.description)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'fields': [spec.to_dict() for spec in self.fields],
            'rules': [rule.to_dict() for rule in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentFamily":
        name = (data.get('name') or '').strip()
        if not name:
            raise ValueError("Document family without a name")
        return cls(
            name=name,
            fields=tuple(FieldSpec.from_dict(f) for f in data.get('fields', [])),
            rules=tuple(rule_from_dict(r) for r in data.get('rules', [])),
            description=data.get('description', ''),
        )


def build_adhoc_family(
    field_names: Sequence[str],
    synonyms: Optional[Dict[str, Iterable[str]]] = None,
    name: str = "CUSTOM"
) -> DocumentFamily:
    """Family for a caller-supplied field list (no format hints, no rules)."""
    synonyms = synonyms or {}
    cleaned = [n.strip() for n in field_names if n and n.strip()]
    if not cleaned:
        raise ValueError("At least one field name is required")
    return DocumentFamily(
        name=name,
        fields=tuple(
            FieldSpec(canonical_name=n, synonyms=frozenset(synonyms.get(n, ())))
            for n in dict.fromkeys(cleaned)
        ),
    )


def _spec(name, format_hint=None, synonyms=(), required=False, description=""):
    return FieldSpec(
        canonical_name=name,
        synonyms=frozenset(synonyms),
        format_hint=format_hint,
        required=required,
        description=description,
    )


_QLM = DocumentFamily(
    name="QLM",
    description="QLM medical insurance table of benefits",
    fields=(
        _spec("Insured", required=True,
              synonyms=["Policyholder", "Member name", "Insured person", "Beneficiary name"],
              description="Name of the insured person or policyholder"),
        _spec("Policy No", required=True,
              synonyms=["Policy number", "Policy ID", "Contract number", "Policy reference"],
              description="Unique policy identification number"),
        _spec("Period of Insurance", required=True,
              synonyms=["Policy period", "Coverage period"],
              description="Coverage period dates (start to end)"),
        _spec("Plan", required=True, synonyms=["Plan name", "Category"],
              description="Insurance plan type or category"),
        _spec("For Eligible Medical Expenses at Al Ahli Hospital", FormatHint.PERCENT_COVERED,
              description="Coverage percentage for medical expenses at Al Ahli Hospital"),
        _spec("Inpatient Deductible", FormatHint.CURRENCY,
              description="Amount paid before inpatient coverage begins"),
        _spec("Deductible per each outpatient consultation", FormatHint.CURRENCY,
              synonyms=["Outpatient deductible", "Consultation deductible"],
              description="Fixed amount paid per outpatient visit"),
        _spec("Vaccination of children", FormatHint.COVERAGE_STATUS,
              synonyms=["Child vaccination", "Vaccinations"],
              description="Coverage for child vaccination services"),
        _spec("Psychiatric Treatment", FormatHint.COVERAGE_STATUS,
              description="Mental health and psychiatric care coverage"),
        _spec("Dental Copayment", FormatHint.CURRENCY,
              description="Member contribution for dental services"),
        _spec("Maternity Copayment", FormatHint.CURRENCY,
              description="Member contribution for maternity services"),
        _spec("Optical Copayment", FormatHint.CURRENCY,
              description="Member contribution for optical services"),
    ),
)

_ALKOOT = DocumentFamily(
    name="ALKOOT",
    description="Al Koot medical insurance schedule of benefits",
    fields=(
        _spec("Policy Number", required=True, synonyms=["Policy No", "Policy ID"]),
        _spec("Category", required=True, synonyms=["Plan", "Class"]),
        _spec("Effective Date", FormatHint.DATE, required=True,
              synonyms=["Start date", "Inception date"]),
        _spec("Expiry Date", FormatHint.DATE, required=True, synonyms=["End date"]),
        _spec("Provider-specific co-insurance at Al Ahli Hospital", FormatHint.PERCENTAGE,
              description="Co-insurance that applies only at Al Ahli Hospital"),
        _spec("Co-insurance on all inpatient treatment", FormatHint.PERCENTAGE,
              synonyms=["Inpatient co-insurance"]),
        _spec("Deductible on consultation", FormatHint.CURRENCY,
              synonyms=["Consultation deductible"]),
        _spec("Vaccination & Immunization", FormatHint.COVERAGE_STATUS),
        _spec("Psychiatric treatment & Psychotherapy", FormatHint.COVERAGE_STATUS),
        _spec("Pregnancy & Childbirth", FormatHint.COVERAGE_STATUS, synonyms=["Maternity"]),
        _spec("Dental Benefit", FormatHint.COVERAGE_STATUS),
        _spec("Optical Benefit", FormatHint.COVERAGE_STATUS),
    ),
    rules=(
        DistinctValueRule(
            field="Provider-specific co-insurance at Al Ahli Hospital",
            other="Co-insurance on all inpatient treatment",
        ),
        RequiredMentionRule(
            field="Provider-specific co-insurance at Al Ahli Hospital",
            terms=("Al Ahli", "Al-Ahli", "Ahli Hospital"),
        ),
    ),
)


class FieldCatalogRegistry:
    """
    Registry of document families.

    Thread-safe for reads: families are immutable once registered.
    """

    BUILTIN_FAMILIES = (_QLM, _ALKOOT)

    def __init__(self, families: Iterable[DocumentFamily] = BUILTIN_FAMILIES):
        self._families: Dict[str, DocumentFamily] = {}
        for family in families:
            self.register(family)

    def register(self, family: DocumentFamily):
        key = family.name.upper()
        if key in self._families:
            logger.info(f"Replacing document family '{family.name}'")
        self._families[key] = family

    def get(self, name: str) -> DocumentFamily:
        try:
            return self._families[name.upper()]
        except KeyError:
            raise KeyError(f"Unknown document family '{name}'. Available: {self.names}") from None

    def __contains__(self, name: str) -> bool:
        return name.upper() in self._families

    @property
    def names(self) -> List[str]:
        return [family.name for family in self._families.values()]

    @property
    def families(self) -> List[DocumentFamily]:
        return list(self._families.values())

    def load_json(self, path) -> List[str]:
        """
        Register every family defined in a JSON catalog file.

        Returns:
            Names of the families loaded
        """
        path = Path(path)
        with path.open('r', encoding='utf-8') as f:
            data = json.load(f)

        loaded = []
        for entry in data.get('families', []):
            family = DocumentFamily.from_dict(entry)
            self.register(family)
            loaded.append(family.name)
        logger.info(f"Loaded {len(loaded)} document families from {path}: {loaded}")
        return loaded


# Default registry with the built-in families
CATALOG = FieldCatalogRegistry()
