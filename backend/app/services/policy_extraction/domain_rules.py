"""
Domain Rule Engine
==================

Declarative cross-field rules per document family, applied after every
pass.

Rules:
------
- SharedCellRule(primary, secondary): two fields printed in one merged
  table cell. A value present on one side is copied to the other. When
  both are present and differ, the primary wins unless the secondary's
  record is classified strictly better, and a discrepancy is recorded.
- DistinctValueRule(field, other, fallback): a field that must not repeat
  another field's value (e.g. a provider-specific co-insurance that the
  engine copied from the general co-insurance row). On a match the field
  is set to the fallback.
- RequiredMentionRule(field, terms, fallback): a provider-specific rate
  must name its provider. A percentage that mentions none of the terms
  is taken from a general row and the field is set to the fallback.

Every rule is idempotent: applying the engine twice yields the same map
as applying it once. Conflicts are logged and reported, never raised.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .records import Classification, ExtractionRecord, FieldMap, rank_of

logger = logging.getLogger(__name__)

_PERCENTAGE = re.compile(r'\d+(?:\.\d+)?\s*%')


@dataclass
class RuleDiscrepancy:
    """A conflict a rule resolved deterministically."""
    rule: str
    fields: List[str]
    values: Dict[str, Optional[str]]
    resolution: str
    pass_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule': self.rule,
            'fields': self.fields,
            'values': self.values,
            'resolution': self.resolution,
            'pass_number': self.pass_number,
        }


def _value(record: Optional[ExtractionRecord]) -> Optional[str]:
    return record.raw_value if record is not None else None


def _copy_record(source: ExtractionRecord, field_name: str, rule_name: str) -> ExtractionRecord:
    return ExtractionRecord(
        field_name=field_name,
        raw_value=source.raw_value,
        origin_pass=source.origin_pass,
        classification=source.classification,
        source=f"rule:{rule_name}",
        matched_label=source.matched_label,
        match_tier=source.match_tier,
    )


class DomainRule:
    """Base class for cross-field rules."""

    rule_type = "rule"

    @property
    def name(self) -> str:
        raise NotImplementedError

    @property
    def fields(self) -> Tuple[str, ...]:
        raise NotImplementedError

    def apply(self, field_map: FieldMap, pass_number: int = 0) -> List[RuleDiscrepancy]:
        """Apply the rule in place to ``field_map``."""
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class SharedCellRule(DomainRule):
    primary: str
    secondary: str

    rule_type = "shared_cell"

    @property
    def name(self) -> str:
        return f"shared_cell({self.primary}, {self.secondary})"

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.primary, self.secondary)

    def apply(self, field_map: FieldMap, pass_number: int = 0) -> List[RuleDiscrepancy]:
        if self.primary not in field_map or self.secondary not in field_map:
            return []

        primary = field_map[self.primary]
        secondary = field_map[self.secondary]
        primary_value, secondary_value = _value(primary), _value(secondary)

        if primary_value is None and secondary_value is None:
            return []
        if primary_value is None:
            field_map.set(self.primary, _copy_record(secondary, self.primary, self.rule_type))
            logger.debug(f"{self.name}: copied '{secondary_value}' to {self.primary}")
            return []
        if secondary_value is None:
            field_map.set(self.secondary, _copy_record(primary, self.secondary, self.rule_type))
            logger.debug(f"{self.name}: copied '{primary_value}' to {self.secondary}")
            return []
        if primary_value == secondary_value:
            return []

        # The primary wins unless the secondary is classified strictly better
        if rank_of(secondary) > rank_of(primary):
            winner, loser_name, resolution = secondary, self.primary, "secondary_better_classified"
        else:
            winner, loser_name, resolution = primary, self.secondary, "primary_wins"
        field_map.set(loser_name, _copy_record(winner, loser_name, self.rule_type))

        discrepancy = RuleDiscrepancy(
            rule=self.name,
            fields=[self.primary, self.secondary],
            values={self.primary: primary_value, self.secondary: secondary_value},
            resolution=resolution,
            pass_number=pass_number,
        )
        logger.warning(
            f"Shared cell conflict {self.primary}={primary_value!r} vs "
            f"{self.secondary}={secondary_value!r}; using {winner.raw_value!r} ({resolution})"
        )
        return [discrepancy]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.rule_type, 'primary': self.primary, 'secondary': self.secondary}


@dataclass(frozen=True)
class DistinctValueRule(DomainRule):
    field: str
    other: str
    fallback: str = "Not applicable"

    rule_type = "distinct"

    @property
    def name(self) -> str:
        return f"distinct({self.field}, {self.other})"

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.field, self.other)

    def apply(self, field_map: FieldMap, pass_number: int = 0) -> List[RuleDiscrepancy]:
        if self.field not in field_map or self.other not in field_map:
            return []

        record = field_map[self.field]
        value, other_value = _value(record), _value(field_map[self.other])
        if value is None or other_value is None or value == self.fallback:
            return []
        if value.strip() != other_value.strip():
            return []

        field_map.set(self.field, ExtractionRecord(
            field_name=self.field,
            raw_value=self.fallback,
            origin_pass=record.origin_pass,
            classification=Classification.VALUE,
            source=f"rule:{self.rule_type}",
        ))
        logger.warning(
            f"{self.field} repeated the value of {self.other} ({value!r}); set to {self.fallback!r}"
        )
        return [RuleDiscrepancy(
            rule=self.name,
            fields=[self.field, self.other],
            values={self.field: value, self.other: other_value},
            resolution="fallback",
            pass_number=pass_number,
        )]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.rule_type, 'field': self.field, 'other': self.other, 'fallback': self.fallback}


@dataclass(frozen=True)
class RequiredMentionRule(DomainRule):
    field: str
    terms: Tuple[str, ...]
    fallback: str = "Not applicable"

    rule_type = "requires_mention"

    @property
    def name(self) -> str:
        return f"requires_mention({self.field})"

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.field,)

    def apply(self, field_map: FieldMap, pass_number: int = 0) -> List[RuleDiscrepancy]:
        if self.field not in field_map:
            return []

        record = field_map[self.field]
        value = _value(record)
        if value is None or value == self.fallback or not _PERCENTAGE.search(value):
            return []
        lowered = value.lower()
        if any(term.lower() in lowered for term in self.terms):
            return []

        field_map.set(self.field, ExtractionRecord(
            field_name=self.field,
            raw_value=self.fallback,
            origin_pass=record.origin_pass,
            classification=Classification.VALUE,
            source=f"rule:{self.rule_type}",
        ))
        logger.warning(
            f"{self.field} has a rate without naming {', '.join(self.terms)} ({value!r}); "
            f"set to {self.fallback!r}"
        )
        return [RuleDiscrepancy(
            rule=self.name,
            fields=[self.field],
            values={self.field: value},
            resolution="fallback",
            pass_number=pass_number,
        )]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.rule_type, 'field': self.field, 'terms': list(self.terms), 'fallback': self.fallback}


def rule_from_dict(data: Dict[str, Any]) -> DomainRule:
    """Build a rule from its declarative form (as stored in catalog JSON)."""
    rule_type = data.get('type')
    if rule_type == SharedCellRule.rule_type:
        return SharedCellRule(primary=data['primary'], secondary=data['secondary'])
    if rule_type == DistinctValueRule.rule_type:
        return DistinctValueRule(
            field=data['field'],
            other=data['other'],
            fallback=data.get('fallback', "Not applicable"),
        )
    if rule_type == RequiredMentionRule.rule_type:
        return RequiredMentionRule(
            field=data['field'],
            terms=tuple(data['terms']),
            fallback=data.get('fallback', "Not applicable"),
        )
    raise ValueError(f"Unknown rule type: {rule_type!r}")


class DomainRuleEngine:
    """Applies a family's rule table to a field map."""

    def __init__(self, rules: Sequence[DomainRule] = ()):
        self.rules: List[DomainRule] = list(rules)

    def apply(self, field_map: FieldMap, pass_number: int = 0) -> Tuple[FieldMap, List[RuleDiscrepancy]]:
        """
        Apply all rules in order to a copy of ``field_map``.

        Returns:
            (new field map, discrepancies recorded by this application)
        """
        result = field_map.copy()
        discrepancies: List[RuleDiscrepancy] = []
        for rule in self.rules:
            discrepancies.extend(rule.apply(result, pass_number))
        return result, discrepancies
