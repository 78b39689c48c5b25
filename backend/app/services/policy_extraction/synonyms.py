"""
Synonym Resolver
================

Maps the labels an extraction engine writes back onto canonical field
names.

Alias derivation:
-----------------
- "&" and a standalone "and" are interchangeable at every conjunction
- the last word of each conjunct is toggled between singular and plural

The alias set is derived from a canonical key (conjuncts with singular last
words), so the aliases of any alias are the same set again.

Matching tiers (first tier with any hit wins, later tiers are skipped):
-----------------------------------------------------------------------
1. EXACT           - label equals the canonical name
2. MANUAL_SYNONYM  - label equals a configured synonym
3. NORMALIZED      - normalized label equals a normalized alias
4. SUBSTRING       - normalized containment in either direction
5. TOKEN           - token-set containment after dropping stopwords
"""

import itertools
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r'[^a-z0-9]+')
_CONJUNCTION = re.compile(r'\s*&\s*|\s+and\s+', re.IGNORECASE)

STOPWORDS: FrozenSet[str] = frozenset({
    'a', 'an', 'and', 'the', 'of', 'for', 'on', 'at', 'in', 'to', 'or',
    'per', 'each', 'all', 'any', 'with',
})

_VOWELS = set('aeiou')


class MatchTier(IntEnum):
    """How a returned label was tied to a field. Lower is stronger."""
    EXACT = 1
    MANUAL_SYNONYM = 2
    NORMALIZED = 3
    SUBSTRING = 4
    TOKEN = 5
    POSITIONAL = 6  # single-field response whose label matched nothing


@dataclass(frozen=True)
class LabelMatch:
    field: str
    tier: MatchTier
    score: int = 0


def normalize_label(text: str) -> str:
    """Lower-case, collapse non-alphanumeric runs to one space, trim."""
    if not text:
        return ""
    return _NON_ALNUM.sub(' ', text.lower()).strip()


def singularize(word: str) -> str:
    lower = word.lower()
    if len(lower) > 3 and lower.endswith('ies'):
        return word[:-3] + ('Y' if word[-3:].isupper() else 'y')
    if lower.endswith(('sses', 'xes', 'ches', 'shes')):
        return word[:-2]
    if lower.endswith('s') and len(lower) > 3 and not lower.endswith(('ss', 'us', 'is')):
        return word[:-1]
    return word


def pluralize(word: str) -> str:
    upper = word.isupper()
    lower = word.lower()
    if lower.endswith('y') and len(lower) > 1 and lower[-2] not in _VOWELS:
        plural = word[:-1] + 'ies'
    elif lower.endswith(('s', 'x', 'ch', 'sh')):
        plural = word + 'es'
    else:
        plural = word + 's'
    return plural.upper() if upper else plural


def _segments(name: str) -> List[str]:
    parts = (' '.join(part.split()) for part in _CONJUNCTION.split(name.strip()))
    return [part for part in parts if part]


def _canonical_key(name: str) -> Tuple[str, ...]:
    key = []
    for segment in _segments(name):
        words = segment.split(' ')
        words[-1] = singularize(words[-1])
        key.append(' '.join(words))
    return tuple(key)


def _number_forms(segment: str) -> List[str]:
    """Singular segment plus its plural form when the round trip is stable."""
    words = segment.split(' ')
    last = words[-1]
    forms = [segment]
    if last.isalpha() and len(last) > 2:
        plural = pluralize(last)
        if singularize(plural) == last:
            forms.append(' '.join(words[:-1] + [plural]))
    return forms


def expand_aliases(name: str) -> FrozenSet[str]:
    """
    All conjunction and number variants of a field name.

    Args:
        name: Canonical name or synonym (e.g. "Pregnancy & Childbirth")

    Returns:
        Frozen set of variants, e.g. {"Pregnancy & Childbirth",
        "Pregnancy and Childbirth", "Pregnancy & Childbirths", ...}
    """
    if not name or not name.strip():
        return frozenset()

    key = _canonical_key(name)
    if not key:
        return frozenset()

    aliases: Set[str] = set()
    per_segment = [_number_forms(segment) for segment in key]
    # Number is toggled uniformly across conjuncts
    for use_plural in (False, True):
        segments = []
        for forms in per_segment:
            segments.append(forms[-1] if use_plural else forms[0])
        joiner_slots = len(segments) - 1
        for joiners in itertools.product((' & ', ' and '), repeat=joiner_slots):
            text = segments[0]
            for joiner, segment in zip(joiners, segments[1:]):
                text += joiner + segment
            aliases.add(text)
    return frozenset(aliases)


def _tokens(text: str) -> FrozenSet[str]:
    return frozenset(
        singularize(token) for token in normalize_label(text).split()
        if token not in STOPWORDS
    )


class SynonymResolver:
    """
    Resolves engine-returned labels to canonical field names.

    Example:
        resolver = SynonymResolver(["Policy No", "Insured"], {"Insured": ["Member name"]})
        resolver.resolve("member name")  # LabelMatch("Insured", NORMALIZED)
    """

    def __init__(
        self,
        field_names: Sequence[str],
        manual_synonyms: Optional[Dict[str, Iterable[str]]] = None
    ):
        manual_synonyms = manual_synonyms or {}
        self.field_names: List[str] = list(field_names)
        self._manual: Dict[str, FrozenSet[str]] = {}
        self._aliases: Dict[str, FrozenSet[str]] = {}
        self._normalized: Dict[str, FrozenSet[str]] = {}
        self._token_sets: Dict[str, List[FrozenSet[str]]] = {}

        for name in self.field_names:
            manual = frozenset(s.strip() for s in manual_synonyms.get(name, ()) if s and s.strip())
            aliases = set(expand_aliases(name))
            aliases.add(name)
            for synonym in manual:
                aliases.update(expand_aliases(synonym))
                aliases.add(synonym)
            normalized = frozenset(n for n in (normalize_label(a) for a in aliases) if n)

            self._manual[name] = manual
            self._aliases[name] = frozenset(aliases)
            self._normalized[name] = normalized
            self._token_sets[name] = [t for t in {_tokens(a) for a in aliases} if t]

    def aliases(self, field_name: str) -> FrozenSet[str]:
        return self._aliases.get(field_name, frozenset())

    def resolve(self, label: str) -> Optional[LabelMatch]:
        """
        Resolve one returned label.

        Returns:
            LabelMatch for the winning field, or None when no tier matches
        """
        if label is None:
            return None
        stripped = label.strip()
        if not stripped:
            return None

        for name in self.field_names:
            if stripped == name:
                return LabelMatch(name, MatchTier.EXACT)

        for name in self.field_names:
            if stripped in self._manual[name]:
                return LabelMatch(name, MatchTier.MANUAL_SYNONYM)

        normalized = normalize_label(stripped)
        if not normalized:
            return None

        for name in self.field_names:
            if normalized in self._normalized[name]:
                return LabelMatch(name, MatchTier.NORMALIZED)

        match = self._best_substring(normalized)
        if match is not None:
            return match

        return self._best_token_overlap(stripped)

    def resolve_many(self, labels: Iterable[str]) -> Dict[str, Optional[LabelMatch]]:
        return {label: self.resolve(label) for label in labels}

    def _best_substring(self, normalized: str) -> Optional[LabelMatch]:
        padded = f" {normalized} "
        best: Optional[LabelMatch] = None
        for name in self.field_names:
            for alias in self._normalized[name]:
                padded_alias = f" {alias} "
                if padded_alias in padded or padded in padded_alias:
                    score = min(len(alias), len(normalized))
                    if best is None or score > best.score:
                        best = LabelMatch(name, MatchTier.SUBSTRING, score)
        return best

    def _best_token_overlap(self, label: str) -> Optional[LabelMatch]:
        label_tokens = _tokens(label)
        if not label_tokens:
            return None
        best: Optional[LabelMatch] = None
        for name in self.field_names:
            for alias_tokens in self._token_sets[name]:
                if alias_tokens <= label_tokens or label_tokens <= alias_tokens:
                    score = len(alias_tokens & label_tokens)
                    if best is None or score > best.score:
                        best = LabelMatch(name, MatchTier.TOKEN, score)
        return best

    def synonym_hints(self) -> Dict[str, List[str]]:
        """Alternative phrasings per field, for prompt construction."""
        hints = {}
        for name in self.field_names:
            others = sorted(a for a in self._aliases[name] if a != name)
            if others:
                hints[name] = others
        return hints
