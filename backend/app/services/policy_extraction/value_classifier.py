"""
Value Classifier
================

Separates short answers from definitions.

Extraction engines sometimes answer a field with the policy wording that
*defines* it ("This is a fixed amount a member pays before...") instead of
the value itself. Such text is classified as a description and gets
exactly one targeted re-query asking for the embedded short answer.

Classification order (first match wins):
----------------------------------------
1. length <= short threshold                              -> value
2. coverage status term, numeric/currency/percentage,
   or the field's own format pattern                      -> value
3. length > long threshold, or a definitional preamble    -> description
4. anything else                                          -> unknown
"""

import logging
import re
from typing import Optional

from .errors import TransportError
from .formatting import COVERAGE_STATUS_TERMS, FormatHint, matches_format
from .records import Classification, ExtractionRecord
from .settings import ExtractionSettings
from .synonyms import normalize_label
from .table_parser import ParsedOk, TabularResponseParser, strip_fences

logger = logging.getLogger(__name__)

# Citation markers left behind by retrieval-augmented engines:
# [3], [3:1], [3:1†source], 【4:0†source】, {1:2}
CITATION_PATTERN = re.compile(
    r'\[\d+(?::\d+)?(?:†[a-z]+)?\]|【\d+(?::\d+)?(?:†[a-z]+)?】|\{\d+(?::\d+)?(?:†[a-z]+)?\}'
)

SHORT_ANSWER_PATTERNS = [
    re.compile(r'^[\d][\d,.\s]*$'),                                               # 1500 / 1,500.00
    re.compile(r'^(?:[A-Z]{2,3}|\$|£|€)\.?\s*\d[\d,]*(?:\.\d+)?(?:\s*(?:per|/)\s*[\w ]{1,30})?$',
               re.IGNORECASE),                                                    # QAR 500 per visit
    re.compile(r'^\d[\d,]*(?:\.\d+)?\s*(?:[A-Z]{2,3})$', re.IGNORECASE),         # 500 QAR
    re.compile(r'^\d{1,3}(?:\.\d+)?\s*%(?:\s+[\w-]+){0,3}$', re.IGNORECASE),     # 20% / 80% covered
]

DEFINITION_PREAMBLE = re.compile(
    r'^(?:this|these|it|that)\s+(?:is|are|was|refers?)\b'
    r'|^(?:refers?\s+to|means\b|defined\s+as|a\s+fixed\s+amount\b|the\s+amount\s+(?:of|that|which))',
    re.IGNORECASE
)

_QUOTES = '"\'`“”‘’'


def sanitize_value(value: Optional[str]) -> Optional[str]:
    """
    Clean an extracted value before classification.

    Strips citation markers and whitespace. Values with no alphanumeric
    content, or a lone character that is not a percentage, become None.
    """
    if value is None:
        return None
    cleaned = CITATION_PATTERN.sub('', value).strip()
    if not cleaned:
        return None
    if not re.search(r'[A-Za-z0-9]', cleaned):
        logger.debug(f"Rejected value with no alphanumeric content: {value!r}")
        return None
    if len(cleaned) < 2 and '%' not in cleaned:
        logger.debug(f"Rejected suspiciously short value: {value!r}")
        return None
    return cleaned


def is_short_answer(value: str, format_hint: Optional[FormatHint] = None) -> bool:
    stripped = value.strip()
    if stripped.lower().rstrip('.') in COVERAGE_STATUS_TERMS:
        return True
    if any(pattern.match(stripped) for pattern in SHORT_ANSWER_PATTERNS):
        return True
    return matches_format(stripped, format_hint)


class ValueClassifier:
    """
    Classifies extracted values and re-derives descriptions.

    Args:
        settings: Thresholds and the re-derivation switch
        engine: Extraction engine used for targeted re-queries; when None,
            descriptions are kept as-is
    """

    def __init__(self, settings: ExtractionSettings, engine=None):
        self.settings = settings
        self.engine = engine
        self._parser = TabularResponseParser()

    def classify(self, value: Optional[str], format_hint: Optional[FormatHint] = None) -> Optional[Classification]:
        if value is None:
            return None
        text = value.strip()
        if len(text) <= self.settings.short_value_threshold:
            return Classification.VALUE
        if is_short_answer(text, format_hint):
            return Classification.VALUE
        if len(text) > self.settings.long_value_threshold or DEFINITION_PREAMBLE.match(text):
            return Classification.DESCRIPTION
        return Classification.UNKNOWN

    def classify_record(
        self,
        record: ExtractionRecord,
        format_hint: Optional[FormatHint] = None
    ) -> ExtractionRecord:
        """
        Sanitize and classify a record. A description triggers one
        re-derivation; the re-derived answer is classified once more and
        replaces the record.
        """
        record.raw_value = sanitize_value(record.raw_value)
        record.classification = self.classify(record.raw_value, format_hint)

        if record.classification != Classification.DESCRIPTION:
            return record
        if not self.settings.rederive_descriptions or self.engine is None:
            return record

        return self._rederive(record, format_hint)

    def _rederive(self, record: ExtractionRecord, format_hint: Optional[FormatHint]) -> ExtractionRecord:
        try:
            reply = self.engine.rederive(record.field_name, record.raw_value)
        except TransportError as e:
            logger.warning(f"Re-derivation of '{record.field_name}' failed: {e}. Keeping description.")
            return record

        answer = sanitize_value(self.extract_short_answer(reply, record.field_name))
        if answer is None:
            logger.info(f"Re-derivation of '{record.field_name}' returned no answer. Keeping description.")
            return record

        classification = self.classify(answer, format_hint)
        logger.info(
            f"Re-derived '{record.field_name}': {len(record.raw_value)} chars -> "
            f"{answer!r} ({classification.value})"
        )
        return ExtractionRecord(
            field_name=record.field_name,
            raw_value=answer,
            origin_pass=record.origin_pass,
            classification=classification,
            source="rederived",
            matched_label=record.matched_label,
            match_tier=record.match_tier,
            rederived_from=record.raw_value,
        )

    def extract_short_answer(self, reply: Optional[str], field_name: str) -> Optional[str]:
        """
        Pull the answer out of a re-derivation reply. Accepts a one-row
        table, a "Field: answer" line, or a bare answer.
        """
        if not reply or not reply.strip():
            return None

        parsed = self._parser.parse(reply)
        if isinstance(parsed, ParsedOk):
            wanted = normalize_label(field_name)
            for label, value in parsed.rows.items():
                if normalize_label(label) == wanted and value is not None:
                    return self._clean_answer(value)
            for value in parsed.rows.values():
                if value is not None:
                    return self._clean_answer(value)
            return None

        lines = [line.strip() for line in strip_fences(reply).splitlines() if line.strip()]
        if not lines:
            return None
        answer = lines[0]
        label, sep, rest = answer.partition(':')
        if sep and normalize_label(label) == normalize_label(field_name):
            answer = rest
        if answer.strip().lower() == 'null':
            return None
        return self._clean_answer(answer)

    @staticmethod
    def _clean_answer(answer: str) -> str:
        answer = answer.strip().strip(_QUOTES).strip()
        if answer.endswith('.') and not re.search(r'\d\.$', answer):
            answer = answer[:-1].rstrip()
        return answer
