"""
Extraction Engine Adapter
=========================

Sends a field catalog and the document text to a generative text service
and returns its raw text answer.

The adapter contract is deliberately narrow:

    extract(document_text, fields, synonym_hints, format_rules) -> str
    rederive(field_name, text) -> str

Output is whatever the engine wrote. Parsing, classification and merging
happen downstream, so engines may return non-conformant text freely.

Engines:
--------
- LLMExtractionEngine: OpenAI-compatible /chat/completions endpoint,
  temperature 0, bounded retry with exponential backoff on transport
  failures only.
- TableLookupEngine: deterministic fallback used when no API key is
  configured. Looks fields up in the markdown tables embedded in the
  document text and answers in the same tabular format.

Failure policy:
---------------
Connection errors, timeouts and non-2xx responses raise TransportError
(retried). A response without content returns "" and is never retried.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransportError
from .formatting import COVERAGE_STATUS_TERMS
from .settings import ExtractionSettings
from .synonyms import MatchTier, SynonymResolver
from .table_parser import TabularResponseParser
from .value_classifier import sanitize_value

logger = logging.getLogger(__name__)


class ExtractionEngine:
    """Interface every extraction engine implements."""

    name = "base"

    @property
    def is_available(self) -> bool:
        return True

    def extract(
        self,
        document_text: str,
        fields: Sequence[str],
        synonym_hints: Optional[Dict[str, List[str]]] = None,
        format_rules: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Ask for the values of ``fields``.

        Returns:
            Raw engine output, expected to contain a two-column
            ``Field Name | Value`` table
        """
        raise NotImplementedError

    def rederive(self, field_name: str, text: str) -> str:
        """Ask for the short answer embedded in a descriptive ``text``."""
        raise NotImplementedError


def render_table(fields: Sequence[str], values: Dict[str, Optional[str]]) -> str:
    """Render values as the two-column markdown table the parser expects."""
    lines = ["| Field Name | Value |", "|------------|-------|"]
    for name in fields:
        value = values.get(name)
        lines.append(f"| {name} | {value if value is not None else 'null'} |")
    return "\n".join(lines)


class LLMExtractionEngine(ExtractionEngine):
    """
    Extraction through an OpenAI-compatible chat completions API.

    Example usage:

        engine = LLMExtractionEngine(settings)
        raw = engine.extract(markdown, ["Policy No", "Plan"])
    """

    name = "llm"

    SYSTEM_PROMPT = """You are a precise insurance document data extractor.

RULES:
1. Extract ONLY what is explicitly present in the document
2. NEVER infer or invent values; use null when a field is not found
3. Return the short value (amount, percentage, status, name, date), not the policy wording that defines the field
4. Preserve the document's formatting (currency, %, dates)
5. Return ONLY a markdown table with exactly 2 columns: Field Name and Value"""

    EXTRACTION_PROMPT_TEMPLATE = """Extract the fields listed below from the insurance document.

SEARCH STRATEGY:
- Check EVERY table in the document, including provider-specific tables
- Field names are usually in the first column, values in the adjacent column
- Treat "&" and "and" as equivalent, and ignore case and singular/plural differences
- Look in text sections if a field is not found in any table
{synonyms_section}{format_section}
OUTPUT FORMAT (MUST FOLLOW EXACTLY):
| Field Name | Value |
|------------|-------|
| Field 1    | Value 1 |
| Field 2    | null |

IMPORTANT:
- Match field names EXACTLY as listed
- Use null for missing fields (without quotes)

FIELDS TO EXTRACT (exact names):
{field_list}

DOCUMENT:

{document_text}

Return ONLY the markdown table."""

    REDERIVE_PROMPT_TEMPLATE = """The following text was extracted for the insurance field "{field_name}", but it describes the field instead of giving its value.

TEXT:
"{text}"

Return ONLY the short value for "{field_name}" contained in the text (for example an amount, a percentage, Covered, Not covered or Nil).
Answer with the value alone, or null if the text contains no value."""

    def __init__(self, settings: ExtractionSettings):
        if not settings.llm_api_key:
            raise ValueError("LLMExtractionEngine requires an API key")
        self.settings = settings
        self.api_base = settings.llm_api_base.rstrip('/')
        self.model_name = settings.llm_model
        self.timeout = settings.llm_timeout

        logger.info(f"Initialized LLM extraction engine - model: {self.model_name}, base: {self.api_base}")

    def extract(
        self,
        document_text: str,
        fields: Sequence[str],
        synonym_hints: Optional[Dict[str, List[str]]] = None,
        format_rules: Optional[Dict[str, str]] = None
    ) -> str:
        prompt = self.build_extraction_prompt(document_text, fields, synonym_hints, format_rules)
        return self._complete(prompt)

    def rederive(self, field_name: str, text: str) -> str:
        prompt = self.REDERIVE_PROMPT_TEMPLATE.format(field_name=field_name, text=text)
        return self._complete(prompt)

    def build_extraction_prompt(
        self,
        document_text: str,
        fields: Sequence[str],
        synonym_hints: Optional[Dict[str, List[str]]] = None,
        format_rules: Optional[Dict[str, str]] = None
    ) -> str:
        synonym_hints = {k: v for k, v in (synonym_hints or {}).items() if k in fields and v}
        format_rules = {k: v for k, v in (format_rules or {}).items() if k in fields}

        synonyms_section = ""
        if synonym_hints:
            lines = [f'- "{name}" may also appear as: {", ".join(hints)}' for name, hints in synonym_hints.items()]
            synonyms_section = "\nFIELD SYNONYMS:\n" + "\n".join(lines) + "\n"

        format_section = ""
        if format_rules:
            lines = [f'- "{name}": {rule}' for name, rule in format_rules.items()]
            format_section = "\nEXPECTED VALUE FORMATS:\n" + "\n".join(lines) + "\n"

        return self.EXTRACTION_PROMPT_TEMPLATE.format(
            synonyms_section=synonyms_section,
            format_section=format_section,
            field_list="\n".join(f"- {name}" for name in fields),
            document_text=document_text,
        )

    def _complete(self, prompt: str) -> str:
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.transport_max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.transport_backoff_seconds,
                max=self.settings.transport_backoff_max_seconds
            ),
            retry=retry_if_exception_type(TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._post, prompt)

    def _post(self, prompt: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.settings.llm_api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.llm_max_tokens
        }

        try:
            response = requests.post(
                f"{self.api_base}/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to extraction engine failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Extraction engine returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            data = response.json()
            content = data['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Extraction engine response had no content: {e}")
            return ""

        tokens_used = data.get('usage', {}).get('total_tokens', 0)
        logger.debug(f"Extraction engine answered ({tokens_used} tokens)")
        return content or ""


class TableLookupEngine(ExtractionEngine):
    """
    Deterministic engine that reads values from tables in the document.

    Used when no API key is configured. Each document table row is matched
    to the requested fields with the synonym resolver; the value is the
    first non-empty cell after the label.
    """

    name = "table_lookup"

    # Looser tiers are too noisy against whole-document tables
    MAX_TIER = MatchTier.SUBSTRING

    _KEY_VALUE_LINE = re.compile(r'^\s*([^:|]{2,80}?)\s*:\s*(.+?)\s*$')
    _AMOUNT = re.compile(r'(?:QAR|QR)\.?\s*\d[\d,]*(?:\.\d+)?|\d[\d,]*(?:\.\d+)?\s*(?:QAR|QR)\b|\d{1,3}(?:\.\d+)?\s*%', re.IGNORECASE)
    _SENTENCE_SPLIT = re.compile(r'(?<=[.!?])\s+')

    def __init__(self, settings: Optional[ExtractionSettings] = None):
        self.settings = settings or ExtractionSettings()
        self.parser = TabularResponseParser()

    def extract(
        self,
        document_text: str,
        fields: Sequence[str],
        synonym_hints: Optional[Dict[str, List[str]]] = None,
        format_rules: Optional[Dict[str, str]] = None
    ) -> str:
        resolver = SynonymResolver(fields, synonym_hints)
        found: Dict[str, Optional[str]] = {}
        best_tier: Dict[str, MatchTier] = {}

        def offer(label: str, value: str, max_tier: MatchTier):
            match = resolver.resolve(label)
            if match is None or match.tier > max_tier:
                return
            if match.field in best_tier and best_tier[match.field] <= match.tier:
                return
            best_tier[match.field] = match.tier
            found[match.field] = value

        for cells in self.parser.iter_table_rows(document_text):
            label = cells[0]
            value = next((c for c in cells[1:] if c), None)
            if label and value:
                offer(label, value, self.MAX_TIER)

        # "Label: value" lines outside tables only count on close matches
        for line in (document_text or '').splitlines():
            if line.strip().startswith('|'):
                continue
            match = self._KEY_VALUE_LINE.match(line)
            if match:
                offer(match.group(1), match.group(2), MatchTier.NORMALIZED)

        logger.info(f"Table lookup resolved {len(found)}/{len(fields)} fields")
        return render_table(fields, found)

    def rederive(self, field_name: str, text: str) -> str:
        if not text:
            return ""

        sentences = [s.strip() for s in self._SENTENCE_SPLIT.split(text.strip()) if s.strip()]
        if len(sentences) > 1:
            last = sanitize_value(sentences[-1].rstrip('.'))
            if last and len(last) <= self.settings.short_value_threshold:
                return last

        amount = self._AMOUNT.search(text)
        if amount:
            return amount.group(0)

        lower = text.lower()
        # Longer terms first so "not covered" wins over "covered"
        for term in sorted(COVERAGE_STATUS_TERMS, key=len, reverse=True):
            if re.search(rf'\b{re.escape(term)}\b', lower):
                return term[:1].upper() + term[1:]
        return ""


def create_engine(settings: ExtractionSettings) -> ExtractionEngine:
    """LLM engine when credentials are configured, table lookup otherwise."""
    if settings.has_llm_credentials:
        return LLMExtractionEngine(settings)
    logger.warning(
        "LLM API key not configured. Using table lookup engine. "
        "Set LLM_API_KEY or OPENAI_API_KEY environment variable."
    )
    return TableLookupEngine(settings)
