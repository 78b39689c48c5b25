"""
Multi-Pass Extraction Pipeline
==============================

The pass controller that turns unreliable engine output into a stable
field map.

Pass Lifecycle:
---------------
INIT -> EXTRACT(1) -> PARSE -> CLASSIFY -> RULES -> DONE
                                                 \\-> EXTRACT(n+1, unresolved fields only)

Terminal states:
- DONE:      every field holds an accepted value
- EXHAUSTED: the pass budget is spent (partial result, not an error)

Design Principles:
------------------
- Selective revalidation: a field holding a value is never sent again
- Monotone merge: value > unknown > description > null, and a value is
  never replaced
- Domain rules run after every pass
- A transport failure abandons the pass and restores the previous
  snapshot; it never fails the document
- One field map per document; nothing is shared between runs

Output Schema:
--------------
{
  "document_id": string,
  "family": string,
  "status": "complete" | "partial" | "failed",
  "values": {field_name: string | null},
  "missing_fields": [field_name]
}
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .catalog import DocumentFamily
from .domain_rules import DomainRuleEngine, RuleDiscrepancy
from .errors import ExtractionCancelled, TransportError
from .extraction_engine import ExtractionEngine, create_engine
from .formatting import apply_format
from .records import Classification, ExtractionRecord, FieldMap
from .settings import ExtractionSettings
from .synonyms import LabelMatch, MatchTier
from .table_parser import ParseResult, TabularResponseParser, outcome_name
from .value_classifier import ValueClassifier

logger = logging.getLogger(__name__)

PIPELINE_VERSION = "1.0.0"


class PassState(str, Enum):
    """States of the per-document pass state machine."""
    INIT = "init"
    EXTRACT = "extract"
    PARSE = "parse"
    CLASSIFY = "classify"
    RULES = "rules"
    DONE = "done"
    EXHAUSTED = "exhausted"


class ResultStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class PassReport:
    """What happened in one pass."""
    pass_number: int
    requested_fields: List[str]
    resolved_fields: List[str] = field(default_factory=list)
    parse_outcome: Optional[str] = None
    rows_parsed: int = 0
    rows_bound: int = 0
    status: str = "completed"  # completed | abandoned
    error: Optional[str] = None
    processing_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractionResult:
    """
    Final result for one document.

    Contains formatted values plus per-field metadata and the pass audit.
    """
    document_id: str
    family: str
    values: Dict[str, Optional[str]]
    field_map: FieldMap
    state: PassState
    status: ResultStatus
    missing_fields: List[str] = field(default_factory=list)
    unresolved_fields: List[str] = field(default_factory=list)

    # Audit
    passes: List[PassReport] = field(default_factory=list)
    discrepancies: List[RuleDiscrepancy] = field(default_factory=list)
    state_trace: List[str] = field(default_factory=list)
    engine: str = ""

    # Processing metadata
    processing_start: str = ""
    processing_end: str = ""
    total_processing_time_ms: int = 0
    pipeline_version: str = PIPELINE_VERSION
    input_hash: str = ""

    @property
    def passes_used(self) -> int:
        return len(self.passes)

    def to_dict(self) -> Dict[str, Any]:
        """Minimal output schema."""
        return {
            'document_id': self.document_id,
            'family': self.family,
            'status': self.status.value,
            'values': dict(self.values),
            'missing_fields': list(self.missing_fields),
        }

    def to_extended_dict(self) -> Dict[str, Any]:
        """Output with per-field metadata and audit trail."""
        return {
            **self.to_dict(),
            'unresolved_fields': list(self.unresolved_fields),
            'fields': self.field_map.to_dict(),
            'metadata': {
                'state': self.state.value,
                'passes_used': self.passes_used,
                'engine': self.engine,
                'processing_start': self.processing_start,
                'processing_end': self.processing_end,
                'total_processing_time_ms': self.total_processing_time_ms,
                'pipeline_version': self.pipeline_version,
                'input_hash': self.input_hash,
            },
            'audit': {
                'passes': [p.to_dict() for p in self.passes],
                'discrepancies': [d.to_dict() for d in self.discrepancies],
                'state_trace': list(self.state_trace),
            }
        }


class PassController:
    """
    Runs the extraction-validation-merge loop for one document family.

    A controller holds no per-document state, so one instance can run
    documents one after another. Concurrent runs need separate engines
    only when the engine itself is not thread-safe.

    Example usage:

        controller = PassController(CATALOG.get("QLM"), settings)
        result = controller.run(markdown_text, document_id="policy-17")

        result.to_dict()            # values + status
        result.to_extended_dict()   # per-field metadata + pass audit
    """

    def __init__(
        self,
        family: DocumentFamily,
        settings: Optional[ExtractionSettings] = None,
        engine: Optional[ExtractionEngine] = None
    ):
        self.family = family
        self.settings = settings or ExtractionSettings()
        self.engine = engine or create_engine(self.settings)

        self.parser = TabularResponseParser()
        self.resolver = family.resolver()
        self.classifier = ValueClassifier(self.settings, self.engine)
        self.rule_engine = DomainRuleEngine(family.rules if self.settings.apply_domain_rules else ())

        logger.info(
            f"Initialized PassController - family: {family.name}, "
            f"fields: {len(family.fields)}, engine: {self.engine.name}, "
            f"max passes: {self.settings.max_passes}"
        )

    def run(
        self,
        document_text: str,
        document_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ExtractionResult:
        """
        Extract the family's fields from one document.

        Args:
            document_text: Linearized document text (markdown tables allowed)
            document_id: Optional identifier; derived from the input hash if absent
            cancel_event: Set to cancel this document between passes

        Returns:
            ExtractionResult in state DONE or EXHAUSTED

        Raises:
            ValueError: empty document text
            ExtractionCancelled: cancel_event was set
        """
        if not document_text or not document_text.strip():
            raise ValueError("Document text is empty")

        start_time = time.time()
        processing_start = datetime.utcnow().isoformat()
        input_hash = self._hash_input(document_text)
        document_id = document_id or f"doc_{input_hash}"

        field_map = FieldMap.empty(self.family.field_names)
        reports: List[PassReport] = []
        discrepancies: List[RuleDiscrepancy] = []
        trace = [PassState.INIT.value]

        logger.info(f"Processing document {document_id} ({len(document_text)} chars, family {self.family.name})")

        state = PassState.EXHAUSTED
        for pass_number in range(1, self.settings.max_passes + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Document {document_id} cancelled before pass {pass_number}")
                raise ExtractionCancelled(document_id, pass_number)

            requested = field_map.unresolved_fields()
            if not requested:
                state = PassState.DONE
                break

            field_map, report, pass_discrepancies = self._run_pass(
                document_text, field_map, requested, pass_number, trace
            )
            reports.append(report)
            discrepancies.extend(pass_discrepancies)

            if not field_map.unresolved_fields():
                state = PassState.DONE
                break

        trace.append(state.value)
        result = self._finalize(field_map, state, document_id)
        result.passes = reports
        result.discrepancies = discrepancies
        result.state_trace = trace
        result.engine = self.engine.name
        result.input_hash = input_hash
        result.processing_start = processing_start
        result.processing_end = datetime.utcnow().isoformat()
        result.total_processing_time_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"Document {document_id}: {result.status.value} after {len(reports)} pass(es) - "
            f"{len(field_map.resolved_fields())}/{len(field_map)} fields resolved"
        )
        return result

    def _run_pass(
        self,
        document_text: str,
        field_map: FieldMap,
        requested: List[str],
        pass_number: int,
        trace: List[str]
    ):
        """One EXTRACT -> PARSE -> CLASSIFY -> RULES cycle."""
        pass_start = time.time()
        report = PassReport(pass_number=pass_number, requested_fields=list(requested))
        snapshot = field_map.copy()

        logger.info(f"Pass {pass_number}: requesting {len(requested)} field(s)")
        try:
            trace.append(f"{PassState.EXTRACT.value}:{pass_number}")
            raw = self.engine.extract(
                document_text,
                requested,
                synonym_hints={k: v for k, v in self.family.synonym_hints().items() if k in requested},
                format_rules={k: v for k, v in self.family.format_rules().items() if k in requested},
            )

            trace.append(PassState.PARSE.value)
            parsed = self.parser.parse(raw)
            report.parse_outcome = outcome_name(parsed)
            report.rows_parsed = len(parsed.rows)
            if report.parse_outcome != "ok":
                logger.warning(f"Pass {pass_number}: response not usable ({getattr(parsed, 'reason', 'no rows')})")

            partial = self._bind(parsed, requested, pass_number)
            report.rows_bound = len(partial)

            trace.append(PassState.CLASSIFY.value)
            for name, record in partial.items():
                partial[name] = self.classifier.classify_record(record, self.family.format_hint(name))

            changed = field_map.merge(partial)
            logger.debug(f"Pass {pass_number}: merged {changed}")

            trace.append(PassState.RULES.value)
            field_map, discrepancies = self.rule_engine.apply(field_map, pass_number)

        except TransportError as e:
            logger.error(f"Pass {pass_number} abandoned: {e}. Restoring previous field map.")
            report.status = "abandoned"
            report.error = str(e)
            report.processing_time_ms = int((time.time() - pass_start) * 1000)
            return snapshot, report, []

        report.resolved_fields = [name for name in requested if name in field_map.resolved_fields()]
        report.processing_time_ms = int((time.time() - pass_start) * 1000)
        return field_map, report, discrepancies

    def _bind(
        self,
        parsed: ParseResult,
        requested: List[str],
        pass_number: int
    ) -> Dict[str, ExtractionRecord]:
        """
        Tie parsed rows to requested fields. The strongest match tier per
        field wins; null rows are not bound.
        """
        wanted = set(requested)
        matches: Dict[str, LabelMatch] = {}
        bound: Dict[str, ExtractionRecord] = {}

        for label, value in parsed.rows.items():
            if value is None:
                continue
            match = self.resolver.resolve(label)
            if match is None or match.field not in wanted:
                continue
            current = matches.get(match.field)
            if current is not None and current.tier <= match.tier:
                continue
            matches[match.field] = match
            bound[match.field] = ExtractionRecord(
                field_name=match.field,
                raw_value=value,
                origin_pass=pass_number,
                matched_label=label,
                match_tier=match.tier.name.lower(),
            )

        # Targeted single-field request answered with one row whose label
        # names no field of the family
        if not bound and len(requested) == 1:
            rows = [(label, value) for label, value in parsed.rows.items() if value is not None]
            if len(rows) == 1 and self.resolver.resolve(rows[0][0]) is None:
                label, value = rows[0]
                bound[requested[0]] = ExtractionRecord(
                    field_name=requested[0],
                    raw_value=value,
                    origin_pass=pass_number,
                    matched_label=label,
                    match_tier=MatchTier.POSITIONAL.name.lower(),
                )
        return bound

    def _finalize(self, field_map: FieldMap, state: PassState, document_id: str) -> ExtractionResult:
        values: Dict[str, Optional[str]] = {}
        for name, record in field_map.items():
            value = record.raw_value if record is not None else None
            if value is not None and record.is_value and self.settings.apply_formatting:
                value = apply_format(value, self.family.format_hint(name), self.settings.currency_code)
            values[name] = value

        missing = [name for name, value in values.items() if value is None]
        if state == PassState.DONE:
            status = ResultStatus.COMPLETE
        elif len(missing) == len(values):
            status = ResultStatus.FAILED
        else:
            status = ResultStatus.PARTIAL

        return ExtractionResult(
            document_id=document_id,
            family=self.family.name,
            values=values,
            field_map=field_map,
            state=state,
            status=status,
            missing_fields=missing,
            unresolved_fields=field_map.unresolved_fields(),
        )

    def _hash_input(self, document_text: str) -> str:
        """Hash of the input for reproducibility checks."""
        input_data = {
            'family': self.family.name,
            'fields': self.family.field_names,
            'text': document_text,
        }
        return hashlib.sha256(json.dumps(input_data, sort_keys=True).encode()).hexdigest()[:16]

    def get_statistics(self, result: ExtractionResult) -> Dict[str, Any]:
        """
        Summary statistics for an extraction result.

        Useful for monitoring and quality assurance.
        """
        classification_counts = {c.value: 0 for c in Classification}
        tier_counts: Dict[str, int] = {}
        rederived = 0
        from_rules = 0

        for _, record in result.field_map.items():
            if record is None or record.classification is None:
                continue
            classification_counts[record.classification.value] += 1
            if record.match_tier:
                tier_counts[record.match_tier] = tier_counts.get(record.match_tier, 0) + 1
            if record.rederived_from is not None:
                rederived += 1
            if record.source.startswith("rule:"):
                from_rules += 1

        total = len(result.values)
        filled = total - len(result.missing_fields)
        resolved = classification_counts[Classification.VALUE.value]

        return {
            'document_id': result.document_id,
            'family': result.family,
            'status': result.status.value,
            'state': result.state.value,
            'total_fields': total,
            'filled_fields': filled,
            'resolved_fields': resolved,
            'fill_rate': filled / total if total > 0 else 0.0,
            'resolution_rate': resolved / total if total > 0 else 0.0,
            'classification_distribution': classification_counts,
            'match_tier_distribution': tier_counts,
            'rederived_count': rederived,
            'rule_filled_count': from_rules,
            'discrepancy_count': len(result.discrepancies),
            'passes_used': result.passes_used,
            'abandoned_passes': sum(1 for p in result.passes if p.status == "abandoned"),
            'processing_time_ms': result.total_processing_time_ms,
        }
