"""
Document Comparison Pipeline
============================

Extracts the same field catalog from two documents and diffs the results
field by field.

Comparison Statuses:
--------------------
- same:      both values present and equal
- missing:   both values absent
- different: anything else (including one side absent)

Concurrency:
------------
The two documents run on a two-worker thread pool. Each side gets its own
PassController, engine, cancel event and field map; the sides only meet in
the comparator. A failure on one side is reported with its error and its
values are treated as absent, so the other side still completes.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .catalog import DocumentFamily
from .errors import ExtractionCancelled
from .extraction_engine import ExtractionEngine, create_engine
from .pipeline import ExtractionResult, PassController
from .settings import ExtractionSettings

logger = logging.getLogger(__name__)


class ComparisonStatus(str, Enum):
    SAME = "same"
    DIFFERENT = "different"
    MISSING = "missing"


@dataclass(frozen=True)
class ComparisonRecord:
    """Comparison of a single field across two documents."""
    field: str
    value1: Optional[str]
    value2: Optional[str]
    status: ComparisonStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'value1': self.value1,
            'value2': self.value2,
            'status': self.status.value,
        }


def compare_field_maps(
    fields: Sequence[str],
    values1: Mapping[str, Optional[str]],
    values2: Mapping[str, Optional[str]]
) -> List[ComparisonRecord]:
    """
    Diff two finalized value maps over the same catalog.

    Pure function: one record per field, in catalog order. Values are
    compared as exact strings.
    """
    records = []
    for name in fields:
        value1, value2 = values1.get(name), values2.get(name)
        if value1 is None and value2 is None:
            status = ComparisonStatus.MISSING
        elif value1 is not None and value2 is not None and value1 == value2:
            status = ComparisonStatus.SAME
        else:
            status = ComparisonStatus.DIFFERENT
        records.append(ComparisonRecord(field=name, value1=value1, value2=value2, status=status))
    return records


def summarize(records: Sequence[ComparisonRecord]) -> Dict[str, int]:
    summary = {status.value: 0 for status in ComparisonStatus}
    for record in records:
        summary[record.status.value] += 1
    summary['total'] = len(records)
    return summary


@dataclass
class SideOutcome:
    """Result or error for one compared document."""
    document_id: str
    result: Optional[ExtractionResult] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    @property
    def values(self) -> Dict[str, Optional[str]]:
        return dict(self.result.values) if self.result is not None else {}

    def to_dict(self, extended: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'document_id': self.document_id,
            'succeeded': self.succeeded,
            'error': self.error,
            'cancelled': self.cancelled,
        }
        if self.result is not None:
            data['result'] = self.result.to_extended_dict() if extended else self.result.to_dict()
        return data


@dataclass
class ComparisonOutput:
    """Complete output of a two-document comparison."""
    family: str
    records: List[ComparisonRecord]
    side1: SideOutcome
    side2: SideOutcome
    total_processing_time_ms: int = 0
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def summary(self) -> Dict[str, int]:
        return summarize(self.records)

    def to_dict(self, extended: bool = False) -> Dict[str, Any]:
        return {
            'family': self.family,
            'records': [r.to_dict() for r in self.records],
            'summary': self.summary,
            'document1': self.side1.to_dict(extended),
            'document2': self.side2.to_dict(extended),
            'total_processing_time_ms': self.total_processing_time_ms,
            'timestamp': self.timestamp,
        }


class ComparisonPipeline:
    """
    Runs two documents through independent pass controllers and compares
    the results.

    Example usage:

        pipeline = ComparisonPipeline(CATALOG.get("ALKOOT"), settings)
        output = pipeline.compare(text_a, text_b)
        for record in output.records:
            print(record.field, record.status.value)
    """

    def __init__(
        self,
        family: DocumentFamily,
        settings: Optional[ExtractionSettings] = None,
        engine_factory: Optional[Callable[[ExtractionSettings], ExtractionEngine]] = None
    ):
        self.family = family
        self.settings = settings or ExtractionSettings()
        self.engine_factory = engine_factory or create_engine

        logger.info(f"Initialized ComparisonPipeline - family: {family.name}")

    def compare(
        self,
        document_text1: str,
        document_text2: str,
        document_id1: str = "document_1",
        document_id2: str = "document_2",
        cancel_event1: Optional[threading.Event] = None,
        cancel_event2: Optional[threading.Event] = None
    ) -> ComparisonOutput:
        """
        Extract both documents concurrently and diff the results.

        Args:
            document_text1: First document text
            document_text2: Second document text
            document_id1: Identifier for the first document
            document_id2: Identifier for the second document
            cancel_event1: Cancels the first document only
            cancel_event2: Cancels the second document only

        Returns:
            ComparisonOutput with one record per catalog field
        """
        start_time = time.time()
        logger.info(f"Comparing {document_id1} and {document_id2} (family {self.family.name})")

        with ThreadPoolExecutor(max_workers=2) as executor:
            future1 = executor.submit(self._run_side, document_text1, document_id1, cancel_event1)
            future2 = executor.submit(self._run_side, document_text2, document_id2, cancel_event2)
            side1 = future1.result()
            side2 = future2.result()

        records = compare_field_maps(self.family.field_names, side1.values, side2.values)
        output = ComparisonOutput(
            family=self.family.name,
            records=records,
            side1=side1,
            side2=side2,
            total_processing_time_ms=int((time.time() - start_time) * 1000),
        )

        logger.info(f"Comparison complete: {output.summary}")
        return output

    def _run_side(
        self,
        document_text: str,
        document_id: str,
        cancel_event: Optional[threading.Event]
    ) -> SideOutcome:
        """Run one document; errors are captured, never raised."""
        try:
            controller = PassController(self.family, self.settings, self.engine_factory(self.settings))
            result = controller.run(document_text, document_id=document_id, cancel_event=cancel_event)
            return SideOutcome(document_id=document_id, result=result)
        except ExtractionCancelled as e:
            logger.warning(f"{document_id}: {e}")
            return SideOutcome(document_id=document_id, error=str(e), cancelled=True)
        except Exception as e:
            logger.error(f"Extraction failed for {document_id}: {e}", exc_info=True)
            return SideOutcome(document_id=document_id, error=str(e))
