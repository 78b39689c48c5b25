"""
Insurance Policy Field Extraction
=================================

A multi-pass pipeline that extracts a fixed catalog of named fields from
linearized insurance documents using a generative extraction engine.

Pipeline Stages:
1. EXTRACT: ask the engine for the unresolved fields as a two-column table
2. PARSE: tolerant table parsing into a label -> value map
3. BIND: map returned labels to canonical fields (synonym resolver)
4. CLASSIFY: value vs description; descriptions get one targeted re-query
5. MERGE: monotone merge into the running field map
6. RULES: per-family cross-field rules
7. Repeat for unresolved fields until done or the pass budget is spent

Design Principles:
- Selective revalidation (accepted values are never re-sent)
- Merge monotonicity (a value is never replaced)
- Partial results instead of failures
- Full per-pass audit trail

Comparison Pipeline:
- Extract two documents concurrently and diff them field by field
- Statuses: same, different, missing
"""

from .catalog import CATALOG, DocumentFamily, FieldCatalogRegistry, FieldSpec, build_adhoc_family
from .comparison_pipeline import (
    ComparisonOutput,
    ComparisonPipeline,
    ComparisonRecord,
    ComparisonStatus,
    compare_field_maps,
)
from .domain_rules import (
    DistinctValueRule,
    DomainRuleEngine,
    RequiredMentionRule,
    RuleDiscrepancy,
    SharedCellRule,
)
from .errors import ExtractionCancelled, ExtractionError, TransportError
from .extraction_engine import ExtractionEngine, LLMExtractionEngine, TableLookupEngine, create_engine
from .formatting import FormatHint, apply_format
from .pipeline import ExtractionResult, PassController, PassState, ResultStatus
from .records import Classification, ExtractionRecord, FieldMap
from .settings import ExtractionSettings
from .synonyms import MatchTier, SynonymResolver, expand_aliases, normalize_label
from .table_parser import ParsedEmpty, ParsedError, ParsedOk, TabularResponseParser
from .value_classifier import ValueClassifier, sanitize_value

__all__ = [
    'PassController',
    'PassState',
    'ResultStatus',
    'ExtractionResult',
    'ExtractionSettings',
    # Catalog
    'CATALOG',
    'DocumentFamily',
    'FieldCatalogRegistry',
    'FieldSpec',
    'build_adhoc_family',
    # Components
    'SynonymResolver',
    'MatchTier',
    'expand_aliases',
    'normalize_label',
    'TabularResponseParser',
    'ParsedOk',
    'ParsedEmpty',
    'ParsedError',
    'ValueClassifier',
    'sanitize_value',
    'DomainRuleEngine',
    'SharedCellRule',
    'DistinctValueRule',
    'RequiredMentionRule',
    'RuleDiscrepancy',
    'FormatHint',
    'apply_format',
    'Classification',
    'ExtractionRecord',
    'FieldMap',
    # Engines
    'ExtractionEngine',
    'LLMExtractionEngine',
    'TableLookupEngine',
    'create_engine',
    # Errors
    'ExtractionError',
    'TransportError',
    'ExtractionCancelled',
    # Comparison pipeline
    'ComparisonPipeline',
    'ComparisonOutput',
    'ComparisonRecord',
    'ComparisonStatus',
    'compare_field_maps',
]
