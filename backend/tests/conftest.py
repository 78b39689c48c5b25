"""Pytest configuration and shared fixtures."""

from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routes.policy_extraction import (
    get_engine_factory,
    get_extraction_settings,
    get_registry,
)
from app.services.policy_extraction import (
    DocumentFamily,
    ExtractionEngine,
    ExtractionSettings,
    FieldCatalogRegistry,
    FieldSpec,
    FormatHint,
    SharedCellRule,
)


Reply = Union[str, Exception, Callable[[Sequence[str]], str]]


class StubEngine(ExtractionEngine):
    """
    Scripted extraction engine.

    Each extract() call consumes the next scripted reply. A reply may be a
    string, an exception to raise, or a callable that receives the
    requested fields. Once the script runs out the last reply repeats.
    """

    name = "stub"

    def __init__(self, replies: Sequence[Reply], rederive_replies: Optional[Dict[str, Reply]] = None):
        self.replies: List[Reply] = list(replies)
        self.rederive_replies = rederive_replies or {}
        self.requests: List[List[str]] = []
        self.rederive_calls: List[tuple] = []

    def extract(self, document_text, fields, synonym_hints=None, format_rules=None) -> str:
        self.requests.append(list(fields))
        index = min(len(self.requests) - 1, len(self.replies) - 1)
        return self._play(self.replies[index], fields)

    def rederive(self, field_name, text) -> str:
        self.rederive_calls.append((field_name, text))
        return self._play(self.rederive_replies.get(field_name, ""), [field_name])

    @staticmethod
    def _play(reply: Reply, fields) -> str:
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(fields)
        return reply


def table(*rows) -> str:
    """Two-column response table from (label, value) pairs."""
    lines = ["| Field Name | Value |", "|---|---|"]
    lines.extend(f"| {label} | {value} |" for label, value in rows)
    return "\n".join(lines)


@pytest.fixture
def settings() -> ExtractionSettings:
    return ExtractionSettings(transport_backoff_seconds=0, transport_backoff_max_seconds=0)


@pytest.fixture
def schedule_family() -> DocumentFamily:
    """Small family with format hints and a shared-cell rule."""
    return DocumentFamily(
        name="SCHEDULE",
        fields=(
            FieldSpec("Policy Number", synonyms=frozenset({"Policy No"})),
            FieldSpec("Co-insurance", format_hint=FormatHint.PERCENTAGE),
            FieldSpec("Deductible", format_hint=FormatHint.CURRENCY),
            FieldSpec("Pregnancy & Childbirth", format_hint=FormatHint.COVERAGE_STATUS),
        ),
        rules=(SharedCellRule(primary="Co-insurance", secondary="Deductible"),),
    )


@pytest.fixture
def sample_document() -> str:
    return "\n".join([
        "# Table of Benefits",
        "",
        "Policy No: QLM-2024-0017",
        "",
        "| Benefit | Limit |",
        "|---------|-------|",
        "| Co-insurance / Deductible | Nil |",
        "| Pregnancies and Childbirths | Covered |",
    ])


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def client(settings, schedule_family) -> TestClient:
    """Test client with deterministic settings and registry."""
    registry = FieldCatalogRegistry()
    registry.register(schedule_family)
    app.dependency_overrides[get_extraction_settings] = lambda: settings
    app.dependency_overrides[get_registry] = lambda: registry
    return TestClient(app)


@pytest.fixture
def use_engine():
    """Route every request's engine to the given stub."""
    def install(engine: ExtractionEngine):
        app.dependency_overrides[get_engine_factory] = lambda: (lambda _settings: engine)
        return engine
    return install
