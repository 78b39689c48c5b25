"""
Policy Extraction API Routes
============================

REST API endpoints for the multi-pass policy field extraction pipeline.

Endpoints:
- POST /api/v1/policy-extraction/extract - Extract fields from document text
- POST /api/v1/policy-extraction/extract/upload - Extract fields from an uploaded .txt/.md file
- POST /api/v1/policy-extraction/compare - Extract two documents and compare them
- POST /api/v1/policy-extraction/compare/maps - Compare two already extracted value maps
- GET /api/v1/policy-extraction/families - List the document families and their fields
- GET /api/v1/policy-extraction/health - Pipeline health
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from app.config import Config
from app.services.policy_extraction import (
    ComparisonPipeline,
    DocumentFamily,
    ExtractionSettings,
    FieldCatalogRegistry,
    PassController,
    build_adhoc_family,
    compare_field_maps,
    create_engine,
)
from app.services.policy_extraction.comparison_pipeline import summarize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/policy-extraction", tags=["Policy Extraction"])

SUPPORTED_UPLOAD_EXTENSIONS = ('.txt', '.md', '.markdown')


# ============================================================================
# Request/Response Models
# ============================================================================

class ExtractRequest(BaseModel):
    """Request for extracting fields from linearized document text."""
    document_text: str = Field(..., min_length=1, description="Linearized document text (markdown tables allowed)")
    family: Optional[str] = Field("QLM", description="Document family name")
    fields: Optional[List[str]] = Field(None, description="Restrict or replace the family's field list")
    synonyms: Optional[Dict[str, List[str]]] = Field(None, description="Extra synonyms per field")
    document_id: Optional[str] = None
    max_passes: Optional[int] = Field(None, ge=1, le=10)
    extended: bool = Field(False, description="Include per-field metadata and pass audit")


class ExtractResponse(BaseModel):
    """Response for extract endpoints."""
    success: bool
    document_id: Optional[str] = None
    family: Optional[str] = None
    status: Optional[str] = None
    values: Dict[str, Optional[str]] = {}
    missing_fields: List[str] = []
    unresolved_fields: List[str] = []
    fields: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    audit: Optional[Dict[str, Any]] = None
    statistics: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class CompareRequest(BaseModel):
    """Request for comparing two documents."""
    document_text1: str = Field(..., min_length=1)
    document_text2: str = Field(..., min_length=1)
    family: Optional[str] = "QLM"
    fields: Optional[List[str]] = None
    synonyms: Optional[Dict[str, List[str]]] = None
    document_id1: str = "document_1"
    document_id2: str = "document_2"
    max_passes: Optional[int] = Field(None, ge=1, le=10)
    extended: bool = False


class CompareMapsRequest(BaseModel):
    """Request for comparing two already extracted value maps."""
    values1: Dict[str, Optional[str]]
    values2: Dict[str, Optional[str]]
    fields: Optional[List[str]] = Field(None, description="Field order; defaults to the family or the union of keys")
    family: Optional[str] = None


class ComparisonRecordOutput(BaseModel):
    """Comparison of a single field."""
    field: str
    value1: Optional[str] = None
    value2: Optional[str] = None
    status: str = Field(..., description="same | different | missing")


class CompareResponse(BaseModel):
    """Response for comparison endpoints."""
    success: bool
    family: Optional[str] = None
    records: List[ComparisonRecordOutput] = []
    summary: Dict[str, int] = {}
    document1: Optional[Dict[str, Any]] = None
    document2: Optional[Dict[str, Any]] = None
    total_processing_time_ms: int = 0
    error: Optional[str] = None


class FamiliesResponse(BaseModel):
    """Response containing the document family catalog."""
    total_families: int
    families: List[Dict[str, Any]]


# ============================================================================
# Dependencies
# ============================================================================

def get_extraction_settings() -> ExtractionSettings:
    """Settings built from the environment configuration."""
    return Config.get_extraction_settings()


@lru_cache()
def get_registry() -> FieldCatalogRegistry:
    """Built-in families plus any loaded from FIELD_CATALOG_PATH."""
    registry = FieldCatalogRegistry()
    if Config.FIELD_CATALOG_PATH:
        registry.load_json(Config.FIELD_CATALOG_PATH)
    logger.info(f"Initialized field catalog registry: {registry.names}")
    return registry


def get_engine_factory() -> Callable:
    """Factory producing one extraction engine per document run."""
    return create_engine


def _resolve_family(
    registry: FieldCatalogRegistry,
    family_name: Optional[str],
    fields: Optional[List[str]],
    synonyms: Optional[Dict[str, List[str]]]
) -> DocumentFamily:
    """
    Pick the family for a request. A field list inside a known family
    keeps that family's hints and rules; any other list becomes an ad hoc
    family.
    """
    try:
        if fields:
            if family_name and family_name in registry:
                family = registry.get(family_name)
                if set(fields) <= set(family.field_names):
                    return family.subset(fields).with_synonyms(synonyms)
            return build_adhoc_family(fields, synonyms)

        if not family_name:
            raise HTTPException(status_code=400, detail="Either family or fields is required")
        return registry.get(family_name).with_synonyms(synonyms)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]) if e.args else str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _build_extract_response(controller: PassController, result, extended: bool) -> ExtractResponse:
    data = result.to_extended_dict() if extended else result.to_dict()
    return ExtractResponse(
        success=True,
        document_id=result.document_id,
        family=result.family,
        status=result.status.value,
        values=result.values,
        missing_fields=result.missing_fields,
        unresolved_fields=result.unresolved_fields,
        fields=data.get('fields'),
        metadata=data.get('metadata'),
        audit=data.get('audit'),
        statistics=controller.get_statistics(result),
    )


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/extract", response_model=ExtractResponse)
async def extract_fields(
    request: ExtractRequest,
    settings: ExtractionSettings = Depends(get_extraction_settings),
    registry: FieldCatalogRegistry = Depends(get_registry),
    engine_factory: Callable = Depends(get_engine_factory)
) -> ExtractResponse:
    """
    Extract a family's fields from linearized document text.

    The document runs through the multi-pass pipeline:
    1. Extraction of all fields
    2. Parsing, synonym binding and value classification
    3. Domain rules
    4. Targeted passes for fields that are still unresolved

    Returns formatted values, the result status and statistics.
    """
    try:
        if not request.document_text.strip():
            raise HTTPException(status_code=400, detail="Empty document text")

        family = _resolve_family(registry, request.family, request.fields, request.synonyms)
        run_settings = settings.with_overrides(max_passes=request.max_passes)

        logger.info(f"Extracting {len(family.fields)} fields ({family.name}) from {len(request.document_text)} chars")

        controller = PassController(family, run_settings, engine_factory(run_settings))
        result = await run_in_threadpool(controller.run, request.document_text, request.document_id)
        return _build_extract_response(controller, result, request.extended)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Extraction error: {e}", exc_info=True)
        return ExtractResponse(
            success=False,
            error=str(e)
        )


@router.post("/extract/upload", response_model=ExtractResponse)
async def extract_fields_from_file(
    file: UploadFile = File(..., description="Text or markdown file with the linearized document"),
    family: str = Query("QLM", description="Document family name"),
    document_id: Optional[str] = Query(None, description="Optional document identifier"),
    extended: bool = Query(False, description="Include per-field metadata and pass audit"),
    settings: ExtractionSettings = Depends(get_extraction_settings),
    registry: FieldCatalogRegistry = Depends(get_registry),
    engine_factory: Callable = Depends(get_engine_factory)
) -> ExtractResponse:
    """
    Extract a family's fields from an uploaded text or markdown file.

    PDF conversion is not performed here; upload already linearized text.
    """
    try:
        if not file.filename or not file.filename.lower().endswith(SUPPORTED_UPLOAD_EXTENSIONS):
            raise HTTPException(
                status_code=400,
                detail=f"Only {', '.join(SUPPORTED_UPLOAD_EXTENSIONS)} files are supported"
            )

        content = await file.read()
        if len(content) == 0:
            raise HTTPException(
                status_code=400,
                detail="Empty file uploaded"
            )

        try:
            document_text = content.decode('utf-8')
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="File is not valid UTF-8 text")

        if not document_text.strip():
            raise HTTPException(status_code=400, detail="Empty document text")

        selected = _resolve_family(registry, family, None, None)
        logger.info(f"Extracting from upload: {file.filename} ({len(content)} bytes, family {selected.name})")

        controller = PassController(selected, settings, engine_factory(settings))
        result = await run_in_threadpool(controller.run, document_text, document_id or file.filename)
        return _build_extract_response(controller, result, extended)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Extraction error: {e}", exc_info=True)
        return ExtractResponse(
            success=False,
            error=str(e)
        )


@router.post("/compare", response_model=CompareResponse)
async def compare_documents(
    request: CompareRequest,
    settings: ExtractionSettings = Depends(get_extraction_settings),
    registry: FieldCatalogRegistry = Depends(get_registry),
    engine_factory: Callable = Depends(get_engine_factory)
) -> CompareResponse:
    """
    Extract the same catalog from two documents concurrently and compare
    the values field by field.

    A failure on one side does not fail the comparison: that side's error
    is reported and its values count as missing.
    """
    try:
        family = _resolve_family(registry, request.family, request.fields, request.synonyms)
        run_settings = settings.with_overrides(max_passes=request.max_passes)

        pipeline = ComparisonPipeline(family, run_settings, engine_factory)
        output = await run_in_threadpool(
            pipeline.compare,
            request.document_text1,
            request.document_text2,
            request.document_id1,
            request.document_id2,
        )
        data = output.to_dict(extended=request.extended)

        return CompareResponse(
            success=True,
            family=output.family,
            records=[ComparisonRecordOutput(**r) for r in data['records']],
            summary=data['summary'],
            document1=data['document1'],
            document2=data['document2'],
            total_processing_time_ms=output.total_processing_time_ms,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Comparison error: {e}", exc_info=True)
        return CompareResponse(
            success=False,
            error=str(e)
        )


@router.post("/compare/maps", response_model=CompareResponse)
async def compare_value_maps(
    request: CompareMapsRequest,
    registry: FieldCatalogRegistry = Depends(get_registry)
) -> CompareResponse:
    """
    Compare two already extracted value maps without running extraction.
    """
    try:
        if request.fields:
            fields = request.fields
        elif request.family:
            fields = _resolve_family(registry, request.family, None, None).field_names
        else:
            fields = list(dict.fromkeys(list(request.values1) + list(request.values2)))

        records = compare_field_maps(fields, request.values1, request.values2)
        return CompareResponse(
            success=True,
            family=request.family,
            records=[ComparisonRecordOutput(**r.to_dict()) for r in records],
            summary=summarize(records),
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Comparison error: {e}", exc_info=True)
        return CompareResponse(
            success=False,
            error=str(e)
        )


@router.get("/families", response_model=FamiliesResponse)
async def list_families(
    registry: FieldCatalogRegistry = Depends(get_registry)
) -> FamiliesResponse:
    """
    Get the document families with their fields, synonyms, format hints
    and rules.
    """
    families = [family.to_dict() for family in registry.families]
    return FamiliesResponse(total_families=len(families), families=families)


@router.get("/health")
async def health_check(
    settings: ExtractionSettings = Depends(get_extraction_settings),
    registry: FieldCatalogRegistry = Depends(get_registry)
) -> Dict[str, Any]:
    """
    Health check for the extraction pipeline.

    Returns status of all pipeline components.
    """
    try:
        return {
            "status": "healthy",
            "components": {
                "extraction_engine": {
                    "status": "ready" if settings.has_llm_credentials else "fallback",
                    "mode": "llm" if settings.has_llm_credentials else "table_lookup",
                    "model": settings.llm_model if settings.has_llm_credentials else None
                },
                "pass_controller": {
                    "status": "ready",
                    "max_passes": settings.max_passes
                },
                "comparison_pipeline": "ready"
            },
            "families": registry.names
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }
