"""Tests for the policy extraction API routes."""

from app.services.policy_extraction import TableLookupEngine

from conftest import StubEngine, table

PREFIX = "/api/v1/policy-extraction"


def test_app_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_pipeline_health(client):
    data = client.get(f"{PREFIX}/health").json()

    assert data["status"] == "healthy"
    assert data["components"]["extraction_engine"]["mode"] == "table_lookup"
    assert "SCHEDULE" in data["families"]


def test_list_families(client):
    data = client.get(f"{PREFIX}/families").json()

    names = [family["name"] for family in data["families"]]
    assert data["total_families"] == 3
    assert names == ["QLM", "ALKOOT", "SCHEDULE"]


def test_extract(client, use_engine):
    use_engine(StubEngine([table(
        ("Policy No", "P-1"),
        ("Co-insurance", "Nil"),
        ("Pregnancy & Childbirth", "covered"),
    )]))

    response = client.post(f"{PREFIX}/extract", json={
        "document_text": "Table of benefits",
        "family": "schedule",
        "document_id": "policy-17",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "complete"
    assert data["document_id"] == "policy-17"
    assert data["values"] == {
        "Policy Number": "P-1",
        "Co-insurance": "Nil",
        "Deductible": "Nil",
        "Pregnancy & Childbirth": "Covered",
    }
    assert data["statistics"]["passes_used"] == 1
    assert data["audit"] is None


def test_extract_extended_with_adhoc_fields(client, use_engine):
    engine = use_engine(StubEngine([
        table(("Network", "Restricted")),
        table(("Annual Limit", "null")),
    ]))

    data = client.post(f"{PREFIX}/extract", json={
        "document_text": "Table of benefits",
        "fields": ["Network", "Annual Limit"],
        "synonyms": {"Annual Limit": ["Overall limit"]},
        "max_passes": 2,
        "extended": True,
    }).json()

    assert data["family"] == "CUSTOM"
    assert data["status"] == "partial"
    assert data["missing_fields"] == ["Annual Limit"]
    assert len(data["audit"]["passes"]) == 2
    assert engine.requests == [["Network", "Annual Limit"], ["Annual Limit"]]


def test_extract_field_subset_of_family(client, use_engine):
    use_engine(StubEngine([table(("Deductible", "1500"))]))

    data = client.post(f"{PREFIX}/extract", json={
        "document_text": "Table of benefits",
        "family": "SCHEDULE",
        "fields": ["Deductible"],
    }).json()

    assert data["family"] == "SCHEDULE"
    assert data["values"] == {"Deductible": "QAR 1,500"}


def test_extract_unknown_family(client):
    response = client.post(f"{PREFIX}/extract", json={"document_text": "text", "family": "NOPE"})
    assert response.status_code == 404


def test_extract_without_family_or_fields(client):
    response = client.post(f"{PREFIX}/extract", json={"document_text": "text", "family": None})
    assert response.status_code == 400


def test_extract_blank_document(client):
    assert client.post(f"{PREFIX}/extract", json={"document_text": ""}).status_code == 422
    assert client.post(f"{PREFIX}/extract", json={"document_text": "   "}).status_code == 400


def test_extract_engine_crash_is_reported(client, use_engine):
    use_engine(StubEngine([RuntimeError("engine crashed")]))

    data = client.post(f"{PREFIX}/extract", json={"document_text": "text", "family": "SCHEDULE"}).json()

    assert data["success"] is False
    assert "engine crashed" in data["error"]


def test_upload(client, sample_document, use_engine):
    use_engine(TableLookupEngine())

    response = client.post(
        f"{PREFIX}/extract/upload",
        params={"family": "SCHEDULE"},
        files={"file": ("schedule.md", sample_document.encode("utf-8"), "text/markdown")},
    )

    data = response.json()
    assert data["success"] is True
    assert data["document_id"] == "schedule.md"
    assert data["values"]["Policy Number"] == "QLM-2024-0017"


def test_upload_rejects_pdf(client):
    response = client.post(
        f"{PREFIX}/extract/upload",
        files={"file": ("schedule.pdf", b"%PDF-1.7", "application/pdf")},
    )
    assert response.status_code == 400


def test_upload_rejects_empty_file(client):
    response = client.post(
        f"{PREFIX}/extract/upload",
        files={"file": ("schedule.txt", b"", "text/plain")},
    )
    assert response.status_code == 400


def test_compare(client, use_engine):
    use_engine(TableLookupEngine())

    data = client.post(f"{PREFIX}/compare", json={
        "document_text1": "| Plan | Gold |\n| Dental | Covered |",
        "document_text2": "| Plan | Gold |\n| Dental | Not covered |",
        "fields": ["Plan", "Dental", "Optical"],
        "max_passes": 1,
    }).json()

    assert data["success"] is True
    assert [(r["field"], r["status"]) for r in data["records"]] == [
        ("Plan", "same"),
        ("Dental", "different"),
        ("Optical", "missing"),
    ]
    assert data["summary"] == {"same": 1, "different": 1, "missing": 1, "total": 3}
    assert data["document1"]["succeeded"] is True


def test_compare_maps(client):
    data = client.post(f"{PREFIX}/compare/maps", json={
        "values1": {"A": "1", "B": None, "C": "1"},
        "values2": {"A": "1", "B": None, "C": "2"},
    }).json()

    assert [r["status"] for r in data["records"]] == ["same", "missing", "different"]


def test_compare_maps_uses_family_order(client):
    data = client.post(f"{PREFIX}/compare/maps", json={
        "values1": {"Deductible": "Nil"},
        "values2": {"Deductible": "Nil"},
        "family": "SCHEDULE",
    }).json()

    assert [r["field"] for r in data["records"]] == [
        "Policy Number", "Co-insurance", "Deductible", "Pregnancy & Childbirth",
    ]
    assert data["summary"]["same"] == 1
