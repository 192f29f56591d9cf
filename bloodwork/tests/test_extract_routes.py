import bloodwork.app as app_module


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_extract_text_endpoint(client):
    r = client.post("/api/extract-text", json={"text": "Hemoglobin\n14.2\n12.0-17.5\ng/dL"})
    assert r.status_code == 200
    j = r.json()
    assert j["source"] == "rules"
    assert j["allBiomarkers"] == [
        {"name": "Hemoglobin", "value": 14.2, "unit": "g/dL", "referenceRange": "12.0-17.5", "status": "Normal"}
    ]
    assert "fileName" not in j
    assert "x-trace-id" in r.headers


def test_extract_text_empty_input_is_not_an_error(client):
    r = client.post("/api/extract-text", json={"text": "   "})
    assert r.status_code == 200
    assert r.json()["allBiomarkers"] == []
    assert r.json()["warnings"] == ["No readable text was extracted from this file."]


def test_extract_report_text_file(client):
    body = b"Test,Result,Unit,Reference Range\nHemoglobin,11.2,g/dL,12-16\n"
    r = client.post("/api/extract-report", files={"file": ("labs.csv", body, "text/csv")})
    assert r.status_code == 200
    j = r.json()
    assert j["fileName"] == "labs.csv"
    assert j["fileType"] == "text"
    assert j["allBiomarkers"][0]["name"] == "Hemoglobin"
    assert j["allBiomarkers"][0]["status"] == "Low"


def test_extract_report_image_uses_ocr(client, mock_ocr):
    r = client.post("/api/extract-report", files={"file": ("scan.png", b"\x89PNG", "image/png")})
    assert r.status_code == 200
    assert r.json()["fileType"] == "image"
    assert r.json()["allBiomarkers"][0]["value"] == 14.2


def test_extract_report_empty_file_returns_400(client):
    r = client.post("/api/extract-report", files={"file": ("empty.txt", b"", "text/plain")})
    assert r.status_code == 400
    assert r.json()["code"] == "BAD_REQUEST"


def test_extract_report_too_large_returns_413(client, monkeypatch):
    monkeypatch.setattr(app_module, "MAX_UPLOAD_MB", 0)
    r = client.post("/api/extract-report", files={"file": ("labs.txt", b"Hemoglobin 14", "text/plain")})
    assert r.status_code == 413
    assert r.json()["code"] == "PAYLOAD_TOO_LARGE"


def test_extract_report_unsupported_returns_415(client):
    r = client.post("/api/extract-report", files={"file": ("a.zip", b"PK\x03\x04", "application/zip")})
    assert r.status_code == 415
    assert r.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"


def test_extract_report_unreadable_pdf_returns_400(client):
    r = client.post("/api/extract-report", files={"file": ("broken.pdf", b"not a pdf", "application/pdf")})
    assert r.status_code == 400
    assert "Could not read text" in r.json()["message"]


def test_extract_text_rate_limited(client):
    for _ in range(30):
        assert client.post("/api/extract-text", json={"text": "x"}).status_code == 200
    r = client.post("/api/extract-text", json={"text": "x"})
    assert r.status_code == 429
    j = r.json()
    assert j["code"] == "TOO_MANY_REQUESTS"
    assert "trace_id" in j
    assert "Retry-After" in r.headers
