import asyncio
import json

import httpx

from bloodwork.services import ai_lab_extract as ai
from bloodwork.services import gemini
from bloodwork.services.report_extraction import NO_ROWS_WARNING


def _fake_generate(payload, model="gemini-2.0-flash"):
    async def fake(prompt, timeout_s=30, models=None):
        fake.prompts.append(prompt)
        return (payload if isinstance(payload, str) else json.dumps(payload)), model

    fake.prompts = []
    return fake


def test_clean_json_response_strips_fences():
    assert ai.clean_json_response('```json\n{"rows": []}\n```') == '{"rows": []}'
    assert ai.clean_json_response('{"rows": []}') == '{"rows": []}'


def test_parse_llm_rows_tolerates_bad_items():
    rows = ai.parse_llm_rows({
        "rows": [
            "nonsense",
            {"test": "  "},
            {"test": "Hemoglobin", "value": "14.2 g/dL", "confidence": "high"},
            {"test": "WBC", "value": 7.1, "unit": " 10*3/uL ", "confidence": 2},
        ]
    })
    assert [r["test"] for r in rows] == ["Hemoglobin", "WBC"]
    assert rows[0]["value"] == 14.2
    assert rows[0]["confidence"] == 0.5
    assert rows[1]["confidence"] == 1.0
    assert ai.parse_llm_rows([{"test": "PCV", "value": 41}])[0]["value"] == 41.0
    assert ai.parse_llm_rows(None) == []


def test_validate_rows_filters_and_warns():
    rows = ai.parse_llm_rows({
        "rows": [
            {"test": "Patient Name", "value": 1, "confidence": 0.9},
            {"test": "Hemoglobin", "value": None, "confidence": 0.9},
            {"test": "PCV", "value": 41, "confidence": 0.1},
            {"test": "Hb", "value": 140, "unit": "g/L", "confidence": 0.9},
            {"test": "Haemoglobin", "value": 13.1, "unit": "g/dl", "referenceRange": "13 - 17", "confidence": 0.6},
            {"test": "HGB", "value": 13.4, "unit": "g/dL", "referenceRange": "13-17", "confidence": 0.95},
            {"test": "HDL Cholesterol", "value": 38, "unit": "mg/dL", "referenceRange": "40-60", "confidence": 0.8},
        ]
    })
    result = ai.validate_rows(rows)
    by_name = {r.name: r for r in result.all_biomarkers}
    assert set(by_name) == {"Hemoglobin", "HDL Cholesterol"}
    assert by_name["Hemoglobin"].value == 13.4
    assert by_name["HDL Cholesterol"].mapped_key == "hdl"
    assert by_name["HDL Cholesterol"].status == "Low"
    assert 'Skipped metadata-like row "Patient Name".' in result.warnings
    assert 'Skipped "Hemoglobin" because value was not numeric.' in result.warnings
    assert 'Skipped low-confidence row "PCV".' in result.warnings
    assert 'Skipped "Hemoglobin" because value 140 looked implausible.' in result.warnings


def test_metadata_like_names():
    assert ai.is_metadata_like_name("Age")
    assert ai.is_metadata_like_name("Sample Type")
    assert ai.is_metadata_like_name("Date: 12/03/2024")
    assert not ai.is_metadata_like_name("Sex Hormone Binding Globulin")


def test_validate_rows_drops_punctuation_only_names():
    rows = ai.parse_llm_rows({"rows": [{"test": ":", "value": 5, "confidence": 0.9}]})
    result = ai.validate_rows(rows)
    assert result.all_biomarkers == []
    assert 'Skipped row ":" because it has no test name.' in result.warnings


def test_punctuation_only_ai_rows_fall_back_to_rules(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(
        gemini, "generate_json", _fake_generate({"rows": [{"test": ":", "value": 5, "confidence": 0.9}]})
    )
    result, source = asyncio.run(ai.extract_report_text("Hemoglobin\n14.2\n12.0-17.5\ng/dL"))
    assert source == "rules"
    assert ai.FALLBACK_WARNING in result.warnings
    assert result.all_biomarkers[0].name == "Hemoglobin"


def test_validate_rows_without_survivors():
    result = ai.validate_rows([])
    assert result.all_biomarkers == []
    assert result.warnings == [ai.NO_VALID_ROWS_WARNING]


def test_build_prompt_truncates():
    prompt = ai.build_prompt("x" * (ai.MAX_OCR_CHARS + 500))
    assert prompt.endswith("OCR text:\n" + "x" * ai.MAX_OCR_CHARS)


def test_rules_used_when_gemini_not_configured():
    result, source = asyncio.run(ai.extract_report_text("Hemoglobin\n14.2\n12.0-17.5\ng/dL"))
    assert source == "rules"
    assert result.all_biomarkers[0].name == "Hemoglobin"


def test_ai_rows_returned_with_model_warning(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    fake = _fake_generate({"rows": [{"test": "Glucose", "value": 126, "unit": "mg/dL", "referenceRange": "70-110", "confidence": 0.9}]})
    monkeypatch.setattr(gemini, "generate_json", fake)
    result, source = asyncio.run(ai.extract_report_text("Glucose 126 mg/dL"))
    assert source == "ai"
    assert result.warnings[0] == "AI extraction used Gemini model: gemini-2.0-flash."
    row = result.all_biomarkers[0]
    assert (row.name, row.value, row.mapped_key, row.status) == ("Glucose", 126.0, "glucose", "High")
    assert "Glucose 126 mg/dL" in fake.prompts[0]


def test_ai_disabled_by_flag(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("AI_EXTRACTION_ENABLED", "false")
    fake = _fake_generate({"rows": []})
    monkeypatch.setattr(gemini, "generate_json", fake)
    _, source = asyncio.run(ai.extract_report_text("Hemoglobin\n14.2\n12.0-17.5\ng/dL"))
    assert source == "rules"
    assert fake.prompts == []


def test_ai_failure_falls_back_to_rules(monkeypatch):
    monkeypatch.setenv("GOOGLE_GEMINI_API_KEY", "test-key")

    async def boom(prompt, timeout_s=30, models=None):
        raise gemini.GeminiError("all models failed")

    monkeypatch.setattr(gemini, "generate_json", boom)
    result, source = asyncio.run(ai.extract_report_text("Hemoglobin\n14.2\n12.0-17.5\ng/dL"))
    assert source == "rules"
    assert result.warnings[0] == ai.FALLBACK_WARNING
    assert result.all_biomarkers[0].name == "Hemoglobin"


def test_invalid_json_falls_back_to_rules(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(gemini, "generate_json", _fake_generate("not json at all"))
    result, source = asyncio.run(ai.extract_report_text("Patient Name: John Doe"))
    assert source == "rules"
    assert result.warnings == [ai.FALLBACK_WARNING, NO_ROWS_WARNING]


def test_empty_ai_rows_fall_back_with_both_warnings(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(gemini, "generate_json", _fake_generate({"rows": [{"test": "Age", "value": 45}]}))
    result, source = asyncio.run(ai.extract_report_text("Hemoglobin\n14.2\n12.0-17.5\ng/dL"))
    assert source == "rules"
    assert ai.NO_VALID_ROWS_WARNING in result.warnings
    assert ai.FALLBACK_WARNING in result.warnings
    assert result.all_biomarkers[0].name == "Hemoglobin"


def test_generate_json_requires_key():
    try:
        asyncio.run(gemini.generate_json("hi"))
    except gemini.GeminiError as exc:
        assert "not configured" in str(exc)
    else:
        raise AssertionError("expected GeminiError")


def test_generate_json_tries_next_model(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("GOOGLE_GEMINI_MODEL", "custom-model")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if "custom-model" in request.url.path:
            return httpx.Response(500, json={"error": "boom"})
        body = json.loads(request.content)
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": '{"rows": []}'}]}}]})

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(gemini.httpx, "AsyncClient", lambda **kw: real_client(transport=transport, **kw))

    text, model = asyncio.run(gemini.generate_json("prompt"))
    assert text == '{"rows": []}'
    assert model == "gemini-2.0-flash"
    assert seen[0].endswith("custom-model:generateContent")
    assert gemini.candidate_models() == ["custom-model", "gemini-2.0-flash", "gemini-1.5-flash"]
