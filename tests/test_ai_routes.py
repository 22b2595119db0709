# tests/test_ai_routes.py
"""
/api/ai/* endpoints
"""
import json
import pytest
from unittest.mock import patch, MagicMock

from momentum_backend.modules.ai.errors import AITimeoutError, AIServiceError, SchemaValidationError, JSONParseError

from conftest import AUTH_HEADERS


@pytest.fixture
def ai_service():
    service = MagicMock()
    with patch("momentum_backend.modules.ai.routes.get_ai_service", return_value=service):
        yield service


def _sse_events(response):
    body = response.get_data(as_text=True)
    return [json.loads(line[len("data: "):]) for line in body.split("\n\n") if line.startswith("data: ")]


def test_generate_returns_content(client, ai_service):
    ai_service.generate_content.return_value = "Launch day!"
    response = client.post("/api/ai/generate", json={"prompt": "Write a tweet", "temperature": 0.3})

    assert response.status_code == 200
    assert response.get_json() == {"content": "Launch day!"}
    args, kwargs = ai_service.generate_content.call_args
    assert args == ("Write a tweet",)
    assert kwargs["temperature"] == 0.3
    assert kwargs["timeout"] == 60


def test_generate_validates_prompt(client, ai_service):
    response = client.post("/api/ai/generate", json={"prompt": ""})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Prompt is required and must be a string"
    ai_service.generate_content.assert_not_called()


@pytest.mark.parametrize("body", [["Write a tweet"], "Write a tweet", 42])
def test_generate_rejects_non_object_body(client, ai_service, body):
    response = client.post("/api/ai/generate", json=body)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Prompt is required and must be a string"
    ai_service.generate_content.assert_not_called()


def test_generate_timeout(client, ai_service):
    ai_service.generate_content.side_effect = AITimeoutError("slow")
    response = client.post("/api/ai/generate", json={"prompt": "hi"})
    assert response.status_code == 408
    assert response.get_json() == {"error": "Request timed out"}


def test_generate_provider_failure_is_generic(client, ai_service):
    ai_service.generate_content.side_effect = AIServiceError("Ollama API error (500): stack trace")
    response = client.post("/api/ai/generate", json={"prompt": "hi"})
    assert response.status_code == 500
    assert "stack trace" not in response.get_data(as_text=True)


def test_generate_collaborative(client, ai_service):
    ai_service.generate_collaborative_content.return_value = {
        "final": "Done",
        "steps": [{"role": "Strategist", "model": "m", "content": "plan"}],
        "meta": {"final_answer": "Done"},
    }
    response = client.post("/api/ai/generate", json={"prompt": "hi", "collaborative": True})

    assert response.get_json() == {
        "content": "Done",
        "collaborators": [{"role": "Strategist", "model": "m", "content": "plan"}],
        "synthesis": {"final_answer": "Done"},
    }
    ai_service.generate_content.assert_not_called()


def test_ai_routes_require_auth_when_not_free(client, ai_service, monkeypatch):
    monkeypatch.setenv("FREE_AI_MODE", "false")
    response = client.post("/api/ai/generate", json={"prompt": "hi"})
    assert response.status_code == 401
    ai_service.generate_content.assert_not_called()


def test_ai_routes_accept_token_when_not_free(client, ai_service, firebase_user, monkeypatch):
    monkeypatch.setenv("FREE_AI_MODE", "false")
    ai_service.generate_content.return_value = "ok"
    response = client.post("/api/ai/generate", json={"prompt": "hi"}, headers=AUTH_HEADERS)
    assert response.status_code == 200


def test_generate_structured(client, ai_service):
    ai_service.generate_structured_content.return_value = {"name": "Ada"}
    schema = {"type": "object", "properties": {"name": {"type": "string"}}}
    response = client.post("/api/ai/generate-structured", json={"prompt": "a person", "schema": schema})

    assert response.status_code == 200
    assert response.get_json() == {"data": {"name": "Ada"}}
    assert ai_service.generate_structured_content.call_args.args == ("a person", schema)


@pytest.mark.parametrize("error", [
    JSONParseError("Failed to parse AI response as JSON"),
    SchemaValidationError("Response does not match schema: name: required"),
])
def test_generate_structured_unprocessable(client, ai_service, error):
    ai_service.generate_structured_content.side_effect = error
    response = client.post("/api/ai/generate-structured", json={"prompt": "x", "schema": {"type": "object"}})
    assert response.status_code == 422
    assert response.get_json() == {"error": str(error)}


def test_generate_structured_requires_schema(client, ai_service):
    response = client.post("/api/ai/generate-structured", json={"prompt": "x"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Schema is required and must be a valid object"


def test_stream_emits_sse_events(client, ai_service):
    ai_service.generate_streaming_content.return_value = iter(["Hel", "lo"])
    response = client.post("/api/ai/stream", json={"prompt": "hi"})

    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    assert response.headers["Cache-Control"] == "no-cache, no-transform"
    assert response.headers["X-Accel-Buffering"] == "no"
    assert _sse_events(response) == [
        {"chunk": "Hel", "done": False},
        {"chunk": "lo", "done": False},
        {"chunk": "", "done": True},
    ]


def test_stream_reports_errors_in_band(client, ai_service):
    def failing():
        yield "partial"
        raise AIServiceError("provider exploded")

    ai_service.generate_streaming_content.return_value = failing()
    response = client.post("/api/ai/stream", json={"prompt": "hi"})

    assert response.status_code == 200
    assert _sse_events(response) == [
        {"chunk": "partial", "done": False},
        {"error": "Failed to stream content", "done": True},
    ]


def test_stream_validates_before_streaming(client, ai_service):
    response = client.post("/api/ai/stream", json={"prompt": "hi", "maxTokens": 99999})
    assert response.status_code == 400
    ai_service.generate_streaming_content.assert_not_called()


def test_analyze_image(client, ai_service):
    ai_service.analyze_image.return_value = "A sunset"
    response = client.post("/api/ai/analyze-image", json={
        "imageData": "data:image/png;base64,iVBORw0KGgo=",
        "prompt": "Describe it",
    })
    assert response.status_code == 200
    assert response.get_json() == {"analysis": "A sunset"}


def test_analyze_image_rejects_internal_urls(client, ai_service):
    response = client.post("/api/ai/analyze-image", json={
        "imageData": "http://169.254.169.254/latest/meta-data",
        "prompt": "Describe it",
    })
    assert response.status_code == 400
    ai_service.analyze_image.assert_not_called()


def test_models_lists_active_provider(client):
    response = client.get("/api/ai/models")

    assert response.status_code == 200
    data = response.get_json()
    assert data["provider"] == "ollama"
    assert data["defaultModel"] == "llama3.1:8b-instruct"
    assert "mistral:7b-instruct" in data["models"]
    assert data["supportsStreaming"] is True
    assert data["supportsImageAnalysis"] is False
    assert data["providerMap"]["openai"]["supportsImageAnalysis"] is True


def test_models_for_openai_provider(client, monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_MODELS", "gpt-4o, gpt-4o-mini")
    data = client.get("/api/ai/models").get_json()
    assert data["provider"] == "openai"
    assert data["models"] == ["gpt-4o", "gpt-4o-mini"]
    assert data["defaultModel"] == "gpt-4o"
