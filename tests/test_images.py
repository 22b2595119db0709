# tests/test_images.py
"""
Image generation service and /api/multimedia/image/generate
"""
import base64
import pytest
import requests
from types import SimpleNamespace
from unittest.mock import patch, MagicMock, call

import openai

from momentum_backend.modules.images.image_service import (
    ImageGenerationService,
    STABILITY_ENDPOINT,
    normalize_size,
)

from conftest import AUTH_HEADERS

ROUTES = "momentum_backend.modules.images.routes"
SERVICE = "momentum_backend.modules.images.image_service"
IMAGE_URL = "/api/multimedia/image/generate"


# -- service --

def _dalle_client(url="https://oaidalle.test/img.png"):
    client = MagicMock()
    client.images.generate.return_value = SimpleNamespace(data=[SimpleNamespace(url=url)])
    return client


def test_normalize_size():
    assert normalize_size("1792x1024") == "1792x1024"
    assert normalize_size("512x512") == "1024x1024"
    assert normalize_size(None) == "1024x1024"


def test_dalle_generation_without_storage():
    client = _dalle_client()
    service = ImageGenerationService(provider="dalle3", openai_client=client)

    result = service.generate_image("a red fox", size="1024x1792", quality="hd")

    assert result["imageUrl"] == "https://oaidalle.test/img.png"
    assert result["provider"] == "dalle3"
    assert result["metadata"]["size"] == "1024x1792"
    assert result["metadata"]["quality"] == "hd"
    assert client.images.generate.call_args.kwargs == {
        "model": "dall-e-3",
        "prompt": "a red fox",
        "n": 1,
        "size": "1024x1792",
        "quality": "hd",
        "response_format": "url",
    }


def test_dalle_errors_are_wrapped():
    client = MagicMock()
    client.images.generate.side_effect = openai.OpenAIError("content policy")
    service = ImageGenerationService(provider="dalle3", openai_client=client)
    with pytest.raises(RuntimeError) as exc:
        service.generate_image("x")
    assert "DALL-E API error" in str(exc.value)


def test_dalle_requires_key():
    with pytest.raises(RuntimeError):
        ImageGenerationService(provider="dalle3").generate_image("x")


def test_stability_generation(monkeypatch):
    monkeypatch.setenv("STABILITY_API_KEY", "sk-stability")
    session = MagicMock()
    session.post.return_value.json.return_value = {"artifacts": [{"base64": "aW1n"}]}
    service = ImageGenerationService(provider="stability", session=session)

    result = service.generate_image("a castle", style="artistic", negative_prompt="blurry", size="1792x1024")

    assert result["imageUrl"] == "data:image/png;base64,aW1n"
    assert result["provider"] == "stability"
    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == STABILITY_ENDPOINT
    assert payload["text_prompts"] == [{"text": "a castle", "weight": 1}, {"text": "blurry", "weight": -1}]
    assert (payload["width"], payload["height"]) == (1792, 1024)
    assert payload["style_preset"] == "digital-art"
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-stability"


def test_stability_http_error(monkeypatch):
    monkeypatch.setenv("STABILITY_API_KEY", "sk-stability")
    session = MagicMock()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("401")
    service = ImageGenerationService(provider="stability", session=session)
    with pytest.raises(RuntimeError):
        service.generate_image("x")


def test_generate_image_rejects_bad_input():
    service = ImageGenerationService(provider="dalle3", openai_client=_dalle_client())
    with pytest.raises(ValueError):
        service.generate_image("   ")
    with pytest.raises(ValueError) as exc:
        service.generate_image("x", provider="midjourney")
    assert str(exc.value) == "Unsupported provider: midjourney"


def test_upload_to_storage_from_data_uri():
    bucket = MagicMock()
    blob = bucket.blob.return_value
    blob.public_url = "https://storage.googleapis.com/bucket/images/a.png"
    service = ImageGenerationService(provider="dalle3", openai_client=_dalle_client())

    with patch(f"{SERVICE}.get_storage_bucket", return_value=bucket):
        url = service.upload_to_storage("data:image/png;base64," + base64.b64encode(b"png!").decode(), "images/a.png")

    assert url == "https://storage.googleapis.com/bucket/images/a.png"
    bucket.blob.assert_called_once_with("images/a.png")
    blob.upload_from_string.assert_called_once_with(b"png!", content_type="image/png")
    blob.make_public.assert_called_once()


def test_upload_failure_keeps_provider_url():
    bucket = MagicMock()
    bucket.blob.return_value.upload_from_string.side_effect = RuntimeError("quota")
    session = MagicMock()
    session.get.return_value.content = b"png!"
    service = ImageGenerationService(provider="dalle3", openai_client=_dalle_client(), session=session)

    with patch(f"{SERVICE}.get_storage_bucket", return_value=bucket):
        assert service.upload_to_storage("https://oaidalle.test/img.png", "images/b.png") == \
            "https://oaidalle.test/img.png"


# -- route --

@pytest.fixture
def image_service():
    service = MagicMock()
    service.generate_image.return_value = {
        "imageUrl": "https://cdn.test/img.png",
        "provider": "dalle3",
        "metadata": {"prompt": "a fox"},
    }
    with patch(f"{ROUTES}.get_image_service", return_value=service):
        yield service


@pytest.fixture
def usage():
    with patch(f"{ROUTES}.get_monthly_usage", return_value={"images": 0, "ai_requests": 0}) as monthly, \
         patch(f"{ROUTES}.increment_usage") as increment:
        yield SimpleNamespace(monthly=monthly, increment=increment)


def test_image_route_requires_auth(client, image_service):
    response = client.post(IMAGE_URL, json={"prompt": "a fox"})
    assert response.status_code == 401
    image_service.generate_image.assert_not_called()


def test_image_route_generates_and_counts(client, firebase_user, image_service, usage):
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={
        "prompt": "a fox", "size": "1792x1024", "negativePrompt": "blurry",
    })

    assert response.status_code == 200
    assert response.get_json()["imageUrl"] == "https://cdn.test/img.png"
    kwargs = image_service.generate_image.call_args.kwargs
    assert kwargs["size"] == "1792x1024"
    assert kwargs["style"] == "natural"
    assert kwargs["negative_prompt"] == "blurry"
    usage.increment.assert_called_once_with("user_123", "images")


def test_image_route_enforces_monthly_quota(client, firebase_user, image_service, usage):
    usage.monthly.return_value = {"images": 10, "ai_requests": 0}
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})

    assert response.status_code == 429
    assert response.get_json() == {"error": "Monthly image limit reached", "limit": 10, "used": 10}
    image_service.generate_image.assert_not_called()
    usage.increment.assert_not_called()


def test_image_route_unlimited_plan_skips_usage(client, firebase_user, image_service, usage):
    with patch(f"{ROUTES}.get_user_subscription", return_value={"plan": "businessPlus", "status": "active"}):
        response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})
    assert response.status_code == 200
    usage.monthly.assert_not_called()


def test_image_route_validates_prompt(client, firebase_user, image_service, usage):
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "x" * 1001})
    assert response.status_code == 400
    assert "1,000" in response.get_json()["error"]


def test_image_route_provider_failure(client, firebase_user, image_service, usage):
    image_service.generate_image.side_effect = RuntimeError("DALL-E API error: secret details")
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to generate image."}
    assert usage.increment.call_args_list == [call("user_123", "images"), call("user_123", "images", -1)]


def test_image_route_releases_slot_lost_to_concurrent_request(client, firebase_user, image_service, usage):
    # 9/10 on the first read; a parallel request took the last slot before our reservation landed
    usage.monthly.side_effect = [{"images": 9, "ai_requests": 0}, {"images": 11, "ai_requests": 0}]
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})

    assert response.status_code == 429
    assert response.get_json() == {"error": "Monthly image limit reached", "limit": 10, "used": 10}
    image_service.generate_image.assert_not_called()
    assert usage.increment.call_args_list == [call("user_123", "images"), call("user_123", "images", -1)]


def test_image_route_keeps_reserved_slot_on_success(client, firebase_user, image_service, usage):
    usage.monthly.side_effect = [{"images": 9, "ai_requests": 0}, {"images": 10, "ai_requests": 0}]
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})

    assert response.status_code == 200
    usage.increment.assert_called_once_with("user_123", "images")


def test_image_route_ignores_array_body(client, firebase_user, image_service, usage):
    response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json=["a fox"])
    assert response.status_code == 400
    image_service.generate_image.assert_not_called()


def test_image_route_blocks_expired_trial(client, firebase_user, image_service, usage):
    expired = {"status": "trialing", "current_period_end": "2020-01-01T00:00:00+00:00"}
    stripe_service = MagicMock()
    stripe_service.is_configured.return_value = True
    stripe_service.find_user_subscription.return_value = None
    with patch("momentum_backend.modules.trials.trial_validation.get_subscription_record", return_value=expired), \
         patch("momentum_backend.modules.trials.trial_validation.get_stripe_service", return_value=stripe_service):
        response = client.post(IMAGE_URL, headers=AUTH_HEADERS, json={"prompt": "a fox"})

    assert response.status_code == 403
    assert response.get_json()["requiresUpgrade"] is True
    image_service.generate_image.assert_not_called()
