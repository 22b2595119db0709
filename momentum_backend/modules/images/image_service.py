"""
Momentum AI - Image Generation Service
Text-to-image through DALL-E 3 or Stability AI, stored in Firebase Storage when available
"""
import os
import base64
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

import openai
import requests
from openai import OpenAI

from ..shared.firebase import get_storage_bucket

logger = logging.getLogger(__name__)

ALLOWED_SIZES = ("1024x1024", "1792x1024", "1024x1792")
DEFAULT_SIZE = "1024x1024"

STABILITY_ENDPOINT = (
    "https://api.stability.ai/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"
)

STABILITY_STYLE_PRESETS = {
    "artistic": "digital-art",
    "photorealistic": "photographic",
}


def normalize_size(size: Optional[str]) -> str:
    return size if size in ALLOWED_SIZES else DEFAULT_SIZE


class ImageGenerationService:
    """DALL-E 3 / Stability AI image generation"""

    def __init__(self, provider: Optional[str] = None, openai_client=None,
                 session: Optional[requests.Session] = None):
        self.provider = (provider or os.getenv("IMAGE_PROVIDER") or "dalle3").lower()
        self.stability_key = os.getenv("STABILITY_API_KEY")
        self.session = session or requests.Session()

        if openai_client is not None:
            self.openai = openai_client
        elif os.getenv("OPENAI_API_KEY"):
            self.openai = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        else:
            self.openai = None

        if self.provider == "dalle3" and self.openai:
            logger.info("✅ Image Generation Service initialized with DALL-E 3")
        elif self.provider == "stability" and self.stability_key:
            logger.info("✅ Image Generation Service initialized with Stability AI")
        else:
            logger.warning(f"⚠️ Image provider '{self.provider}' is not configured")

    def generate_image(self, prompt: str, provider: Optional[str] = None, size: Optional[str] = None,
                       style: str = "natural", quality: str = "standard",
                       negative_prompt: Optional[str] = None) -> dict:
        """
        Generate one image and return {imageUrl, provider, metadata}.

        Raises ValueError for an empty prompt or unsupported provider.
        """
        if not prompt or not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("Prompt is required and must be a non-empty string")

        provider = (provider or self.provider).lower()
        size = normalize_size(size)

        if provider in ("dalle3", "dalle-3"):
            image_url = self.generate_with_dalle(prompt, size=size, quality=quality)
            provider = "dalle3"
        elif provider == "stability":
            image_url = self.generate_with_stability(prompt, size=size, style=style,
                                                     negative_prompt=negative_prompt)
        else:
            raise ValueError(f"Unsupported provider: {provider}")

        stored_url = self.upload_to_storage(image_url, f"images/{uuid.uuid4()}.png")

        return {
            "imageUrl": stored_url,
            "provider": provider,
            "metadata": {
                "prompt": prompt,
                "size": size,
                "style": style,
                "quality": quality,
                "createdAt": datetime.now(timezone.utc).isoformat(),
            },
        }

    def generate_with_dalle(self, prompt: str, size: str = DEFAULT_SIZE, quality: str = "standard") -> str:
        if not self.openai:
            raise RuntimeError("OpenAI API key not configured")

        try:
            response = self.openai.images.generate(
                model="dall-e-3",
                prompt=prompt,
                n=1,
                size=normalize_size(size),
                quality=quality,
                response_format="url",
            )
        except openai.OpenAIError as e:
            logger.error(f"DALL-E generation error: {e}")
            raise RuntimeError(f"DALL-E API error: {e}")

        return response.data[0].url

    def generate_with_stability(self, prompt: str, size: str = DEFAULT_SIZE, style: str = "natural",
                                negative_prompt: Optional[str] = None) -> str:
        """Returns a data:image/png;base64 URI"""
        if not self.stability_key:
            raise RuntimeError("Stability AI API key not configured")

        width, height = (int(x) for x in normalize_size(size).split("x"))
        text_prompts = [{"text": prompt, "weight": 1}]
        if negative_prompt:
            text_prompts.append({"text": negative_prompt, "weight": -1})

        payload = {
            "text_prompts": text_prompts,
            "width": width,
            "height": height,
            "samples": 1,
        }
        preset = STABILITY_STYLE_PRESETS.get(style)
        if preset:
            payload["style_preset"] = preset

        try:
            r = self.session.post(
                STABILITY_ENDPOINT,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.stability_key}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=120,
            )
            r.raise_for_status()
            artifacts = r.json().get("artifacts") or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Stability AI generation error: {e}")
            raise RuntimeError(f"Stability AI API error: {e}")

        if not artifacts or not artifacts[0].get("base64"):
            raise RuntimeError("Stability AI returned no image")

        return f"data:image/png;base64,{artifacts[0]['base64']}"

    def _image_bytes(self, image_url: str) -> bytes:
        if image_url.startswith("data:"):
            return base64.b64decode(image_url.split(",", 1)[1])
        r = self.session.get(image_url, timeout=60)
        r.raise_for_status()
        return r.content

    def upload_to_storage(self, image_url: str, path: str) -> str:
        """Public Storage URL, or the provider URL when Storage is unavailable"""
        bucket = get_storage_bucket()
        if bucket is None:
            return image_url

        try:
            blob = bucket.blob(path)
            blob.upload_from_string(self._image_bytes(image_url), content_type="image/png")
            blob.make_public()
            logger.info(f"✅ Image uploaded to storage: {path}")
            return blob.public_url
        except Exception as e:
            logger.error(f"Storage upload failed for {path}: {e}")
            return image_url


_service = None
_service_lock = threading.Lock()


def get_image_service() -> ImageGenerationService:
    global _service
    with _service_lock:
        if _service is None:
            _service = ImageGenerationService()
        return _service


def reset_image_service():
    global _service
    with _service_lock:
        _service = None
