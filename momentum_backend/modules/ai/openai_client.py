"""
OpenAI-compatible chat client
Works against api.openai.com or any server exposing the same API (OPENAI_BASE_URL)
"""
import os
import logging
from typing import Iterator, List, Optional

import openai
from openai import OpenAI

from .errors import AIServiceError, AITimeoutError, ProviderUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODELS = ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"]


def get_openai_models() -> List[str]:
    raw = os.getenv("OPENAI_MODELS", "")
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or list(DEFAULT_OPENAI_MODELS)


class OpenAIChatClient:
    """Chat completions, streaming and vision through the openai SDK"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, client=None):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL") or None
        if client is not None:
            self.client = client
            self.available = True
        elif self.api_key:
            self.client = OpenAI(api_key=self.api_key, base_url=self.base_url)
            self.available = True
            logger.info("✅ OpenAI-compatible client initialized")
        else:
            self.client = None
            self.available = False
            logger.warning("⚠️ No OpenAI API key - OpenAI client disabled")

        self.vision_model = os.getenv("OPENAI_VISION_MODEL", "gpt-4o-mini")

    def is_available(self) -> bool:
        return self.available

    def _require_client(self):
        if not self.available:
            raise ProviderUnavailableError("OpenAI API key not configured")
        return self.client

    def _messages(self, prompt: str, messages: Optional[List[dict]]) -> List[dict]:
        history = [{"role": m.get("role", "user"), "content": m["content"]} for m in (messages or [])]
        return history + [{"role": "user", "content": prompt}]

    def generate(self, prompt: str, model: str, temperature: float = 0.7, max_tokens: int = 2048,
                 messages: Optional[List[dict]] = None, json_mode: bool = False, timeout: float = 60) -> str:
        client = self._require_client()
        kwargs = {
            "model": model,
            "messages": self._messages(prompt, messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except openai.APITimeoutError:
            raise AITimeoutError(f"OpenAI request timed out after {timeout}s")
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(f"Cannot connect to OpenAI-compatible API: {e}")
        except openai.APIError as e:
            raise AIServiceError(f"OpenAI API error: {e}")

        content = response.choices[0].message.content or ""
        logger.info(f"OpenAI response received from {model}: {len(content)} characters")
        return content.strip()

    def stream(self, prompt: str, model: str, temperature: float = 0.7, max_tokens: int = 2048,
               messages: Optional[List[dict]] = None, timeout: float = 60) -> Iterator[str]:
        client = self._require_client()
        try:
            stream = client.chat.completions.create(
                model=model,
                messages=self._messages(prompt, messages),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                timeout=timeout,
            )
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APITimeoutError:
            raise AITimeoutError(f"OpenAI stream timed out after {timeout}s")
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(f"Cannot connect to OpenAI-compatible API: {e}")
        except openai.APIError as e:
            raise AIServiceError(f"OpenAI API error: {e}")

    def analyze_image(self, image_data: str, prompt: str, model: Optional[str] = None, timeout: float = 60) -> str:
        """image_data is a data: URI or an http(s) URL"""
        client = self._require_client()
        try:
            response = client.chat.completions.create(
                model=model or self.vision_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_data}},
                    ],
                }],
                max_tokens=1024,
                timeout=timeout,
            )
        except openai.APITimeoutError:
            raise AITimeoutError(f"Image analysis timed out after {timeout}s")
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(f"Cannot connect to OpenAI-compatible API: {e}")
        except openai.APIError as e:
            raise AIServiceError(f"OpenAI API error: {e}")

        return (response.choices[0].message.content or "").strip()
