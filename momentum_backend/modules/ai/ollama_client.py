"""
Ollama HTTP client for local or hosted models
"""
import os
import json
import logging
from typing import Iterator, List, Optional

import requests

from ..shared.retry import retry_with_backoff, is_retryable_error
from .errors import AIServiceError, AITimeoutError, ProviderUnavailableError

logger = logging.getLogger(__name__)


def _default_base():
    return "http://localhost:11434"


def get_ollama_base() -> str:
    return (
        os.getenv("OLLAMA_URL")
        or os.getenv("OLLAMA_API_URL")
        or _default_base()
    ).rstrip("/")


class OllamaClient:
    """Minimal client for /api/generate and /api/tags"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None, max_retries: int = 2):
        self.base_url = (base_url or get_ollama_base()).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("OLLAMA_API_KEY")
        self.session = session or requests.Session()
        self.max_retries = max_retries

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, prompt: str, model: str, temperature: float, max_tokens: int, stream: bool) -> dict:
        return {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

    def _unreachable(self) -> ProviderUnavailableError:
        return ProviderUnavailableError(
            f"Cannot connect to Ollama at {self.base_url}. "
            f"Ensure Ollama is running and OLLAMA_URL is correct."
        )

    def generate(self, prompt: str, model: str, temperature: float = 0.7,
                 max_tokens: int = 2048, timeout: float = 60) -> str:
        """Single completion; retries transient failures"""

        def _call():
            r = self.session.post(
                f"{self.base_url}/api/generate",
                json=self._payload(prompt, model, temperature, max_tokens, stream=False),
                headers=self._headers(),
                timeout=timeout,
            )
            r.raise_for_status()
            return r

        try:
            r = retry_with_backoff(_call, max_retries=self.max_retries, should_retry=is_retryable_error)
        except requests.Timeout:
            raise AITimeoutError(f"Ollama request timed out after {timeout}s")
        except requests.ConnectionError:
            raise self._unreachable()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            body = e.response.text[:200] if e.response is not None else ""
            raise AIServiceError(f"Ollama API error ({status}): {body}")

        content_type = r.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise AIServiceError(
                f"Unexpected content type from Ollama API: {content_type}. Expected application/json."
            )

        data = r.json()
        if not isinstance(data, dict):
            raise AIServiceError("Invalid response format from Ollama API: expected JSON object")
        if not data.get("response") and data.get("done") is not True:
            logger.warning("Ollama response missing 'response' field")

        response = data.get("response") or ""
        logger.info(f"Ollama response received from {model}: {len(response)} characters")
        return response

    def stream(self, prompt: str, model: str, temperature: float = 0.7,
               max_tokens: int = 2048, timeout: float = 60) -> Iterator[str]:
        """Yield response fragments from the JSON-lines stream"""
        try:
            r = self.session.post(
                f"{self.base_url}/api/generate",
                json=self._payload(prompt, model, temperature, max_tokens, stream=True),
                headers=self._headers(),
                timeout=timeout,
                stream=True,
            )
        except requests.Timeout:
            raise AITimeoutError(f"Ollama stream timed out after {timeout}s")
        except requests.ConnectionError:
            raise self._unreachable()

        with r:
            if not r.ok:
                raise AIServiceError(f"Ollama API error ({r.status_code}): {r.text[:200]}")

            for line_no, line in enumerate(r.iter_lines(decode_unicode=True), start=1):
                if not line or not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except ValueError as e:
                    logger.warning(f"Failed to parse JSON line from Ollama (line {line_no}): {e}")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Invalid JSON line from Ollama (line {line_no}): expected object")
                    continue
                if data.get("response"):
                    yield data["response"]
                if data.get("done"):
                    return

    def list_models(self) -> List[str]:
        """Installed model names from /api/tags"""
        try:
            r = self.session.get(f"{self.base_url}/api/tags", headers=self._headers(), timeout=5)
            r.raise_for_status()
            return [m.get("name") for m in r.json().get("models", []) if m.get("name")]
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to get Ollama models: {e}")
            return []

    def is_available(self) -> bool:
        """Check if Ollama is running"""
        try:
            r = self.session.get(f"{self.base_url}/api/tags", headers=self._headers(), timeout=5)
            return r.status_code == 200
        except requests.RequestException as e:
            logger.debug(f"Ollama not reachable at {self.base_url}: {e}")
            return False
