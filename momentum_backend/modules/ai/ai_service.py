"""
Momentum AI - AI Service
Routes generation requests to Ollama or an OpenAI-compatible provider and
adds structured-output and multi-model collaboration on top.
"""
import os
import re
import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .errors import AIServiceError, JSONParseError, SchemaValidationError
from .ollama_client import OllamaClient
from .openai_client import OpenAIChatClient, get_openai_models

logger = logging.getLogger(__name__)

OLLAMA_MODELS = [
    "llama3.1:8b-instruct",
    "llama3.1:70b-instruct",
    "llama3.1:405b-instruct",
    "mistral:7b-instruct",
    "mixtral:8x7b-instruct",
    "codellama:7b-instruct",
    "phi3:3.8b-mini-instruct",
    "qwen2:7b-instruct",
]

DEFAULT_OLLAMA_MODEL = "llama3.1:8b-instruct"

# Models used for collaborative phases when OLLAMA_COLLAB_MODELS is unset
DEFAULT_REQUIRED_MODELS = [
    "llama3.1:8b-instruct",
    "mistral:7b-instruct",
    "mixtral:8x7b-instruct",
    "codellama:7b-instruct",
]

COLLABORATION_PHASES = [
    ("Strategist", "Break down the request into a clear game plan and outline 3-5 actionable steps."),
    ("Creator", "Produce the actual content following the strategist plan using a confident, helpful tone."),
    ("Optimizer", "Review and upgrade the creator draft. Highlight improvements and ensure the message is compelling."),
]

STRUCTURED_PROMPT = """
You are a helpful AI assistant that returns responses in JSON format.

User's request: {prompt}

Respond with a valid JSON object that matches this schema:
{schema}

Response (JSON only, no markdown or additional text):
"""

ROLE_PROMPT = """
You are acting as the {role} in a collaborative AI team.
Guidance: {instruction}

User request:
{prompt}

Respond with clear {role} output only."""

SYNTHESIS_PROMPT = """
You are the Orchestrator coordinating AI collaborators.
Combine the following collaborator outputs into a unified final answer.

{steps}

Return a JSON object with:
- "strategy": short recap of the agreed plan
- "draft": the improved copy/content
- "optimization": bullets describing enhancements made
- "final_answer": polished final response for the user
"""

_FENCE_RE = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n```")


def _split_env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


def get_provider_model_map() -> Dict[str, Dict[str, Any]]:
    """Per-provider models, defaults and capabilities"""
    openai_models = get_openai_models()
    return {
        "ollama": {
            "models": list(OLLAMA_MODELS),
            "default": DEFAULT_OLLAMA_MODEL,
            "supports_streaming": True,
            "supports_image_analysis": False,
        },
        "openai": {
            "models": openai_models,
            "default": os.getenv("OPENAI_DEFAULT_MODEL") or openai_models[0],
            "supports_streaming": True,
            "supports_image_analysis": True,
        },
    }


def parse_json_response(response: str) -> Any:
    """
    Parse model output as JSON.

    Tries the raw text, then a fenced ```json block, then the text with
    stray fences stripped. The result must be an object or array.
    """
    text = (response or "").strip()
    candidates = [text]

    match = _FENCE_RE.search(text)
    if match:
        candidates.append(match.group(1).strip())

    repaired = re.sub(r"^```(?:json)?\s*\n?", "", text, flags=re.MULTILINE)
    repaired = re.sub(r"\n?```\s*$", "", repaired, flags=re.MULTILINE).strip()
    candidates.append(repaired)

    errors = []
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError as e:
            errors.append(str(e))
            continue
        if isinstance(parsed, (dict, list)):
            return parsed
        errors.append("Parsed JSON is not an object or array")

    logger.error(f"JSON parsing failed after all attempts ({len(text)} chars): {errors}")
    raise JSONParseError("Failed to parse AI response as JSON", raw_response=text)


def safe_json_parse(payload: str) -> Optional[Any]:
    try:
        return parse_json_response(payload)
    except JSONParseError:
        return None


class AIService:
    """Provider-agnostic text generation"""

    def __init__(self, provider: Optional[str] = None, ollama: Optional[OllamaClient] = None,
                 openai_client: Optional[OpenAIChatClient] = None):
        self.provider = (provider or os.getenv("AI_PROVIDER") or "ollama").lower()
        if self.provider not in ("ollama", "openai"):
            logger.warning(f"Unknown AI_PROVIDER '{self.provider}', using ollama")
            self.provider = "ollama"

        self.ollama = ollama or OllamaClient()
        self._openai = openai_client

        provider_map = get_provider_model_map()[self.provider]
        self.default_model = os.getenv("AI_DEFAULT_MODEL") or provider_map["default"]

        self.collaborative_models = _split_env_list("OLLAMA_COLLAB_MODELS") or list(DEFAULT_REQUIRED_MODELS)

        logger.info(f"AI Service initialized with {self.provider} (default model {self.default_model})")

    @property
    def openai(self) -> OpenAIChatClient:
        if self._openai is None:
            self._openai = OpenAIChatClient()
        return self._openai

    def is_configured(self) -> bool:
        if self.provider == "openai":
            return self.openai.is_available()
        return bool(self.ollama.base_url)

    def get_available_models(self, provider: Optional[str] = None) -> List[str]:
        return list(get_provider_model_map()[provider or self.provider]["models"])

    def validate_model(self, model: Optional[str], fallback_to_default: bool = True,
                       provider: Optional[str] = None) -> str:
        available = self.get_available_models(provider)
        default = self.default_model if (provider or self.provider) == self.provider \
            else get_provider_model_map()[provider]["default"]

        if not model:
            if fallback_to_default:
                return default
            raise ValueError("Model is required")

        if model in available:
            return model

        if fallback_to_default:
            logger.warning(f"Model '{model}' not available for provider '{provider or self.provider}', "
                           f"falling back to default: {default}")
            return default

        raise ValueError(f"Invalid model '{model}'. Available models: {', '.join(available)}")

    def _resolve_provider(self, provider: Optional[str]) -> str:
        if provider and provider.lower() in ("ollama", "openai"):
            return provider.lower()
        if provider:
            logger.warning(f"Unsupported provider '{provider}' requested; using {self.provider}")
        return self.provider

    def generate_content(self, prompt: str, model: Optional[str] = None, temperature: float = 0.7,
                         max_tokens: int = 2048, provider: Optional[str] = None,
                         messages: Optional[List[dict]] = None, json_mode: bool = False,
                         timeout: float = 60) -> str:
        provider = self._resolve_provider(provider)
        model = self.validate_model(model, fallback_to_default=True, provider=provider)

        if provider == "openai":
            return self.openai.generate(prompt, model, temperature, max_tokens,
                                        messages=messages, json_mode=json_mode, timeout=timeout)

        if messages:
            history = "\n".join(f"{m.get('role', 'user')}: {m['content']}" for m in messages)
            prompt = f"{history}\nuser: {prompt}"
        return self.ollama.generate(prompt, model, temperature, max_tokens, timeout=timeout)

    def generate_structured_content(self, prompt: str, schema: dict, **options) -> Any:
        """Generate JSON that validates against schema"""
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as e:
            raise ValueError(f"Invalid schema: {e.message}")

        schema_prompt = STRUCTURED_PROMPT.format(prompt=prompt, schema=json.dumps(schema, indent=2))
        response = self.generate_content(schema_prompt, json_mode=True, **options)
        parsed = parse_json_response(response)

        errors = sorted(Draft7Validator(schema).iter_errors(parsed), key=lambda e: list(e.path))
        if errors:
            details = [f"{'/'.join(str(p) for p in e.path) or '(root)'}: {e.message}" for e in errors]
            logger.warning(f"Structured output failed schema validation: {details}")
            raise SchemaValidationError(f"Response does not match schema: {'; '.join(details)}", details)

        return parsed

    def generate_streaming_content(self, prompt: str, model: Optional[str] = None, temperature: float = 0.7,
                                   max_tokens: int = 2048, provider: Optional[str] = None,
                                   messages: Optional[List[dict]] = None, timeout: float = 60) -> Iterator[str]:
        provider = self._resolve_provider(provider)
        model = self.validate_model(model, fallback_to_default=True, provider=provider)

        if provider == "openai":
            return self.openai.stream(prompt, model, temperature, max_tokens, messages=messages, timeout=timeout)
        return self.ollama.stream(prompt, model, temperature, max_tokens, timeout=timeout)

    def generate_collaborative_content(self, prompt: str, model: Optional[str] = None,
                                       temperature: Optional[float] = None, max_tokens: int = 2048,
                                       provider: Optional[str] = None, messages: Optional[List[dict]] = None,
                                       timeout: float = 60) -> dict:
        """
        Strategist, Creator and Optimizer passes followed by a synthesis pass.

        Returns {"final": str, "steps": [{role, model, content}], "meta": dict|None}.
        Providers other than Ollama get a single generation with no steps.
        """
        provider = self._resolve_provider(provider)
        if provider != "ollama":
            final = self.generate_content(prompt, model=model, temperature=0.7 if temperature is None else temperature,
                                          max_tokens=max_tokens, provider=provider, messages=messages,
                                          timeout=timeout)
            return {"final": final, "steps": [], "meta": None}

        phase_temperature = 0.7 if temperature is None else temperature
        steps = []
        for index, (role, instruction) in enumerate(COLLABORATION_PHASES):
            phase_model = self.collaborative_models[index % len(self.collaborative_models)] or self.default_model
            role_prompt = ROLE_PROMPT.format(role=role, instruction=instruction, prompt=prompt)
            result = self.ollama.generate(role_prompt, phase_model, phase_temperature, max_tokens, timeout=timeout)
            steps.append({"role": role, "model": phase_model, "content": (result or "").strip()})

        rendered = "\n\n".join(
            f"## {i + 1}. {step['role']} ({step['model']})\n{step['content']}" for i, step in enumerate(steps)
        )
        synthesis = self.ollama.generate(
            SYNTHESIS_PROMPT.format(steps=rendered),
            self.validate_model(model),
            0.6 if temperature is None else temperature,
            max_tokens,
            timeout=timeout,
        )

        parsed = safe_json_parse(synthesis)
        final = None
        if isinstance(parsed, dict):
            final = parsed.get("final_answer") or parsed.get("final") or parsed.get("answer")
        if not final:
            final = synthesis

        return {
            "final": final.strip() if isinstance(final, str) else final,
            "steps": steps,
            "meta": parsed if parsed is not None else {"raw": synthesis},
        }

    def analyze_image(self, image_data: str, prompt: str) -> str:
        if self.provider != "openai":
            raise AIServiceError("Image analysis is currently only supported with the OpenAI provider")
        return self.openai.analyze_image(image_data, prompt)


_service = None
_service_lock = threading.Lock()


def get_ai_service() -> AIService:
    global _service
    with _service_lock:
        if _service is None:
            _service = AIService()
        return _service


def reset_ai_service():
    global _service
    with _service_lock:
        _service = None
