"""
Request validation for AI endpoints
Each helper returns cleaned values or raises ValueError with a client-safe message.
"""
import json
import ipaddress
from typing import List, Optional
from urllib.parse import urlparse

MAX_PROMPT_LENGTH = 10000
MAX_IMAGE_PROMPT_LENGTH = 1000
MAX_MESSAGES = 20
MAX_MESSAGE_LENGTH = 4000
MAX_SCHEMA_CHARS = 50000

_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "metadata.google.internal"}


def sanitize_prompt(value, max_length: int = MAX_PROMPT_LENGTH) -> str:
    if not value or not isinstance(value, str):
        raise ValueError("Prompt is required and must be a string")

    prompt = value.replace("\0", "").strip()
    if not prompt:
        raise ValueError("Prompt cannot be empty")

    if len(prompt) > max_length:
        raise ValueError(f"Prompt is too long. Maximum length is {max_length:,} characters.")

    return prompt


def parse_generation_options(body: dict) -> dict:
    """temperature, max_tokens, provider, model and collaborative from a request body"""
    options = {}

    temperature = body.get("temperature")
    if temperature is not None:
        try:
            temperature = float(temperature)
        except (TypeError, ValueError):
            temperature = None
        if temperature is None or not 0 <= temperature <= 2:
            raise ValueError("Temperature must be a number between 0 and 2")
        options["temperature"] = temperature

    max_tokens = body.get("maxTokens")
    if max_tokens is not None:
        try:
            max_tokens = int(max_tokens)
        except (TypeError, ValueError):
            max_tokens = None
        if max_tokens is None or not 1 <= max_tokens <= 8000:
            raise ValueError("Max tokens must be a number between 1 and 8000")
        options["max_tokens"] = max_tokens

    provider = body.get("provider")
    if provider:
        if not isinstance(provider, str):
            raise ValueError("Invalid provider")
        options["provider"] = provider

    model = body.get("model")
    if model:
        if not isinstance(model, str):
            raise ValueError("Invalid model")
        options["model"] = model

    collaborative = body.get("collaborative")
    if isinstance(collaborative, str):
        options["collaborative"] = collaborative.lower() == "true"
    else:
        options["collaborative"] = bool(collaborative)

    return options


def sanitize_messages(messages) -> Optional[List[dict]]:
    if messages is None:
        return None
    if not isinstance(messages, list):
        raise ValueError("messages must be an array of { role, content } objects")

    cleaned = []
    for m in messages:
        if not isinstance(m, dict) or not isinstance(m.get("content"), str):
            continue
        if len(cleaned) >= MAX_MESSAGES:
            break
        role = m.get("role") if isinstance(m.get("role"), str) else "user"
        content = m["content"].replace("\0", "").strip()[:MAX_MESSAGE_LENGTH]
        if content:
            cleaned.append({"role": role, "content": content})

    return cleaned or None


def validate_schema_payload(schema) -> dict:
    if not schema or not isinstance(schema, dict):
        raise ValueError("Schema is required and must be a valid object")
    if len(json.dumps(schema)) > MAX_SCHEMA_CHARS:
        raise ValueError("Schema is too large. Maximum size is 50KB.")
    return schema


def _is_blocked_host(hostname: str) -> bool:
    hostname = hostname.strip("[]").lower()
    if not hostname or hostname in _BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return (address.is_private or address.is_loopback or address.is_link_local
            or address.is_reserved or address.is_multicast or address.is_unspecified)


def validate_image_reference(image_data) -> str:
    """Accept data:image URIs and public http(s) URLs"""
    if not image_data or not isinstance(image_data, str):
        raise ValueError("Image data is required and must be a valid string")

    if image_data.startswith("data:image/"):
        return image_data

    if image_data.startswith(("http://", "https://")):
        try:
            hostname = urlparse(image_data).hostname
        except ValueError:
            raise ValueError("Invalid image URL format")
        if not hostname or _is_blocked_host(hostname):
            raise ValueError("Invalid image URL")
        return image_data

    raise ValueError("Invalid image data format")
