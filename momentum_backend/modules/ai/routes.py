"""
Momentum AI - AI Routes
/api/ai/* endpoints proxying to the configured LLM provider
"""
import json
import time
import logging
from functools import wraps

from flask import Blueprint, Response, jsonify, g, stream_with_context

from ... import config
from ...security_config import limiter, json_body, AI_FREE_LIMIT
from ..auth.firebase_auth import requires_firebase_auth
from .ai_service import get_ai_service, get_provider_model_map
from .errors import AITimeoutError, JSONParseError, SchemaValidationError
from .validation import (
    sanitize_prompt,
    parse_generation_options,
    sanitize_messages,
    validate_schema_payload,
    validate_image_reference,
    MAX_IMAGE_PROMPT_LENGTH,
)

logger = logging.getLogger(__name__)

ai_bp = Blueprint('ai', __name__, url_prefix='/api/ai')

ROUTE_TIMEOUT_SECONDS = 60
MAX_STREAM_SECONDS = 300


def requires_ai_access(f):
    """Public in free mode (rate limited); Firebase auth otherwise"""
    authed = requires_firebase_auth(f)

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if config.is_free_ai_mode():
            return f(*args, **kwargs)
        return authed(*args, **kwargs)
    return decorated_function


def _ai_rate_limit():
    return limiter.limit(AI_FREE_LIMIT, exempt_when=lambda: not config.is_free_ai_mode())


def _user_id():
    user = getattr(g, "user", None)
    return user.get("uid") if user else None


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@ai_bp.route('/generate', methods=['POST'])
@_ai_rate_limit()
@requires_ai_access
def generate():
    """Generate text, optionally through the collaborative pipeline"""
    body = json_body()
    try:
        prompt = sanitize_prompt(body.get("prompt"))
        options = parse_generation_options(body)
        messages = sanitize_messages(body.get("messages"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    collaborative = options.pop("collaborative")
    service = get_ai_service()

    try:
        if collaborative:
            result = service.generate_collaborative_content(
                prompt, messages=messages, timeout=ROUTE_TIMEOUT_SECONDS, **options
            )
            return jsonify({
                "content": result.get("final"),
                "collaborators": result.get("steps") or [],
                "synthesis": result.get("meta"),
            })

        content = service.generate_content(prompt, messages=messages, timeout=ROUTE_TIMEOUT_SECONDS, **options)
        return jsonify({"content": content})

    except AITimeoutError:
        return jsonify({"error": "Request timed out"}), 408
    except Exception as e:
        logger.error(f"AI generation error (user={_user_id()}): {e}")
        return jsonify({"error": "Failed to generate content. Please try again."}), 500


@ai_bp.route('/generate-structured', methods=['POST'])
@_ai_rate_limit()
@requires_ai_access
def generate_structured():
    """Generate JSON matching a caller-supplied JSON Schema"""
    body = json_body()
    try:
        prompt = sanitize_prompt(body.get("prompt"))
        schema = validate_schema_payload(body.get("schema"))
        options = parse_generation_options(body)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    options.pop("collaborative", None)

    try:
        data = get_ai_service().generate_structured_content(
            prompt, schema, timeout=ROUTE_TIMEOUT_SECONDS, **options
        )
        return jsonify({"data": data})

    except (JSONParseError, SchemaValidationError) as e:
        return jsonify({"error": str(e)}), 422
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except AITimeoutError:
        return jsonify({"error": "Request timed out"}), 408
    except Exception as e:
        logger.error(f"AI structured generation error (user={_user_id()}): {e}")
        return jsonify({"error": "Failed to generate structured content. Please try again."}), 500


@ai_bp.route('/stream', methods=['POST'])
@_ai_rate_limit()
@requires_ai_access
def stream():
    """Server-Sent Events stream of generated text"""
    body = json_body()
    try:
        prompt = sanitize_prompt(body.get("prompt"))
        options = parse_generation_options(body)
        messages = sanitize_messages(body.get("messages"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    options.pop("collaborative", None)
    service = get_ai_service()
    user_id = _user_id()

    def event_stream():
        started = time.monotonic()
        try:
            for chunk in service.generate_streaming_content(
                prompt, messages=messages, timeout=ROUTE_TIMEOUT_SECONDS, **options
            ):
                if time.monotonic() - started > MAX_STREAM_SECONDS:
                    logger.warning(f"AI stream exceeded maximum duration ({MAX_STREAM_SECONDS}s), aborting")
                    yield _sse({"error": "Stream timeout: maximum duration exceeded", "done": True})
                    return
                yield _sse({"chunk": chunk, "done": False})

            yield _sse({"chunk": "", "done": True})

        except GeneratorExit:
            logger.info(f"Client disconnected from AI stream (user={user_id})")
            raise
        except Exception as e:
            logger.error(f"AI streaming error (user={user_id}): {e}")
            yield _sse({"error": "Failed to stream content", "done": True})

    return Response(
        stream_with_context(event_stream()),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@ai_bp.route('/analyze-image', methods=['POST'])
@_ai_rate_limit()
@requires_ai_access
def analyze_image():
    """Describe an image given as a data URI or public URL"""
    body = json_body()
    try:
        image_data = validate_image_reference(body.get("imageData"))
        prompt = sanitize_prompt(body.get("prompt"), max_length=MAX_IMAGE_PROMPT_LENGTH)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        analysis = get_ai_service().analyze_image(image_data, prompt)
        return jsonify({"analysis": analysis})
    except AITimeoutError:
        return jsonify({"error": "Request timed out"}), 408
    except Exception as e:
        logger.error(f"AI image analysis error (user={_user_id()}): {e}")
        return jsonify({"error": "Failed to analyze image. Please try again."}), 500


@ai_bp.route('/models', methods=['GET'])
@limiter.exempt
def models():
    """Models and capabilities of the active provider"""
    try:
        service = get_ai_service()
        provider_map = get_provider_model_map()
        current = provider_map[service.provider]
        return jsonify({
            "models": service.get_available_models(),
            "provider": service.provider,
            "defaultModel": service.default_model,
            "supportsStreaming": current["supports_streaming"],
            "supportsImageAnalysis": current["supports_image_analysis"],
            "providerMap": {
                name: {
                    "models": info["models"],
                    "default": info["default"],
                    "supportsStreaming": info["supports_streaming"],
                    "supportsImageAnalysis": info["supports_image_analysis"],
                }
                for name, info in provider_map.items()
            },
        })
    except Exception as e:
        logger.error(f"Error getting models: {e}")
        return jsonify({"error": "Failed to get available models. Please try again."}), 500
