"""
Momentum AI - Multimedia Routes
"""
import logging

from flask import Blueprint, jsonify, g

from ...security_config import json_body
from ..auth.firebase_auth import requires_firebase_auth
from ..ai.validation import sanitize_prompt, MAX_IMAGE_PROMPT_LENGTH
from ..payments.payment_config import get_plan_limits
from ..payments.subscription_store import get_user_subscription, get_monthly_usage, increment_usage
from ..trials.trial_validation import requires_valid_trial
from .image_service import get_image_service

logger = logging.getLogger(__name__)

images_bp = Blueprint('images', __name__, url_prefix='/api/multimedia')


def _optional_str(body, key):
    value = body.get(key)
    return value if isinstance(value, str) and value.strip() else None


def _release_slot(uid):
    """Give back a reserved image slot; a failed release is logged, never raised"""
    try:
        increment_usage(uid, "images", -1)
    except Exception as e:
        logger.error(f"Failed to release reserved image slot for {uid}: {e}")


@images_bp.route('/image/generate', methods=['POST'])
@requires_firebase_auth
@requires_valid_trial
def generate_image():
    """Generate one image within the user's monthly quota"""
    uid = g.user["uid"]
    body = json_body()

    try:
        prompt = sanitize_prompt(body.get("prompt"), max_length=MAX_IMAGE_PROMPT_LENGTH)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    reserved = False
    try:
        subscription = get_user_subscription(uid)
        limit = get_plan_limits(subscription["plan"])["images"]
        if limit != -1:
            used = get_monthly_usage(uid)["images"]
            if used + 1 > limit:
                logger.info(f"Image quota reached for {uid}: {used}/{limit}")
                return jsonify({"error": "Monthly image limit reached", "limit": limit, "used": used}), 429

            # Reserve the slot first, then re-read so concurrent requests cannot overshoot the plan
            increment_usage(uid, "images")
            reserved = True
            used_after = get_monthly_usage(uid)["images"]
            if used_after > limit:
                _release_slot(uid)
                reserved = False
                logger.info(f"Image quota taken by a concurrent request for {uid}: {used_after}/{limit}")
                return jsonify({"error": "Monthly image limit reached", "limit": limit, "used": limit}), 429

        result = get_image_service().generate_image(
            prompt,
            provider=_optional_str(body, "provider"),
            size=_optional_str(body, "size"),
            style=_optional_str(body, "style") or "natural",
            quality=_optional_str(body, "quality") or "standard",
            negative_prompt=_optional_str(body, "negativePrompt"),
        )

        if not reserved:
            increment_usage(uid, "images")
        logger.info(f"Image generation completed for {uid} via {result['provider']}")
        return jsonify(result)

    except Exception as e:
        logger.error(f"Image generation error for {uid}: {e}")
        if reserved:
            _release_slot(uid)
        return jsonify({"error": "Failed to generate image."}), 500
