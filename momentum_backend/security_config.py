# security_config.py
"""
Security configuration and middleware for Momentum AI
Rate limiting, CORS origin policy, security headers and JSON error handlers
"""
import re
import logging
from functools import wraps
from typing import List

from flask import request, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from . import config

logger = logging.getLogger(__name__)

API_LIMIT = "100 per 15 minutes"
WEBHOOK_LIMIT = "10 per minute"
CONTACT_LIMIT = "5 per 15 minutes"
AI_FREE_LIMIT = "20 per minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_LIMIT],
    headers_enabled=True,
)


def init_security(app):
    """Initialize rate limiting; storage is Redis when REDIS_URL is set"""
    redis_url = config.get_redis_url()
    app.config.setdefault("RATELIMIT_STORAGE_URI", redis_url or "memory://")
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)
    limiter.init_app(app)

    backend = "redis" if app.config["RATELIMIT_STORAGE_URI"].startswith("redis") else "memory"
    logger.info(f"✅ Rate limiting initialized ({backend} storage)")
    return limiter


def _origin_pattern(origin: str):
    return re.compile("^" + re.escape(origin).replace(r"\*", "[^/]*") + "$")


def build_origin_matcher(allowed: List[str], allow_vercel: bool):
    exact = {o for o in allowed if "*" not in o}
    patterns = [_origin_pattern(o) for o in allowed if "*" in o]
    vercel = re.compile(r"^https://[a-z0-9-]+(\.[a-z0-9-]+)*\.vercel\.app$")

    def is_allowed(origin: str) -> bool:
        if not origin:
            return False
        origin = origin.rstrip("/")
        if origin in exact:
            return True
        if any(p.match(origin) for p in patterns):
            return True
        return allow_vercel and bool(vercel.match(origin))

    return is_allowed


def init_cors(app):
    """CORS for the configured frontends; credentials allowed"""
    allowed = config.get_allowed_origins()
    is_allowed = build_origin_matcher(allowed, config.is_vercel())

    origins = [o for o in allowed if "*" not in o]
    origins += [_origin_pattern(o) for o in allowed if "*" in o]
    if config.is_vercel():
        origins.append(re.compile(r"^https://[a-z0-9-]+(\.[a-z0-9-]+)*\.vercel\.app$"))

    CORS(
        app,
        origins=origins,
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )

    @app.after_request
    def _log_blocked_origin(response):
        origin = request.headers.get("Origin")
        if origin and not is_allowed(origin):
            logger.warning(f"CORS blocked origin: {origin}")
        return response

    logger.info(f"✅ CORS configured for {len(allowed)} origin(s)")
    return is_allowed


def enhance_security_headers(app):
    """Add comprehensive security headers"""

    csp = (
        "default-src 'self'; "
        "script-src 'self' https://js.stripe.com https://www.gstatic.com; "
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
        "font-src 'self' https://fonts.gstatic.com; "
        "img-src 'self' data: blob: https:; "
        "connect-src 'self' https://api.stripe.com https://*.googleapis.com "
        "https://*.firebaseio.com https://api.openai.com https://api.stability.ai; "
        "frame-src 'self' https://js.stripe.com https://hooks.stripe.com; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "form-action 'self';"
    )

    @app.after_request
    def set_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = csp
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Permissions-Policy'] = (
            'camera=(), microphone=(), geolocation=(), payment=(self "https://js.stripe.com")'
        )

        if config.is_production() or request.is_secure:
            response.headers['Strict-Transport-Security'] = (
                'max-age=31536000; includeSubDomains; preload'
            )

        if request.path.startswith('/api/') and 'Cache-Control' not in response.headers:
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
            response.headers['Pragma'] = 'no-cache'

        return response

    logger.info("✅ Enhanced security headers configured")


def secure_error_handlers(app):
    """Set up secure error handling that doesn't leak information"""

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'error': 'Bad Request'}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({'error': 'Authentication required'}), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({'error': 'Access forbidden'}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        return jsonify({'error': 'Request body too large'}), 413

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        logger.warning(f"Rate limit exceeded for {request.remote_addr} on {request.path}")
        return jsonify({
            'error': 'Rate limit exceeded',
            'message': 'Too many requests. Please try again later.'
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {str(error)}")
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'error': error.name}), error.code

        logger.exception(f"Unexpected error on {request.path}: {error}")

        # Security: Don't leak stack traces to users
        return jsonify({
            'error': 'An unexpected error occurred',
            'message': 'Please try again later'
        }), 500

    logger.info("✅ Secure error handlers configured")


SMALL_BODY_LIMIT = 10 * 1024


def json_body() -> dict:
    """Request JSON as a dict; anything else (missing, invalid, array, scalar) is {}"""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def limit_body(max_bytes: int = SMALL_BODY_LIMIT):
    """Reject requests whose declared body exceeds max_bytes with 413"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if request.content_length is not None and request.content_length > max_bytes:
                return jsonify({'error': 'Request body too large'}), 413
            # Chunked bodies declare no length; read (bounded by MAX_CONTENT_LENGTH) and measure
            if request.content_length is None and len(request.get_data(cache=True)) > max_bytes:
                return jsonify({'error': 'Request body too large'}), 413
            return f(*args, **kwargs)
        return decorated_function
    return decorator
