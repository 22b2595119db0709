"""
Momentum AI - Flask application factory
Stripe billing, Firebase-gated AI proxies and trial protection behind one JSON API
"""
import os
import logging

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from . import config
from .modules.core.logging_init import init_safe_logging, init_request_logging
from .modules.shared.firebase import init_firebase
from .security_config import init_cors, init_security, enhance_security_headers, secure_error_handlers

logger = logging.getLogger(__name__)

# AI and image payloads (conversation history, data URIs) can reach 1 MB
MAX_CONTENT_LENGTH = 1024 * 1024


def create_app(config_overrides=None):
    """Application factory pattern"""
    init_safe_logging(logging.DEBUG if os.getenv("DEBUG", "").lower() == "true" else logging.INFO)

    app = Flask(__name__)

    # ----- Core settings -----
    app.config["SECRET_KEY"] = config.get_secret_key()
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.config["JSON_SORT_KEYS"] = False

    # Trust one reverse proxy so request.remote_addr and scheme come from X-Forwarded-*
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    if config_overrides:
        app.config.update(config_overrides)

    # ----- Security & middleware -----
    init_cors(app)
    init_security(app)
    init_request_logging(app)
    enhance_security_headers(app)
    secure_error_handlers(app)

    # ----- External services -----
    init_firebase()

    register_blueprints(app)

    logger.info("🚀 Momentum AI application created successfully")
    logger.info(f"🔐 Environment: {config.get_environment()}")
    logger.info(f"🤖 AI access: {'free mode (rate limited)' if config.is_free_ai_mode() else 'Firebase auth required'}")

    return app


def register_blueprints(app):
    """Register all module blueprints"""
    # Health checks FIRST - they must work without authentication
    from .modules.health.routes import health_bp
    app.register_blueprint(health_bp)
    logger.info("✅ Health checks registered (/health, /healthz, /readyz, /api/health)")

    from .modules.payments.routes import payments_bp
    app.register_blueprint(payments_bp)
    logger.info("✅ Payment routes registered")

    from .modules.ai.routes import ai_bp
    app.register_blueprint(ai_bp)
    logger.info("✅ AI routes registered")

    from .modules.images.routes import images_bp
    app.register_blueprint(images_bp)
    logger.info("✅ Multimedia routes registered")

    from .modules.contact.routes import contact_bp
    app.register_blueprint(contact_bp)
    logger.info("✅ Contact route registered")
