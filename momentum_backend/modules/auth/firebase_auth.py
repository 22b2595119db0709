"""
Momentum AI - Firebase ID-token verification
Bearer token gate for API routes
"""
import os
import time
import logging
from functools import wraps
from typing import Optional

from flask import request, jsonify, g
from firebase_admin import auth

from ... import config
from ..shared.api_response import error_response
from ..shared.firebase import is_firebase_initialized, init_firebase

logger = logging.getLogger(__name__)

TRUSTED_ISSUER_PREFIX = "https://securetoken.googleapis.com"
CLOCK_SKEW_SECONDS = 300


class AuthError(Exception):
    """Token verification failure carrying an HTTP status and a reason code"""

    def __init__(self, message: str, status_code: int = 401, reason: str = "invalid"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.reason = reason


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def _check_claims(decoded: dict):
    project_id = os.environ.get("FIREBASE_PROJECT_ID")
    if not project_id:
        return

    if decoded.get("aud") != project_id:
        raise AuthError("Invalid or expired token", reason="audience")

    if not str(decoded.get("iss", "")).startswith(TRUSTED_ISSUER_PREFIX):
        raise AuthError("Invalid or expired token", reason="issuer")

    exp = decoded.get("exp")
    if exp is not None and exp + CLOCK_SKEW_SECONDS < time.time():
        raise AuthError("Token expired or revoked. Please sign in again.", reason="expired")


def verify_bearer_token(header: Optional[str]) -> dict:
    """
    Verify an Authorization header value and return the decoded token.

    Raises AuthError with reason one of: missing, unavailable, expired,
    revoked, invalid_format, invalid, audience, issuer.
    """
    token = extract_bearer_token(header)
    if not token:
        raise AuthError("No authorization token provided", reason="missing")

    if not is_firebase_initialized() and not init_firebase():
        raise AuthError("Authentication service unavailable", status_code=503, reason="unavailable")

    try:
        decoded = auth.verify_id_token(token, check_revoked=config.is_production())
    except auth.RevokedIdTokenError:
        raise AuthError("Token expired or revoked. Please sign in again.", reason="revoked")
    except auth.ExpiredIdTokenError:
        raise AuthError("Token expired or revoked. Please sign in again.", reason="expired")
    except auth.InvalidIdTokenError as e:
        logger.warning(f"Rejected ID token: {e}")
        raise AuthError("Invalid or expired token", reason="invalid")
    except ValueError:
        raise AuthError("Invalid token format", reason="invalid_format")
    except auth.CertificateFetchError as e:
        logger.error(f"Could not fetch Firebase public keys: {e}")
        raise AuthError("Invalid or expired token", reason="invalid")

    _check_claims(decoded)
    return decoded


def user_from_token(decoded: dict) -> dict:
    return {
        "uid": decoded.get("uid") or decoded.get("sub"),
        "email": decoded.get("email"),
        "email_verified": bool(decoded.get("email_verified", False)),
    }


def requires_firebase_auth(f):
    """Decorator requiring a valid Firebase ID token; sets g.user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            decoded = verify_bearer_token(request.headers.get("Authorization"))
        except AuthError as e:
            logger.warning(f"Unauthorized request to {request.path}: {e.reason}")
            return jsonify(error_response(e.message).to_dict()), e.status_code

        g.user = user_from_token(decoded)
        return f(*args, **kwargs)
    return decorated_function
