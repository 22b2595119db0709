"""
Momentum AI - Auth Module
Firebase ID-token verification
"""
from .firebase_auth import AuthError, verify_bearer_token, requires_firebase_auth

__all__ = ['AuthError', 'verify_bearer_token', 'requires_firebase_auth']
