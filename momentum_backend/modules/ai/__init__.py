"""
Momentum AI - AI Module
Ollama and OpenAI-compatible text generation
"""
from .ai_service import AIService, get_ai_service
from .errors import AIServiceError, AITimeoutError, JSONParseError, SchemaValidationError

__all__ = [
    'AIService',
    'get_ai_service',
    'AIServiceError',
    'AITimeoutError',
    'JSONParseError',
    'SchemaValidationError',
]
