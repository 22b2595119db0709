"""AI service exception hierarchy"""


class AIServiceError(Exception):
    """Provider call failed"""


class ProviderUnavailableError(AIServiceError):
    """Provider could not be reached"""


class AITimeoutError(AIServiceError):
    """Provider did not answer in time"""


class JSONParseError(AIServiceError):
    """Model output could not be parsed as a JSON object or array"""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response[:500]


class SchemaValidationError(AIServiceError):
    """Parsed model output does not match the requested schema"""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = errors or []
