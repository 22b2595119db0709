"""
Momentum AI - Standardized API Response Format
"""
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class APIResponse:
    """Standardized API response structure"""
    success: bool
    data: Optional[Union[Dict[str, Any], List[Any], str, int, float]] = None
    error: Optional[str] = None
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response"""
        result = {
            "success": self.success,
            "timestamp": self.timestamp
        }

        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        if self.message is not None:
            result["message"] = self.message
        if self.metadata is not None:
            result["metadata"] = self.metadata

        return result


def success_response(
    data: Any = None,
    message: str = None,
    metadata: Dict[str, Any] = None
) -> APIResponse:
    """Create successful API response"""
    return APIResponse(
        success=True,
        data=data,
        message=message,
        metadata=metadata
    )


def error_response(
    error: str,
    message: str = None,
    metadata: Dict[str, Any] = None
) -> APIResponse:
    """Create error API response"""
    return APIResponse(
        success=False,
        error=error,
        message=message,
        metadata=metadata
    )
