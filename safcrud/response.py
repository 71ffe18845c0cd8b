# Response objects returned by the resource controller
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ApiResponse:
    """
    Status code and json body, serialized by the http layer
    """

    status: int
    body: Dict[str, Any]

    @classmethod
    def success(cls, data: Any = None, message: Optional[str] = None, status: int = 200, meta: Optional[Dict[str, Any]] = None) -> "ApiResponse":
        """
        Create the success envelope: {"success": true, "data": ..., "message": ...}
        """
        body = {"success": True, "data": data, "message": message}
        if meta is not None:
            body["meta"] = meta
        return cls(status, body)
