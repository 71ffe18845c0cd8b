# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user
# for unclassified errors. If set to debug, too much sensitive info might be shown !
#
# The exceptions will be caught in http_method_decorator and formatted, for example:
# {
#      "success": false,
#      "message": "Validation failed",
#      "error": {"type": "ValidationError", "details": {"price": ["-5 is less than the minimum of 0"]}}
# }
#
import traceback
from http import HTTPStatus
from typing import Any, Dict, Optional
from werkzeug.exceptions import NotFound
from sqlalchemy.exc import DontWrapMixin
import safcrud
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"
SANITIZED_MESSAGE = "An unexpected error occurred"


class ApiError(Exception, DontWrapMixin):
    """
    Base class for the errors that are translated to an error envelope
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    error_type = "Unclassified"
    message = ""
    details = None

    def __init__(self, message: str = "", status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None) -> None:
        Exception.__init__(self, message)
        if status_code is not None:
            self.status_code = status_code
        self.message = message or self.message
        self.details = details

    def to_envelope(self) -> Dict[str, Any]:
        """
        :return: the error envelope sent to the client
        """
        error = {"type": self.error_type}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "message": self.message, "error": error}

    def __str__(self) -> str:
        return self.message


class InvalidRequestError(ApiError):
    """
    This exception is raised when the request can't be parsed (query string, body)
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    error_type = "InvalidRequest"
    message = "Invalid request"

    def __init__(self, message: str = "", status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code, details)
        safcrud.log.warning("InvalidRequest: %s", self.message)


class InvalidResourceError(ApiError):
    """
    This exception is raised when a resource identifier doesn't resolve to an exposed model
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    error_type = "InvalidResource"

    def __init__(self, resource_id: str = "") -> None:
        super().__init__(f'Unknown resource "{resource_id}"', details={"resource": resource_id})
        safcrud.log.warning("InvalidResource: %s", resource_id)


class InvalidFilterError(ApiError):
    """
    This exception is raised for unknown filter/sort/include paths and operators or malformed filter values
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    error_type = "InvalidFilter"

    def __init__(self, message: str = "", field: Optional[str] = None) -> None:
        details = {"field": field} if field is not None else None
        super().__init__(message, details=details)
        safcrud.log.warning("InvalidFilter: %s", message)


class NotFoundError(ApiError, NotFound):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    error_type = "NotFound"

    def __init__(self, message: str = "Resource not found") -> None:
        ApiError.__init__(self, message)
        safcrud.log.info("Not found: %s", message)


class DependencyConstraintError(ApiError):
    """
    This exception is raised when a delete is blocked by dependent records
    """

    status_code = HTTPStatus.CONFLICT.value
    error_type = "DependencyConstraintViolation"

    def __init__(self, message: str = "", dependents: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or "The resource has dependent records", details=dependents)
        safcrud.log.warning("DependencyConstraintViolation: %s", self.message)


class ValidationError(ApiError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value
    error_type = "ValidationError"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message or "Validation failed", status_code, details)
        safcrud.log.warning("ValidationError: %s %s", self.message, details or "")


class AmbiguousSearchMatchError(ApiError):
    """
    A relation search directive matched more than one candidate
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value
    error_type = "AmbiguousSearchMatch"

    def __init__(self, relation: str, criteria: Dict[str, Any], candidates: list) -> None:
        message = f'Search on "{relation}" matched {len(candidates)} candidates'
        super().__init__(message, details={"relation": relation, "criteria": criteria, "candidates": candidates})
        safcrud.log.warning("AmbiguousSearchMatch: %s", message)


class NoSearchMatchError(ApiError):
    """
    A relation search directive didn't match anything
    """

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY.value
    error_type = "NoSearchMatch"

    def __init__(self, relation: str, criteria: Any) -> None:
        message = f'Search on "{relation}" matched no candidates'
        super().__init__(message, details={"relation": relation, "criteria": criteria})
        safcrud.log.warning("NoSearchMatch: %s %s", message, criteria)


class GenericError(ApiError):
    """
    This exception is raised when an unclassified error has been detected
    The message is only passed to the client in debug mode
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    error_type = "Unclassified"

    def __init__(self, message: Any = "", status_code: Optional[int] = None) -> None:
        safcrud.log.error("Generic Error: %s", message)
        if is_debug():
            safcrud.log.debug(traceback.format_exc(120))
            text = f"{SANITIZED_MESSAGE}: {message}"
        else:
            text = f"{SANITIZED_MESSAGE} {HIDDEN_LOG}"
        super().__init__(text, status_code)


class SystemValidationError(Exception):
    """
    This exception is raised when the server side configuration is invalid (e.g. colliding resource ids)
    It is raised at startup and never translated to a response
    """

    def __init__(self, message: str = "") -> None:
        Exception.__init__(self, message)
        self.message = message
        safcrud.log.critical("Configuration Error: %s", message)
