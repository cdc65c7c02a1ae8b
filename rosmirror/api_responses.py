"""
API Response Utilities - the {code, success, data, message} envelope used by /api routes
"""

from flask import jsonify
from functools import wraps
import logging

from rosmirror.exceptions import UpdateServerException

logger = logging.getLogger(__name__)


class ErrorCode:
    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    # update-check outcomes
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    FETCH_FAILED = "FETCH_FAILED"
    CANCELLED = "CANCELLED"


DEFAULT_MESSAGES = {
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.VALIDATION_ERROR: "Invalid request parameters",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred",
    ErrorCode.FORBIDDEN: "Access forbidden",
    ErrorCode.CONFLICT: "Resource conflict",
}


def success_response(data=None, message=None, status_code=200):
    response = {"code": ErrorCode.SUCCESS, "success": True}
    if data is not None:
        response["data"] = data
    if message:
        response["message"] = message
    return jsonify(response), status_code


def error_response(error_code=ErrorCode.INTERNAL_ERROR, message=None, status_code=400, log_error=True):
    message = message or DEFAULT_MESSAGES.get(error_code)
    response = {"code": error_code, "success": False}
    if message:
        response["message"] = message

    if log_error and error_code in (ErrorCode.INTERNAL_ERROR, ErrorCode.VALIDATION_ERROR):
        logger.error(f"{error_code}: {message}")

    return jsonify(response), status_code


def handle_api_errors(f):
    """
    Map stray exceptions from an /api handler onto the error envelope.

    UpdateServerException subclasses are re-raised for the app-level handlers.
    """

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except UpdateServerException:
            raise
        except ValueError as e:
            return error_response(ErrorCode.VALIDATION_ERROR, message=str(e), status_code=400)
        except KeyError as e:
            return error_response(ErrorCode.VALIDATION_ERROR, message=f"Missing required parameter: {e}")
        except FileNotFoundError as e:
            return error_response(ErrorCode.NOT_FOUND, message=str(e), status_code=404)
        except PermissionError as e:
            return error_response(ErrorCode.FORBIDDEN, message=str(e), status_code=403)
        except Exception as e:
            logger.error(f"Unhandled exception in {f.__name__}: {e}", exc_info=True)
            return error_response(ErrorCode.INTERNAL_ERROR, status_code=500, log_error=False)

    return wrapper


def not_found_response(resource_type, resource_id=None):
    message = f"{resource_type} '{resource_id}' not found" if resource_id else f"{resource_type} not found"
    return error_response(ErrorCode.NOT_FOUND, message=message, status_code=404)
