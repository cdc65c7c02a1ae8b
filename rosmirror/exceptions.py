"""
RouterOS Mirror - Custom Exceptions and Exception Handlers
"""
import structlog
from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = structlog.get_logger('exceptions')


class UpdateServerException(Exception):
    """Base exception for the update server"""
    status_code = 400

    def __init__(self, message: str, code: str = "UPDATE_SERVER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self):
        return {
            'error': True,
            'code': self.code,
            'message': self.message
        }


class ValidationException(UpdateServerException):
    """Invalid request parameters or configuration"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")
        logger.warning("validation error", message=message)


class NotFoundException(UpdateServerException):
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, code="NOT_FOUND")


class ForbiddenException(UpdateServerException):
    """Raised for path traversal attempts"""
    status_code = 403

    def __init__(self, message: str = "Access forbidden"):
        super().__init__(message, code="FORBIDDEN")
        logger.warning("forbidden request", message=message)


class ConflictException(UpdateServerException):
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT")


class SyncCancelled(Exception):
    """A running sync was asked to stop"""


class DeadlineExceeded(Exception):
    """A running sync went past its deadline"""


def register_exception_handlers(app):
    """Register exception handlers with Flask app"""

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({
            'error': True,
            'code': e.name.upper().replace(' ', '_'),
            'message': e.description
        }), e.code

    @app.errorhandler(UpdateServerException)
    def handle_update_server_exception(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_generic_exception(e):
        logger.error("unhandled exception", error=str(e), exc_info=True)
        return jsonify({
            'error': True,
            'code': 'INTERNAL_ERROR',
            'message': 'An unexpected error occurred'
        }), 500
