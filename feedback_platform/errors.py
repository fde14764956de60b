"""API exceptions and the JSON error handlers."""

import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from feedback_platform import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"message": self.message}


class ValidationFailed(ApiError):
    """``errors`` is a list of ``{"loc": [...], "msg": str, "type": str}``."""

    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, message, exc):
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        return cls(message, errors)

    @classmethod
    def for_field(cls, message, field, msg, type_="value_error"):
        return cls(message, [{"loc": [field], "msg": msg, "type": type_}])

    def to_dict(self):
        return {"message": self.message, "errors": self.errors}


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        if error.status_code >= 500:
            logger.error("API error: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        logger.warning("Integrity conflict: %s", error.orig)
        return jsonify({"message": "Operation conflicts with existing records"}), 409

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        db.session.rollback()
        logger.exception("Unhandled error")
        return jsonify({"message": "Internal server error"}), 500
