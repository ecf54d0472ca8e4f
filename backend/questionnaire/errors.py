# questionnaire/errors.py
from __future__ import annotations


class AppError(Exception):
    # Base class for domain errors; status_code drives the HTTP mapping.
    status_code = 500


class ValidationError(AppError):
    # Malformed request body: missing or wrong-typed required field.
    status_code = 400


class NotFoundError(AppError):
    # Unknown survey id or object key.
    status_code = 404


class ConfigurationError(AppError):
    # Stored survey definition cannot be evaluated (e.g. scale min > max).
    status_code = 422


class PersistenceError(AppError):
    # Durable state could not be written.
    status_code = 500


class UpstreamError(AppError):
    # Object storage or the classification API failed or timed out.
    status_code = 502
