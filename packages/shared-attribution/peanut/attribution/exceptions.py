"""Custom exceptions for the attribution engine."""

from __future__ import annotations

from typing import Any


class AttributionError(Exception):
    """Base exception for attribution errors."""

    status_code: int = 500


class ConversionNotFound(AttributionError):
    """Raised when a conversion id does not exist."""

    status_code = 404

    def __init__(self, conversion_id: Any):
        super().__init__(f"Conversion not found: {conversion_id}")
        self.conversion_id = conversion_id


class InvalidModel(AttributionError, ValueError):
    """Raised when an unrecognized attribution model is requested."""

    status_code = 400

    def __init__(self, model: Any):
        super().__init__(f"Unknown attribution model: {model}")
        self.model = model


class StorageError(AttributionError):
    """Raised when a touch, conversion or result store fails."""

    status_code = 500
