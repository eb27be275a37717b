"""Exception hierarchy for reading ingestion and analysis."""

from __future__ import annotations

from typing import Any, Dict, Optional


class WaterQualityError(Exception):
    """Base exception for all water-quality core errors."""

    code = "WATER_QUALITY_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(WaterQualityError, ValueError):
    """A reading is missing a required field or has an out-of-range value."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class NoDataError(WaterQualityError):
    """Analysis was requested without any reading to analyse."""

    code = "NO_DATA"


class UpstreamFailure(WaterQualityError):
    """The language-model endpoint was unreachable or answered with an error status."""

    code = "UPSTREAM_FAILURE"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, details={"status_code": status_code} if status_code else None)
        self.status_code = status_code


class ContractViolation(WaterQualityError):
    """The endpoint answered, but not with the expected five-field JSON object."""

    code = "CONTRACT_VIOLATION"
