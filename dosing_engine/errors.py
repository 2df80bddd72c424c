#!/usr/bin/env python3
"""
Dosing Engine Error Code System
Provides specific, auditable error codes for lookup, selection and computation failures.
"""

from enum import Enum
from typing import Dict, Any, Optional
import logging


class ErrorCategory(str, Enum):
    LOOKUP = "lookup"
    SELECTION = "selection"
    COMPUTATION = "computation"
    REQUEST = "request"
    CATALOG = "catalog"


class ErrorCode(Enum):
    """Specific error codes for dosing engine components"""

    # Lookup Errors (LOOKUP_xxx)
    MEDICATION_NOT_FOUND = "LOOKUP_001"
    USE_CASE_NOT_FOUND = "LOOKUP_002"
    ROUTE_NOT_FOUND = "LOOKUP_003"

    # Selection Outcomes (SEL_xxx)
    NO_MATCHING_RULE = "SEL_001"

    # Computation Errors (CALC_xxx)
    MISSING_WEIGHT = "CALC_001"
    INVALID_CONCENTRATION = "CALC_002"
    UNKNOWN_CALC_MODE = "CALC_003"

    # Request Errors (REQ_xxx)
    INVALID_REQUEST = "REQ_001"

    # Catalog/Configuration Errors (CFG_xxx)
    CATALOG_NOT_FOUND = "CFG_001"
    CATALOG_INVALID = "CFG_002"
    CONFIG_INVALID = "CFG_003"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_PREFIX[self.value.split("_")[0]]


_CATEGORY_BY_PREFIX = {
    "LOOKUP": ErrorCategory.LOOKUP,
    "SEL": ErrorCategory.SELECTION,
    "CALC": ErrorCategory.COMPUTATION,
    "REQ": ErrorCategory.REQUEST,
    "CFG": ErrorCategory.CATALOG,
}


class DosingError(Exception):
    """Base exception class for the dosing engine with specific error codes"""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception

        super().__init__(f"[{error_code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/API responses"""
        return {
            "error_code": self.error_code.value,
            "kind": self.error_code.name,
            "category": self.error_code.category.value,
            "message": self.message,
            "description": get_error_description(self.error_code),
            "details": self.details,
            "original_error": str(self.original_exception) if self.original_exception else None
        }

    def to_failure(self):
        """Convert to the structured failure value returned across component boundaries"""
        from .schema import DosingFailure

        return DosingFailure(
            code=self.error_code,
            message=self.message,
            details=self.details,
        )


class ErrorLogger:
    """Centralized failure logging with structured output"""

    def __init__(self, logger_name: str = "dosing_engine"):
        self.logger = logging.getLogger(logger_name)

    def log_failure(self, failure, level: Optional[int] = None):
        """Log a DosingFailure; expected selection outcomes log at INFO"""
        if level is None:
            if failure.code.category == ErrorCategory.SELECTION:
                level = logging.INFO
            else:
                level = logging.WARNING

        self.logger.log(
            level,
            f"DOSING_FAILURE: {failure.code.value} - {failure.message}",
            extra={
                "error_code": failure.code.value,
                "details": failure.details,
            }
        )

    def log_error(self, error: DosingError, level: int = logging.ERROR):
        """Log a raised DosingError"""
        self.logger.log(
            level,
            f"DOSING_ERROR: {error.error_code.value} - {error.message}",
            extra={
                "error_code": error.error_code.value,
                "details": error.details,
            }
        )

        if error.original_exception:
            self.logger.debug(
                f"Original exception for {error.error_code.value}:",
                exc_info=error.original_exception
            )


def missing_weight_error(rule_id: Optional[str], weight_kg: Optional[float]) -> DosingError:
    """Create specific error for a per-kg rule evaluated without a usable weight"""
    return DosingError(
        error_code=ErrorCode.MISSING_WEIGHT,
        message="Patient weight is required for a per-kg dosing rule",
        details={
            "rule_id": rule_id,
            "weight_kg": weight_kg,
            "suggested_action": "Enter a patient weight greater than 0 kg"
        }
    )


def invalid_concentration_error(reason: str, **details: Any) -> DosingError:
    """Create specific error for an undefined or non-positive concentration"""
    return DosingError(
        error_code=ErrorCode.INVALID_CONCENTRATION,
        message=f"Invalid concentration: {reason}",
        details={
            **details,
            "suggested_action": "Check ampoule strength (mg, ml) and dilution volume"
        }
    )


# Error code mapping for quick lookups
ERROR_CODE_DESCRIPTIONS = {
    ErrorCode.MEDICATION_NOT_FOUND: "Selected medication does not exist in the catalog",
    ErrorCode.USE_CASE_NOT_FOUND: "Selected use case does not exist for this medication",
    ErrorCode.ROUTE_NOT_FOUND: "Selected route does not exist for this use case",
    ErrorCode.NO_MATCHING_RULE: "No dosing rule for this patient",
    ErrorCode.MISSING_WEIGHT: "Weight required for per-kg dosing",
    ErrorCode.INVALID_CONCENTRATION: "Concentration cannot be computed",
    ErrorCode.UNKNOWN_CALC_MODE: "Dosing rule has an unknown calculation mode",
    ErrorCode.INVALID_REQUEST: "Request parameters are invalid",
    ErrorCode.CATALOG_NOT_FOUND: "Medication catalog file does not exist",
    ErrorCode.CATALOG_INVALID: "Medication catalog could not be parsed",
    ErrorCode.CONFIG_INVALID: "Engine configuration is invalid",
}


def get_error_description(error_code: ErrorCode) -> str:
    """Get human-readable description for error code"""
    return ERROR_CODE_DESCRIPTIONS.get(error_code, "Unknown error")
