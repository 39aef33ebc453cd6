"""Failure code constants for regeneration reports.

These constants prevent stringly-typed error codes and ensure
client code (CLI, listeners, tests) uses the correct failure codes.
"""

from enum import Enum


class FailureCode(str, Enum):
    """Failure codes attached to derivation and effect outcomes."""

    # Input errors
    IO_ERROR = "IO_ERROR"
    PARSE_ERROR = "PARSE_ERROR"

    # Derivation errors
    BUILD_ERROR = "BUILD_ERROR"
    DB_ERROR = "DB_ERROR"

    # Non-error outcomes
    SKIPPED_MISSING_DEPENDENCY = "SKIPPED_MISSING_DEPENDENCY"
    EFFECT_FAILED = "EFFECT_FAILED"
