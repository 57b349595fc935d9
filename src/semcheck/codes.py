"""Code constants for warnings and errors raised by semcheck.

These constants prevent stringly-typed codes and ensure client code
matches on the same values the engine emits.
"""

from enum import Enum


class WarningCode(str, Enum):
    """Extraction and comparison warning codes (non-blocking)."""

    UNRESOLVED_REEXPORT = "UNRESOLVED_REEXPORT"
    EXTERNAL_REEXPORT = "EXTERNAL_REEXPORT"
    GLOB_CONFLICT = "GLOB_CONFLICT"
    PATH_COLLISION = "PATH_COLLISION"
    MODULE_ROUTE_LIMIT = "MODULE_ROUTE_LIMIT"
    UNRESOLVED_IMPL_TARGET = "UNRESOLVED_IMPL_TARGET"
    AMBIGUOUS_KIND_CHANGE = "AMBIGUOUS_KIND_CHANGE"


class ErrorCode(str, Enum):
    """Error codes carried by SemcheckError subclasses."""

    # Fatal, abort before or during extraction
    PARSE_ERROR = "PARSE_ERROR"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    UNRESOLVED_REEXPORT = "UNRESOLVED_REEXPORT"
    AMBIGUOUS_DEFINITION = "AMBIGUOUS_DEFINITION"
    INVALID_CFG = "INVALID_CFG"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Engine defects, recorded per change
    CLASSIFICATION_GAP = "CLASSIFICATION_GAP"

    # Configuration
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_VERSION = "INVALID_VERSION"
