"""semcheck: semantic-versioning compliance checks for Rust library releases."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("semcheck")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from semcheck.api import check_release, classify, parse, build_report
from semcheck._internal.logging import configure_logging
from semcheck.codes import ErrorCode, WarningCode
from semcheck.config import EngineConfig, load_config
from semcheck.contracts import Report, ReportEntry, ReportGap, ReportWarning
from semcheck.kernel.aggregate import ClassificationResult
from semcheck.kernel.errors import (
    ClassificationGap,
    ConfigError,
    ExtractionError,
    ParseError,
    SemcheckError,
)
from semcheck.kernel.model import Severity

__all__ = [
    "__version__",
    "check_release",
    "classify",
    "parse",
    "build_report",
    "configure_logging",
    "ClassificationResult",
    "Severity",
    "EngineConfig",
    "load_config",
    "Report",
    "ReportEntry",
    "ReportGap",
    "ReportWarning",
    "ErrorCode",
    "WarningCode",
    "SemcheckError",
    "ParseError",
    "ExtractionError",
    "ClassificationGap",
    "ConfigError",
]
