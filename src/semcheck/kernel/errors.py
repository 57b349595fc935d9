"""Exception hierarchy for the semcheck kernel."""

from typing import Optional

from semcheck.codes import ErrorCode


class SemcheckError(Exception):
    """Base exception for all semcheck failures."""

    code: ErrorCode = ErrorCode.PARSE_ERROR

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        if path:
            super().__init__(f"{message} (at {path})")
        else:
            super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "path": self.path}


class ParseError(SemcheckError):
    """Raised when a parsed source tree is malformed or cannot be loaded."""

    code = ErrorCode.PARSE_ERROR


class ExtractionError(SemcheckError):
    """Base exception for failures that abort API model extraction."""

    code = ErrorCode.EXTRACTION_ERROR


class UnresolvedReexportError(ExtractionError):
    """Raised when a public re-export cannot be resolved and the
    configuration promotes unresolved re-exports to fatal."""

    code = ErrorCode.UNRESOLVED_REEXPORT

    def __init__(self, module: str, target: str):
        self.module = module
        self.target = target
        super().__init__(f"Re-export target '{target}' cannot be resolved", path=module)


class AmbiguousDefinitionError(ExtractionError):
    """Raised when one module defines the same name twice under
    overlapping #[cfg] predicates."""

    code = ErrorCode.AMBIGUOUS_DEFINITION

    def __init__(self, path: str, namespace: str):
        self.namespace = namespace
        super().__init__(
            f"Name is defined more than once in the {namespace} namespace "
            f"under overlapping #[cfg] predicates",
            path=path,
        )


class InvalidCfgError(ExtractionError):
    """Raised when a #[cfg] attribute cannot be interpreted."""

    code = ErrorCode.INVALID_CFG


class InvalidSignatureError(ExtractionError):
    """Raised when a type, bound or path in a declaration is not valid Rust
    syntax."""

    code = ErrorCode.INVALID_SIGNATURE


class ClassificationGap(SemcheckError):
    """Raised when the rule table has no entry for an observed change.

    This is an engine defect: a correct rule table makes it unreachable.
    """

    code = ErrorCode.CLASSIFICATION_GAP

    def __init__(self, path: str, detail: str):
        self.detail = detail
        super().__init__(f"No classification rule for {detail}", path=path)


class ConfigError(SemcheckError):
    """Raised when engine configuration or version input is invalid."""

    code = ErrorCode.INVALID_CONFIG


class InvalidVersionError(ConfigError):
    """Raised when a release version string cannot be parsed."""

    code = ErrorCode.INVALID_VERSION
