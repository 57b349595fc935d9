"""Public API for semcheck.

High-level functions over parsed trees. Every ``source`` argument accepts a
path to a JSON-serialized tree, the deserialized dict, or a ``ParsedCrate``.
Consumers should use these functions instead of importing from _internal.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog

from semcheck.config import EngineConfig, load_config
from semcheck.contracts import Report, ReportEntry, ReportGap, ReportWarning
from semcheck.kernel.aggregate import ClassificationResult
from semcheck.kernel.diff import Change, diff_models
from semcheck.kernel.errors import ConfigError, ExtractionError, ParseError
from semcheck.kernel.extract import extract as _extract
from semcheck.kernel.model import ApiModel, Severity
from semcheck.kernel.pipeline import run_pipeline
from semcheck.kernel.tree import ParsedCrate
from semcheck.kernel.versioning import actual_bump, satisfies
from semcheck._internal.io.tree_loader import load_tree_from_dict, load_tree_from_path

logger = structlog.get_logger()

SourceLike = Union[str, os.PathLike, Path, Dict, ParsedCrate]
ConfigLike = Union[EngineConfig, Dict, None]

# Exit-code contract of check_release
EXIT_OK = 0
EXIT_INSUFFICIENT_BUMP = 1
EXIT_FAILURE = 2


def _normalize_path(path: Union[str, os.PathLike, Path]) -> Path:
    """Normalize path input to Path object."""
    return Path(path) if not isinstance(path, Path) else path


def _resolve_config(config: ConfigLike) -> EngineConfig:
    if config is None:
        return load_config()
    if isinstance(config, EngineConfig):
        return config
    if isinstance(config, dict):
        return load_config(**config)
    raise ConfigError(f"Unsupported config type {type(config).__name__}")


def parse(source: SourceLike) -> ParsedCrate:
    """Load a parsed source tree.

    Raises:
        ParseError: if the source is missing or malformed
    """
    if isinstance(source, ParsedCrate):
        return source
    if isinstance(source, dict):
        return load_tree_from_dict(source)
    return load_tree_from_path(_normalize_path(source))


def extract(source: SourceLike, config: ConfigLike = None) -> ApiModel:
    """Build the API model of one crate version.

    Raises:
        ParseError, ExtractionError, ConfigError
    """
    cfg = _resolve_config(config)
    return _extract(parse(source), fail_on_unresolved_reexport=cfg.fail_on_unresolved_reexport)


def diff(old: ApiModel, new: ApiModel) -> List[Change]:
    """Unclassified changes between two API models, ordered by path."""
    return diff_models(old, new)


def classify(old: SourceLike, new: SourceLike, config: ConfigLike = None) -> ClassificationResult:
    """Compare two crate versions and classify every change.

    Raises:
        ParseError: if a tree cannot be loaded
        ExtractionError: if a tree cannot be turned into an API model
        ConfigError: if the configuration is invalid
    """
    cfg = _resolve_config(config)
    return run_pipeline(
        parse(old),
        parse(new),
        options=cfg.classify_options(),
        fail_on_unresolved_reexport=cfg.fail_on_unresolved_reexport,
        shard_count=cfg.shard_count,
        max_workers=cfg.max_workers,
    )


def build_report(
    result: ClassificationResult,
    crate: str,
    old_version: Optional[str] = None,
    new_version: Optional[str] = None,
) -> Report:
    """Turn a classification result into a Report.

    The actual bump and verdict are filled in when both versions are given.

    Raises:
        InvalidVersionError: if a version is malformed or the new one is lower
    """
    actual: Optional[Severity] = None
    verdict = "unchecked"
    if old_version and new_version:
        actual = actual_bump(old_version, new_version)
        verdict = "ok" if satisfies(actual, result.overall) else "insufficient"

    return Report(
        crate=crate,
        old_version=old_version,
        new_version=new_version,
        required_bump=result.overall.label,
        actual_bump=actual.label if actual is not None else None,
        verdict=verdict,
        entries=[
            ReportEntry(
                path=c.path,
                change_kind=c.change.kind.value,
                item_kind=c.change.item_kind.value,
                severity=c.severity.label,
                reason=c.reason,
                rule=c.rule,
            )
            for c in result.changes
        ],
        warnings=[ReportWarning(**w.to_dict()) for w in result.warnings],
        gaps=[ReportGap(path=g.path, detail=g.detail) for g in result.gaps],
    )


def check_release(
    old: SourceLike,
    new: SourceLike,
    config: ConfigLike = None,
    old_version: Optional[str] = None,
    new_version: Optional[str] = None,
) -> Tuple[int, Report]:
    """Check that a release's version bump covers its API changes.

    Versions default to the ``version`` recorded in each tree. Returns the
    exit code and the report:

    - 0: the actual bump satisfies the required bump, or no versions were
      available to check against
    - 1: the actual bump is smaller than required
    - 2: a tree could not be parsed or extracted, or the config or versions
      are invalid; the report's ``error`` names the offending path
    """
    crate = ""
    try:
        cfg = _resolve_config(config)
        old_tree, new_tree = parse(old), parse(new)
        crate = new_tree.name
        old_version = old_version or old_tree.version
        new_version = new_version or new_tree.version
        result = classify(old_tree, new_tree, cfg)
        report = build_report(result, crate, old_version, new_version)
    except (ParseError, ExtractionError, ConfigError) as e:
        logger.error("check_failed", code=e.code.value, message=e.message, path=e.path)
        return EXIT_FAILURE, Report(
            crate=crate,
            old_version=old_version,
            new_version=new_version,
            verdict="error",
            error=e.to_dict(),
        )

    if report.verdict == "insufficient":
        logger.info(
            "insufficient_bump",
            crate=crate,
            required=report.required_bump,
            actual=report.actual_bump,
        )
        return EXIT_INSUFFICIENT_BUMP, report
    return EXIT_OK, report
