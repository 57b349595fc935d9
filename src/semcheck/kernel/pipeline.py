"""Comparison pipeline: extract both releases, diff, classify, aggregate.

Old and new extraction run on two worker threads. Differ and classifier work
over shards of the canonical-path key space (grouped by top-level module, so a
module's items stay together), and shard results reduce with ``merge``. The
aggregate is independent of shard count and completion order.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

import structlog

from .aggregate import ClassificationResult, Gap, aggregate, merge
from .classify import ClassifiedChange, ClassifyOptions, classify_change
from .diff import diff_models, kind_change_warnings
from .errors import ClassificationGap
from .extract import extract
from .model import ApiModel, Severity, shard_key
from .tree import ParsedCrate

logger = structlog.get_logger()

GAP_RULE = "classification_gap"


def extract_pair(
    old_tree: ParsedCrate,
    new_tree: ParsedCrate,
    fail_on_unresolved_reexport: bool = False,
) -> Tuple[ApiModel, ApiModel]:
    """Extract both releases concurrently.

    Raises:
        ExtractionError: from whichever side fails first (old is checked first)
    """
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="semcheck-extract") as pool:
        old_future = pool.submit(extract, old_tree, fail_on_unresolved_reexport)
        new_future = pool.submit(extract, new_tree, fail_on_unresolved_reexport)
        old_model = old_future.result()
        new_model = new_future.result()
    logger.debug("extraction_done", old_items=len(old_model), new_items=len(new_model))
    return old_model, new_model


def shard_paths(old: ApiModel, new: ApiModel, shard_count: int) -> List[FrozenSet[str]]:
    """Split the union of both key sets into at most shard_count shards.

    Top-level modules are dealt to shards round-robin in sorted order, so the
    split is deterministic. Empty shards are dropped.
    """
    groups: Dict[str, Set[str]] = {}
    for path in old.paths() | new.paths():
        groups.setdefault(shard_key(path), set()).add(path)

    shards: List[Set[str]] = [set() for _ in range(max(1, shard_count))]
    for i, key in enumerate(sorted(groups)):
        shards[i % len(shards)].update(groups[key])
    return [frozenset(shard) for shard in shards if shard]


def classify_shard(
    old: ApiModel,
    new: ApiModel,
    keys: Optional[FrozenSet[str]] = None,
    options: Optional[ClassifyOptions] = None,
) -> ClassificationResult:
    """Diff and classify one shard (the whole key space when keys is None).

    A change the rule table misses is logged, recorded as a Gap and counted
    as Major; it never aborts the shard.
    """
    changes = diff_models(old, new, keys)
    classified: List[ClassifiedChange] = []
    gaps: List[Gap] = []
    for change in changes:
        try:
            classified.append(classify_change(change, options))
        except ClassificationGap as e:
            logger.error("classification_gap", path=e.path, detail=e.detail)
            gaps.append(Gap(path=e.path, detail=e.detail))
            classified.append(ClassifiedChange(
                change=change,
                severity=Severity.MAJOR,
                reason=f"unclassified change ({e.detail})",
                rule=GAP_RULE,
            ))
    return aggregate(classified, kind_change_warnings(changes), gaps)


def compare_models(
    old: ApiModel,
    new: ApiModel,
    options: Optional[ClassifyOptions] = None,
    shard_count: int = 1,
    max_workers: Optional[int] = None,
) -> ClassificationResult:
    """Classify every difference between two models.

    Extraction warnings of each model are carried into the result, tagged
    with the side they came from.
    """
    shards = shard_paths(old, new, shard_count)
    if len(shards) <= 1:
        results = [classify_shard(old, new, shards[0] if shards else frozenset(), options)]
    else:
        workers = max_workers or len(shards)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="semcheck-shard") as pool:
            results = list(pool.map(lambda keys: classify_shard(old, new, keys, options), shards))
    logger.debug("classification_done", shards=len(shards))

    side_warnings = [replace(w, side="old") for w in old.warnings]
    side_warnings.extend(replace(w, side="new") for w in new.warnings)
    result = merge(*results, aggregate((), side_warnings))
    logger.debug(
        "aggregation_done",
        overall=result.overall.label,
        changes=len(result),
        warnings=len(result.warnings),
        gaps=len(result.gaps),
    )
    return result


def run_pipeline(
    old_tree: ParsedCrate,
    new_tree: ParsedCrate,
    options: Optional[ClassifyOptions] = None,
    fail_on_unresolved_reexport: bool = False,
    shard_count: int = 1,
    max_workers: Optional[int] = None,
) -> ClassificationResult:
    """Full comparison of two parsed trees.

    Raises:
        ExtractionError: if either tree cannot be turned into an API model
    """
    old_model, new_model = extract_pair(old_tree, new_tree, fail_on_unresolved_reexport)
    return compare_models(old_model, new_model, options, shard_count, max_workers)
