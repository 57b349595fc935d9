"""Public report models for semcheck.

A Report is what a report consumer receives: the required bump, the actual
bump when versions were supplied, and the explained change list in
aggregator order.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from semcheck._internal.canonical_json import canonical_dumps

REPORT_SCHEMA_VERSION = "1"


class ReportEntry(BaseModel):
    """One classified change."""
    model_config = ConfigDict(extra="forbid")

    path: str  # canonical public path, "impl Trait for Type" for trait impls
    change_kind: str  # "added" | "removed" | "kind_changed" | "modified"
    item_kind: str  # "function" | "struct" | "enum" | "trait" | ...
    severity: str  # "none" | "patch" | "minor" | "major"
    reason: str
    rule: str  # rule-table entry that decided the severity


class ReportWarning(BaseModel):
    """A non-fatal extraction or comparison warning."""
    model_config = ConfigDict(extra="forbid")

    code: str  # WarningCode value
    path: str
    message: str
    side: str  # "old" | "new" | "" (comparison-level)


class ReportGap(BaseModel):
    """A change the rule table did not cover; counted as major."""
    model_config = ConfigDict(extra="forbid")

    path: str
    detail: str


class Report(BaseModel):
    """Outcome of comparing two releases of one crate."""
    model_config = ConfigDict(extra="forbid")

    schema_version: str = REPORT_SCHEMA_VERSION
    crate: str
    old_version: Optional[str] = None
    new_version: Optional[str] = None
    required_bump: Optional[str] = None  # "none" | "patch" | "minor" | "major"; None on error
    actual_bump: Optional[str] = None  # None when versions were not supplied
    verdict: str  # "ok" | "insufficient" | "unchecked" | "error"
    entries: List[ReportEntry] = Field(default_factory=list)  # severity desc, then path
    warnings: List[ReportWarning] = Field(default_factory=list)
    gaps: List[ReportGap] = Field(default_factory=list)
    error: Optional[dict] = None  # {code, message, path} when verdict == "error"

    def to_canonical_json(self) -> str:
        return canonical_dumps(self.model_dump(mode="json"))
