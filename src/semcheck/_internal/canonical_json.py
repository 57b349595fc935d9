"""Byte-stable JSON for reports.

Two runs over the same inputs must produce identical report bytes, so keys
are sorted and separators fixed. Lists are written in the order given; the
aggregator sorts them before a report is built.
"""

import json
from typing import Any


def canonical_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
