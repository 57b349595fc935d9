"""Parsed source tree I/O helpers (internal).

The reference provider: a parsed tree serialized as JSON, one file per crate
version, validated into ``ParsedCrate``.
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError

from semcheck.kernel.errors import ParseError
from semcheck.kernel.tree import ParsedCrate


def _location(error: ValidationError) -> str:
    first = error.errors()[0]
    return ".".join(str(part) for part in first["loc"])


def load_tree_from_dict(data: Dict[str, Any], origin: str = "<dict>") -> ParsedCrate:
    """Validate a deserialized tree.

    Raises:
        ParseError: if the data does not describe a well-formed tree
    """
    if not isinstance(data, dict):
        raise ParseError(f"Parsed tree must be a JSON object, got {type(data).__name__}", path=origin)
    try:
        return ParsedCrate.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        raise ParseError(f"Malformed parsed tree: {first['msg']}", path=f"{origin}:{_location(e)}") from e


def load_tree_from_path(path: Union[str, Path]) -> ParsedCrate:
    """Load a parsed tree from a JSON file path.

    Raises:
        ParseError: if the file is missing, not JSON or not a well-formed tree
    """
    tree_path = Path(path)
    try:
        data = json.loads(tree_path.read_bytes())
    except FileNotFoundError:
        raise ParseError("Parsed tree file not found", path=str(tree_path)) from None
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e.msg} (line {e.lineno})", path=str(tree_path)) from e
    return load_tree_from_dict(data, origin=str(tree_path))
