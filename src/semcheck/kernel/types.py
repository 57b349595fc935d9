"""Normalization of source-level type and bound strings.

Signatures arrive as Rust source fragments (``&'a mut Vec<T>``). Before they
are stored in an API model they are tokenized and rewritten so that two
spellings of the same contract compare equal:

- lifetimes are erased (``&'a T`` -> ``&T``, ``Foo<'a, T>`` -> ``Foo<T>``,
  ``dyn Tr + 'a`` -> ``dyn Tr``),
- higher-ranked binders keep their shape with anonymous lifetimes
  (``for<'a, 'b>`` -> ``for<'_, '_>``),
- paths may be rewritten by a resolver (``fmt::Result`` -> ``std::fmt::Result``),
- whitespace is canonical.
"""

import re
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<lifetime>'[^\W\d]\w*)
    | (?P<ident>[^\W\d]\w*)
    | (?P<number>[0-9]\w*)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<punct>::|->|=>|\.\.=|\.\.|[&*<>(),\[\];:+=!?{}\-#./|^%@~])
    """,
    re.VERBOSE,
)

_WORD_KINDS = ("ident", "number", "lifetime", "string")

# Identifiers that never start a resolvable path.
_KEYWORDS = frozenset({
    "as", "const", "dyn", "extern", "fn", "for", "impl", "mut", "unsafe",
    "where", "Self", "_",
})

PRIMITIVES = frozenset({
    "bool", "char", "str", "i8", "i16", "i32", "i64", "i128", "isize",
    "u8", "u16", "u32", "u64", "u128", "usize", "f32", "f64",
})

Token = Tuple[str, str]  # (kind, text)
PathResolver = Callable[[Tuple[str, ...]], Optional[str]]


class TypeSyntaxError(ValueError):
    """Raised when a type string contains characters outside Rust type syntax."""


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise TypeSyntaxError(f"Unexpected character {text[pos]!r} in '{text}'")
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


def _matching_close(tokens: Sequence[Token], open_index: int) -> int:
    """Index of the `>` closing the `<` at open_index (or len(tokens))."""
    depth = 0
    for index in range(open_index, len(tokens)):
        text = tokens[index][1]
        if text == "<":
            depth += 1
        elif text == ">":
            depth -= 1
            if depth == 0:
                return index
    return len(tokens)


def erase_lifetimes(tokens: Sequence[Token]) -> List[Token]:
    out: List[Token] = []
    index = 0
    while index < len(tokens):
        kind, text = tokens[index]

        if text == "for" and index + 1 < len(tokens) and tokens[index + 1][1] == "<":
            close = _matching_close(tokens, index + 1)
            count = sum(1 for k, _ in tokens[index + 2:close] if k == "lifetime")
            out.append(("ident", "for"))
            out.append(("punct", "<"))
            for n in range(count):
                if n:
                    out.append(("punct", ","))
                out.append(("lifetime", "'_"))
            out.append(("punct", ">"))
            index = close + 1
            continue

        if kind != "lifetime":
            out.append((kind, text))
            index += 1
            continue

        prev = out[-1][1] if out else None
        nxt = tokens[index + 1][1] if index + 1 < len(tokens) else None
        index += 1
        if prev == "<" and nxt == ">":
            out.pop()
            index += 1
        elif prev == "<" and nxt == ",":
            index += 1
        elif prev == "," and nxt in (">", ","):
            out.pop()
        elif prev == "+":
            out.pop()
        elif nxt == "+":
            index += 1
    return out


def _strip_global_markers(tokens: Sequence[Token]) -> List[Token]:
    """Drop the leading `::` of global paths (`::std::fmt` -> `std::fmt`)."""
    out: List[Token] = []
    for kind, text in tokens:
        if text == "::" and (not out or (out[-1][0] != "ident" and out[-1][1] != ">")):
            continue
        out.append((kind, text))
    return out


def _resolve_paths(
    tokens: Sequence[Token],
    resolve: PathResolver,
    generic_names: FrozenSet[str],
) -> List[Token]:
    out: List[Token] = []
    index = 0
    while index < len(tokens):
        kind, text = tokens[index]
        prev = tokens[index - 1][1] if index else None
        starts_path = (
            kind == "ident"
            and prev != "::"
            and text not in _KEYWORDS
            and text not in generic_names
        )
        if not starts_path:
            out.append((kind, text))
            index += 1
            continue

        segments = [text]
        end = index + 1
        while (
            end + 1 < len(tokens)
            and tokens[end][1] == "::"
            and tokens[end + 1][0] == "ident"
        ):
            segments.append(tokens[end + 1][1])
            end += 2

        is_assoc_name = end < len(tokens) and tokens[end][1] in ("=", ":") and prev in ("<", ",")
        replacement = None
        if not is_assoc_name and not (len(segments) == 1 and text in PRIMITIVES):
            replacement = resolve(tuple(segments))
        if replacement is None:
            out.extend(tokens[index:end])
        else:
            out.append(("ident", replacement))
        index = end
    return out


def _separator(prev: Token, cur: Token) -> str:
    prev_kind, prev_text = prev
    cur_kind, cur_text = cur
    if cur_text in ("->", "+", "=", "=>") or prev_text in ("->", "+", "=", "=>"):
        return " "
    if prev_text in (",", ";", ":") and cur_text not in (">", ")", "]"):
        return " "
    if cur_kind in _WORD_KINDS and (prev_kind in _WORD_KINDS or prev_text in (">", ")", "]")):
        return " "
    return ""


def render(tokens: Sequence[Token]) -> str:
    parts: List[str] = []
    for index, token in enumerate(tokens):
        if index:
            parts.append(_separator(tokens[index - 1], token))
        parts.append(token[1])
    return "".join(parts)


def normalize_type(
    text: str,
    resolve: Optional[PathResolver] = None,
    generic_names: FrozenSet[str] = frozenset(),
) -> str:
    """Return the canonical spelling of a type string."""
    tokens = _strip_global_markers(erase_lifetimes(tokenize(text)))
    if resolve is not None:
        tokens = _resolve_paths(tokens, resolve, generic_names)
    return render(tokens)


def normalize_bound(
    text: str,
    resolve: Optional[PathResolver] = None,
    generic_names: FrozenSet[str] = frozenset(),
) -> Optional[str]:
    """Normalize one trait bound; return None for a pure lifetime bound."""
    tokens = tokenize(text)
    if len(tokens) == 1 and tokens[0][0] == "lifetime":
        return None
    normalized = normalize_type(text, resolve, generic_names)
    return normalized or None


def split_bounds(text: str) -> List[str]:
    """Split ``A + B<C + D> + 'a`` into top-level bound strings."""
    bounds: List[str] = []
    depth = 0
    current: List[str] = []
    for index, char in enumerate(text):
        if char in "<([":
            depth += 1
        elif char in ">)]" and not (char == ">" and index and text[index - 1] == "-"):
            depth -= 1
        if char == "+" and depth == 0:
            bounds.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        bounds.append(tail)
    return [b for b in bounds if b]


def base_path(text: str) -> Optional[Tuple[str, ...]]:
    """Path of the nominal type behind references and generic arguments.

    ``&'a mut crate::a::Foo<T>`` -> ``("crate", "a", "Foo")``; tuples,
    slices, arrays and pointers-to-those have no base path.
    """
    tokens = erase_lifetimes(tokenize(text))
    index = 0
    while index < len(tokens) and tokens[index][1] in ("&", "*", "mut", "const", "dyn"):
        index += 1
    if index < len(tokens) and tokens[index][1] == "::":
        index += 1
    if index >= len(tokens) or tokens[index][0] != "ident":
        return None
    segments = [tokens[index][1]]
    index += 1
    while (
        index + 1 < len(tokens)
        and tokens[index][1] == "::"
        and tokens[index + 1][0] == "ident"
    ):
        segments.append(tokens[index + 1][1])
        index += 2
    return tuple(segments)
