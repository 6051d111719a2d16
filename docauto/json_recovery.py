"""Recover a JSON value from free-form model output.

Each step is a pure function that returns the parsed value or None. ``recover_json``
tries them in order and returns the first success; it never raises.
"""

import json
import re

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_ADJACENT_OBJECTS_RE = re.compile(r"}\s*{")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "‟": '"',
    "″": '"',
    "‘": "'",
    "’": "'",
    "‚": "'",
    "‛": "'",
}


def _loads(raw: str | None):
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, RecursionError):
        return None


def extract_fenced_block(raw: str) -> str | None:
    """Contents of the first ``` fenced block, if any."""
    m = _FENCE_RE.search(raw or "")
    if not m:
        return None
    body = m.group(1).strip()
    return body or None


def extract_balanced_object(raw: str) -> str | None:
    """First top-level ``{...}`` span by brace depth. Braces inside strings are ignored."""
    if not raw:
        return None
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, c in enumerate(raw):
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"' and depth > 0:
            in_string = True
        elif c == "{":
            if depth == 0:
                start = i
            depth += 1
        elif c == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                return raw[start : i + 1]
    return None


def _sanitize_json_control_chars(raw: str) -> str:
    """Replace unescaped control characters inside JSON string values with a space."""
    result = []
    i = 0
    while i < len(raw):
        if raw[i] == '"' and (i == 0 or raw[i - 1] != "\\"):
            result.append(raw[i])
            i += 1
            while i < len(raw):
                c = raw[i]
                if c == "\\" and i + 1 < len(raw):
                    result.append(c)
                    result.append(raw[i + 1])
                    i += 2
                    continue
                if c == '"':
                    result.append(c)
                    i += 1
                    break
                result.append(" " if ord(c) < 32 else c)
                i += 1
            continue
        result.append(raw[i])
        i += 1
    return "".join(result)


def conservative_cleanup(raw: str) -> str:
    """Drop trailing commas before a closing bracket and strip control characters."""
    cleaned = _sanitize_json_control_chars(raw)
    cleaned = _CONTROL_CHARS_RE.sub("", cleaned)
    return _TRAILING_COMMA_RE.sub(r"\1", cleaned)


def aggressive_cleanup(raw: str) -> str:
    """Normalise smart quotes, cut an object after its final '}', add commas between adjacent objects."""
    cleaned = raw
    for smart, plain in _SMART_QUOTES.items():
        cleaned = cleaned.replace(smart, plain)
    last = cleaned.rfind("}")
    if last != -1 and cleaned.lstrip().startswith("{"):
        cleaned = cleaned[: last + 1]
    cleaned = _ADJACENT_OBJECTS_RE.sub("},{", cleaned)
    return conservative_cleanup(cleaned)


def parse_strict(candidate: str):
    return _loads(candidate)


def parse_conservative(candidate: str):
    return _loads(conservative_cleanup(candidate))


def parse_aggressive(candidate: str):
    return _loads(aggressive_cleanup(candidate))


def _candidates(raw: str) -> list[str]:
    out = []
    fenced = extract_fenced_block(raw)
    if fenced:
        out.append(fenced)
    balanced = extract_balanced_object(raw)
    if balanced:
        out.append(balanced)
    first = raw.find("{")
    if first != -1:
        # Unbalanced tail (e.g. a truncated response) still gets the cleanup passes.
        out.append(raw[first:])
    stripped = raw.strip()
    if stripped.startswith("["):
        out.append(stripped)
    seen = set()
    unique = []
    for c in out:
        if c not in seen:
            seen.add(c)
            unique.append(c)
    return unique


def recover_json(raw: str | None):
    """Best-effort parse of model output; None when nothing is recoverable."""
    if not raw or not raw.strip():
        return None
    for step in (parse_strict, parse_conservative, parse_aggressive):
        for candidate in _candidates(raw):
            value = step(candidate)
            if value is not None:
                return value
    return None


def recover_object(raw: str | None) -> dict | None:
    """Like ``recover_json`` but only accepts a JSON object."""
    value = recover_json(raw)
    return value if isinstance(value, dict) else None
