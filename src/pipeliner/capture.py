# capture.py
"""
Extract single values from a step's captured stdout.

Every parser here is total: malformed input, bad patterns or bad
JSONPath expressions give None instead of raising.
"""
from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Sequence

import yaml
from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as jsonpath_parse

from .model import (
    AfterCapture,
    BeforeCapture,
    BetweenCapture,
    Capture,
    FullCapture,
    JsonCapture,
    KeyValueCapture,
    LineRangeCapture,
    RegexCapture,
    YamlCapture,
)


def parse_capture(capture: Capture, lines: Sequence[str]) -> Optional[str]:
    text = "\n".join(lines)

    if isinstance(capture, FullCapture):
        return text
    if isinstance(capture, RegexCapture):
        return _regex(capture.pattern, text)
    if isinstance(capture, JsonCapture):
        return _json_path(capture.expr, text, loader=json.loads)
    if isinstance(capture, YamlCapture):
        return _json_path(capture.expr, text, loader=yaml.safe_load)
    if isinstance(capture, KeyValueCapture):
        return _key_value(capture.key, lines)
    if isinstance(capture, BetweenCapture):
        return _between(text, capture.after, capture.before)
    if isinstance(capture, AfterCapture):
        return _between(text, capture.marker, None)
    if isinstance(capture, BeforeCapture):
        return _before(text, capture.marker)
    if isinstance(capture, LineRangeCapture):
        return _line_range(lines, capture.start, capture.end)
    raise TypeError(f"unknown capture type: {type(capture).__name__}")


# ----------------------------------------------------------------------
# Individual extractors
# ----------------------------------------------------------------------

def _regex(pattern: str, text: str) -> Optional[str]:
    try:
        match = re.search(pattern, text)
    except re.error:
        return None
    if match is None or match.re.groups < 1:
        return None
    # empty group counts as no value
    return match.group(1) or None


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _json_path(expr: str, text: str, loader) -> Optional[str]:
    try:
        data = loader(text)
        found = jsonpath_parse(expr).find(data)
    except (ValueError, yaml.YAMLError, JsonPathLexerError, JsonPathParserError):
        return None
    except Exception:  # jsonpath_ng raises bare Exception for some malformed paths
        return None
    if not found:
        return None
    return _to_text(found[0].value)


def _key_value(key: str, lines: Sequence[str]) -> Optional[str]:
    key = key.strip()
    if not key:
        return None

    pattern = re.compile(rf"^{re.escape(key)}\s*=\s*(.+)$")
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = pattern.match(line)
        if match is None:
            continue
        value = match.group(1).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        return value
    return None


def _between(text: str, after: str, before: Optional[str]) -> Optional[str]:
    start = text.find(after)
    if start < 0:
        return None
    start += len(after)
    if before is None:
        return text[start:].strip()
    end = text.find(before, start)
    if end < 0:
        return None
    return text[start:end].strip()


def _before(text: str, marker: str) -> Optional[str]:
    end = text.find(marker)
    if end < 0:
        return None
    return text[:end].strip()


def _line_range(lines: Sequence[str], start: int, end: int) -> Optional[str]:
    if end < start:
        return None
    from_i = max(0, start - 1)
    to_i = min(len(lines), end)
    if from_i >= len(lines) or to_i <= from_i:
        return None
    selected: List[str] = list(lines[from_i:to_i])
    return "\n".join(selected)
