"""Unit tests for output capture parsing."""

from pipeliner.capture import parse_capture
from pipeliner.model import (
    AfterCapture,
    BeforeCapture,
    BetweenCapture,
    FullCapture,
    JsonCapture,
    KeyValueCapture,
    LineRangeCapture,
    RegexCapture,
    YamlCapture,
)
from pipeliner.parser import parse_capture_entry

LINES = ["l1", "l2", "l3", "l4", "l5"]


def test_full_capture_joins_lines() -> None:
    assert parse_capture(FullCapture("x"), ["a", "b", "c"]) == "a\nb\nc"


def test_regex_first_group() -> None:
    assert parse_capture(RegexCapture("c", r"channel=(\S+)"), ["channel=prod"]) == "prod"
    assert parse_capture(RegexCapture("c", r"channel=(\S+)"), ["nothing here"]) is None


def test_regex_without_group_or_invalid_is_none() -> None:
    assert parse_capture(RegexCapture("c", r"channel"), ["channel=prod"]) is None
    assert parse_capture(RegexCapture("c", r"(unclosed"), ["anything"]) is None


def test_line_range() -> None:
    assert parse_capture(LineRangeCapture("x", 2, 4), LINES) == "l2\nl3\nl4"
    assert parse_capture(LineRangeCapture("x", 3, 2), LINES) is None
    assert parse_capture(LineRangeCapture("x", 6, 9), LINES) is None
    assert parse_capture(LineRangeCapture("x", 4, 99), LINES) == "l4\nl5"


def test_key_value_skips_comments_and_strips_quotes() -> None:
    assert parse_capture(KeyValueCapture("v", "KEY"), ["# KEY=wrong", 'KEY="val"']) == "val"
    assert parse_capture(KeyValueCapture("v", "TOP_SECRET"), ["TOP_SECRET=123"]) == "123"


def test_key_value_needs_exact_key() -> None:
    lines = ["KEY_LONG=nope", "KEY = 'spaced'"]
    assert parse_capture(KeyValueCapture("v", "KEY"), lines) == "spaced"
    assert parse_capture(KeyValueCapture("v", "KE"), lines) is None
    assert parse_capture(KeyValueCapture("v", "  "), lines) is None


def test_json_path() -> None:
    out = ['{"version": "1.2.3", "build": {"number": 42, "tags": ["a", "b"]}}']
    assert parse_capture(JsonCapture("v", "$.version"), out) == "1.2.3"
    assert parse_capture(JsonCapture("v", "$.build.number"), out) == "42"
    assert parse_capture(JsonCapture("v", "$.build.tags"), out) == '["a","b"]'
    assert parse_capture(JsonCapture("v", "$.missing"), out) is None


def test_json_errors_are_none() -> None:
    assert parse_capture(JsonCapture("v", "$.a"), ["not json"]) is None
    assert parse_capture(JsonCapture("v", "$[[["), ['{"a": 1}']) is None


def test_yaml_path() -> None:
    out = ["service:", "  name: api", "  replicas: 3"]
    assert parse_capture(YamlCapture("v", "$.service.name"), out) == "api"
    assert parse_capture(YamlCapture("v", "$.service.replicas"), out) == "3"


def test_after_before_between() -> None:
    out = ["Build started", "URL: https://example.test/run/7 (done)", "end"]
    assert parse_capture(AfterCapture("u", "URL:"), out) == "https://example.test/run/7 (done)\nend"
    assert parse_capture(BetweenCapture("u", "URL:", "(done)"), out) == "https://example.test/run/7"
    assert parse_capture(BeforeCapture("u", "URL:"), out) == "Build started"
    assert parse_capture(AfterCapture("u", "nope"), out) is None
    assert parse_capture(BetweenCapture("u", "URL:", "nope"), out) is None


def test_unknown_capture_shape_is_full() -> None:
    capture = parse_capture_entry({"as": "everything", "something": "else"})
    assert isinstance(capture, FullCapture)
    assert parse_capture(capture, ["a", "b"]) == "a\nb"


def test_capture_examples_round_trip() -> None:
    assert isinstance(parse_capture_entry({"as": "x", "yml": "$.a"}), YamlCapture)
    assert isinstance(parse_capture_entry({"as": "x", "after": "a", "before": "b"}), BetweenCapture)
    assert parse_capture_entry({"as": "x", "line": {"from": 1, "to": 2}}) == LineRangeCapture("x", 1, 2)
