"""Unit tests for {{var}} substitution."""

from pipeliner.template import substitute
from pipeliner.workspace import Workspace


def test_substitutes_with_and_without_spaces() -> None:
    ws = Workspace()
    ws.set_variable("env", "prod")
    assert substitute("deploy {{env}} {{ env }}", ws) == "deploy prod prod"


def test_unresolved_token_is_left_literal() -> None:
    ws = Workspace()
    assert substitute("echo {{missing}} and {{ also_missing }}", ws) == "echo {{missing}} and {{ also_missing }}"


def test_variables_win_over_facts_and_facts_are_stringified() -> None:
    ws = Workspace()
    ws.set_fact("ready", True)
    ws.set_fact("name", "from-fact")
    ws.set_variable("name", "from-var")
    assert substitute("{{ready}}/{{name}}", ws) == "true/from-var"


def test_choice_is_last_fallback() -> None:
    ws = Workspace()
    ws.set_choice("blue", "blue")
    assert substitute("color={{blue}}", ws) == "color=blue"


def test_text_without_tokens_is_unchanged() -> None:
    ws = Workspace()
    assert substitute("echo '{ not a token }'", ws) == "echo '{ not a token }'"
