# template.py
from __future__ import annotations

import re

from .workspace import Workspace

_TOKEN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def lookup(name: str, workspace: Workspace):
    """Variables first, then facts, then choices. None when unbound."""
    if workspace.has_variable(name):
        return workspace.get_variable(name)
    if workspace.has_fact(name):
        return stringify(workspace.get_fact(name))
    if workspace.has_choice(name):
        return workspace.get_choice(name)
    return None


def substitute(template: str, workspace: Workspace) -> str:
    """
    Replace `{{name}}` / `{{ name }}` tokens with workspace values.

    Unresolved tokens are left in place untouched, so a typo shows up
    verbatim in the command that actually ran.
    """
    def _replace(match: re.Match) -> str:
        value = lookup(match.group(1), workspace)
        return match.group(0) if value is None else value

    return _TOKEN.sub(_replace, template)
