# conditions.py
from __future__ import annotations

import os
from typing import Callable

from .model import (
    AllOf,
    AnyOf,
    ChoiceMade,
    Condition,
    FactStatus,
    FileExists,
    HasVar,
    LastStepOutcome,
    Not,
    VarEquals,
    VarExists,
)
from .template import stringify
from .workspace import Workspace

ExistsFn = Callable[[str], bool]


def evaluate(condition: Condition, workspace: Workspace, exists: ExistsFn = os.path.exists) -> bool:
    """
    Evaluate a condition tree against a workspace snapshot.

    `exists` is the only way out to the filesystem; the executor passes one
    that resolves relative paths against the workflow base directory.
    """
    if isinstance(condition, AllOf):
        return all(evaluate(c, workspace, exists) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate(c, workspace, exists) for c in condition.conditions)
    if isinstance(condition, Not):
        return not evaluate(condition.condition, workspace, exists)
    if isinstance(condition, FileExists):
        return bool(exists(condition.path))
    if isinstance(condition, VarEquals):
        return all(_value_of(name, workspace) == expected for name, expected in condition.expected)
    if isinstance(condition, (VarExists, HasVar)):
        return workspace.has_variable(condition.name) or workspace.has_fact(condition.name)
    if isinstance(condition, FactStatus):
        return workspace.get_fact_status(condition.fact) == condition.expected
    if isinstance(condition, LastStepOutcome):
        last = workspace.get_last_step_result()
        return last is not None and last.success == condition.success
    if isinstance(condition, ChoiceMade):
        return workspace.has_choice(condition.option_id)
    raise TypeError(f"unknown condition type: {type(condition).__name__}")


def _value_of(name: str, workspace: Workspace):
    # variable wins over a fact of the same name
    if workspace.has_variable(name):
        return workspace.get_variable(name)
    if workspace.has_fact(name):
        return stringify(workspace.get_fact(name))
    return None
