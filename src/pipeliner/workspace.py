# workspace.py
"""Per-execution mutable state: facts, choices, variables and step results."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

FactValue = Union[bool, str]

READY = "ready"
FAILED = "failed"
PENDING = "pending"


@dataclass(frozen=True)
class StepResult:
    success: bool
    exit_code: Optional[int] = None


@dataclass
class Workspace:
    facts: Dict[str, FactValue] = field(default_factory=dict)
    choices: Dict[str, str] = field(default_factory=dict)
    variables: Dict[str, str] = field(default_factory=dict)
    step_results: Dict[int, StepResult] = field(default_factory=dict)
    last_step_index: int = -1

    # ---- facts ----
    def set_fact(self, name: str, value: FactValue) -> None:
        self.facts[name] = value

    def get_fact(self, name: str) -> Optional[FactValue]:
        return self.facts.get(name)

    def has_fact(self, name: str) -> bool:
        return name in self.facts

    def get_fact_status(self, name: str) -> str:
        if name not in self.facts:
            return PENDING
        value = self.facts[name]
        if value is False or value == "failed":
            return FAILED
        return READY

    # ---- choices ----
    def set_choice(self, option_id: str, value: str) -> None:
        self.choices[option_id] = value

    def get_choice(self, option_id: str) -> Optional[str]:
        return self.choices.get(option_id)

    def has_choice(self, option_id: str) -> bool:
        return option_id in self.choices

    # ---- variables ----
    def set_variable(self, name: str, value: str) -> None:
        self.variables[name] = value

    def get_variable(self, name: str) -> Optional[str]:
        return self.variables.get(name)

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    # ---- step results ----
    def set_step_result(self, step_index: int, success: bool, exit_code: Optional[int] = None) -> None:
        self.step_results[step_index] = StepResult(success=success, exit_code=exit_code)
        self.last_step_index = step_index

    def get_step_result(self, step_index: int) -> Optional[StepResult]:
        return self.step_results.get(step_index)

    def get_last_step_result(self) -> Optional[StepResult]:
        if self.last_step_index < 0:
            return None
        return self.step_results.get(self.last_step_index)

    # ---- merge support ----
    def all_facts(self) -> Dict[str, FactValue]:
        return dict(self.facts)

    def all_variables(self) -> Dict[str, str]:
        return dict(self.variables)

    def clone(self) -> "Workspace":
        """Deep copy; a branch clone never shares a map with its parent."""
        return copy.deepcopy(self)
