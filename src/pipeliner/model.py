# model.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union


# ----------------------------------------------------------------------
# Conditions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class FileExists:
    path: str


@dataclass(frozen=True)
class VarEquals:
    """`var: {name: value, ...}`; every pair must match."""
    expected: Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class VarExists:
    """`var: name`"""
    name: str


@dataclass(frozen=True)
class HasVar:
    """`has: name`"""
    name: str


@dataclass(frozen=True)
class FactStatus:
    fact: str
    expected: str  # ready | failed | pending


@dataclass(frozen=True)
class LastStepOutcome:
    success: bool


@dataclass(frozen=True)
class ChoiceMade:
    option_id: str


@dataclass(frozen=True)
class AllOf:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class AnyOf:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class Not:
    condition: "Condition"


Condition = Union[
    FileExists, VarEquals, VarExists, HasVar, FactStatus,
    LastStepOutcome, ChoiceMade, AllOf, AnyOf, Not,
]


# ----------------------------------------------------------------------
# Captures
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class FullCapture:
    store_as: str


@dataclass(frozen=True)
class RegexCapture:
    store_as: str
    pattern: str


@dataclass(frozen=True)
class JsonCapture:
    store_as: str
    expr: str


@dataclass(frozen=True)
class YamlCapture:
    store_as: str
    expr: str


@dataclass(frozen=True)
class KeyValueCapture:
    store_as: str
    key: str


@dataclass(frozen=True)
class AfterCapture:
    store_as: str
    marker: str


@dataclass(frozen=True)
class BeforeCapture:
    store_as: str
    marker: str


@dataclass(frozen=True)
class BetweenCapture:
    store_as: str
    after: str
    before: str


@dataclass(frozen=True)
class LineRangeCapture:
    store_as: str
    start: int
    end: int


Capture = Union[
    FullCapture, RegexCapture, JsonCapture, YamlCapture, KeyValueCapture,
    AfterCapture, BeforeCapture, BetweenCapture, LineRangeCapture,
]


# ----------------------------------------------------------------------
# Steps
# ----------------------------------------------------------------------

INFINITE_RETRY = math.inf


@dataclass(frozen=True)
class OnError:
    """One fallback command; `next` links to the following fallback."""
    command: str
    timeout: Optional[float] = None
    retry: float = 0
    next: Optional["OnError"] = None

    def chain(self):
        node: Optional[OnError] = self
        while node is not None:
            yield node
            node = node.next


@dataclass(frozen=True)
class RunStep:
    command: str
    timeout: Optional[float] = None
    retry: float = 0  # int, or INFINITE_RETRY
    shell: Optional[Tuple[str, ...]] = None
    # True: keep going after a failure. False: stop after this step even on success.
    continue_on_error: Optional[bool] = None
    on_error: Optional[OnError] = None
    captures: Tuple[Capture, ...] = ()
    when: Optional[Condition] = None


@dataclass(frozen=True)
class Option:
    id: str
    label: str


@dataclass(frozen=True)
class ChooseStep:
    message: str
    options: Tuple[Option, ...]
    store_as: Optional[str] = None
    when: Optional[Condition] = None

    @property
    def variable(self) -> str:
        return self.store_as or "choice"


@dataclass(frozen=True)
class PromptStep:
    message: str
    store_as: str
    default: Optional[str] = None
    when: Optional[Condition] = None


@dataclass(frozen=True)
class ParallelStep:
    branches: Tuple["Step", ...]
    when: Optional[Condition] = None


@dataclass(frozen=True)
class FailStep:
    message: str
    when: Optional[Condition] = None


Step = Union[RunStep, ChooseStep, PromptStep, ParallelStep, FailStep]


# ----------------------------------------------------------------------
# Workflow
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Profile:
    """A named bundle of variables that lets a workflow run unattended."""
    name: str
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Workflow:
    steps: Tuple[Step, ...]
    name: Optional[str] = None
    base_dir: Optional[str] = None
    shell: Optional[Tuple[str, ...]] = None
    profiles: Tuple[Profile, ...] = ()

    # parse-time metadata, diagnostics only
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    line_numbers: Dict[int, int] = field(default_factory=dict, compare=False)

    def line_of(self, step_index: int) -> Optional[int]:
        return self.line_numbers.get(step_index)

    def profile(self, name: str) -> Optional[Profile]:
        for p in self.profiles:
            if p.name == name:
                return p
        return None
