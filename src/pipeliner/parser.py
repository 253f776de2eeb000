# parser.py
from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ProfileNotFound, WorkflowValidationError
from .model import (
    INFINITE_RETRY,
    AfterCapture,
    AllOf,
    AnyOf,
    BeforeCapture,
    BetweenCapture,
    Capture,
    ChoiceMade,
    ChooseStep,
    Condition,
    FactStatus,
    FailStep,
    FileExists,
    FullCapture,
    HasVar,
    JsonCapture,
    KeyValueCapture,
    LastStepOutcome,
    LineRangeCapture,
    Not,
    OnError,
    Option,
    ParallelStep,
    Profile,
    PromptStep,
    RegexCapture,
    RunStep,
    Step,
    VarEquals,
    VarExists,
    Workflow,
    YamlCapture,
)
from .template import stringify

STEP_TYPES = ("run", "choose", "prompt", "parallel", "fail")
FACT_STATUSES = ("ready", "failed", "pending")


class _Issues:
    """Collects validation problems so a file reports all of them at once."""

    def __init__(self) -> None:
        self.items: List[str] = []

    def add(self, message: str, where: Optional[str] = None) -> None:
        self.items.append(f"{message} ({where})" if where else message)

    def __bool__(self) -> bool:
        return bool(self.items)


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def load_document(path: Path) -> Any:
    """Read a YAML or JSON file (chosen by extension)."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_workflow(path: str | Path) -> Workflow:
    """
    Load, validate and parse a workflow file.

    Raises:
        FileNotFoundError: the file does not exist
        WorkflowValidationError: the file is unreadable or malformed
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    try:
        data = load_document(wf_path)
    except (ValueError, yaml.YAMLError) as e:
        raise WorkflowValidationError([f"Could not parse {wf_path.name}: {e}"], source=str(wf_path)) from e

    workflow = parse_workflow(data, source=wf_path)
    lines = step_line_numbers(wf_path.read_text(encoding="utf-8"))
    return _with_metadata(workflow, wf_path, lines)


def _with_metadata(workflow: Workflow, path: Path, lines: Dict[int, int]) -> Workflow:
    return Workflow(
        steps=workflow.steps,
        name=workflow.name,
        base_dir=workflow.base_dir,
        shell=workflow.shell,
        profiles=workflow.profiles,
        file_name=path.name,
        file_path=str(path),
        line_numbers=lines,
    )


def step_line_numbers(text: str) -> Dict[int, int]:
    """Map step index -> 1-based source line of that step. Best effort."""
    try:
        root = yaml.compose(text)
    except yaml.YAMLError:
        return {}
    if not isinstance(root, yaml.MappingNode):
        return {}
    for key, value in root.value:
        if getattr(key, "value", None) == "steps" and isinstance(value, yaml.SequenceNode):
            return {i: node.start_mark.line + 1 for i, node in enumerate(value.value)}
    return {}


# ----------------------------------------------------------------------
# Workflow
# ----------------------------------------------------------------------

def parse_workflow(data: Any, source: Optional[Path] = None) -> Workflow:
    """Validate a decoded document and build a Workflow from it."""
    issues = _Issues()
    if not isinstance(data, dict):
        raise WorkflowValidationError(["Workflow must be a mapping with a 'steps' list"], _src(source))

    name = data.get("name")
    if name is not None and not isinstance(name, str):
        issues.add("'name' must be a string")

    shell = None
    if "shell" in data:
        shell = _parse_shell(data["shell"], issues, "workflow")

    raw_steps = data.get("steps")
    steps: List[Step] = []
    if raw_steps is None:
        issues.add("'steps' is required")
    elif not isinstance(raw_steps, list) or not raw_steps:
        issues.add("'steps' must be a non-empty list")
    else:
        for i, raw in enumerate(raw_steps):
            step = _parse_step(raw, issues, f"step {i + 1}", in_parallel=False)
            if step is not None:
                steps.append(step)

    profiles = _parse_profiles(data.get("profiles"), issues)
    base_dir = _parse_base_dir(data.get("baseDir"), source, issues)

    if issues:
        raise WorkflowValidationError(issues.items, _src(source))

    return Workflow(
        steps=tuple(steps),
        name=name,
        base_dir=base_dir,
        shell=shell,
        profiles=profiles,
    )


def _src(source: Optional[Path]) -> Optional[str]:
    return str(source) if source else None


def _parse_base_dir(value: Any, source: Optional[Path], issues: _Issues) -> str:
    anchor = source.parent if source else Path.cwd()
    if value is None:
        return str(anchor)
    if not isinstance(value, str) or not value.strip():
        issues.add("'baseDir' must be a non-empty string")
        return str(anchor)
    p = Path(value).expanduser()
    if not p.is_absolute():
        p = anchor / p
    return str(p.resolve())


def _parse_shell(value: Any, issues: _Issues, where: str) -> Optional[Tuple[str, ...]]:
    if not isinstance(value, list) or not value or not all(isinstance(v, str) and v for v in value):
        issues.add("'shell' must be a non-empty list of strings", where)
        return None
    return tuple(value)


def _parse_profiles(value: Any, issues: _Issues) -> Tuple[Profile, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        issues.add("'profiles' must be a list")
        return ()
    out: List[Profile] = []
    for i, raw in enumerate(value):
        where = f"profile {i + 1}"
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            issues.add("profile requires a string 'name'", where)
            continue
        variables = raw.get("var", {}) or {}
        if not isinstance(variables, dict):
            issues.add("profile 'var' must be a mapping", where)
            continue
        coerced: Dict[str, str] = {}
        for k, v in variables.items():
            if isinstance(v, (str, int, float, bool)):
                coerced[str(k)] = stringify(v)
            else:
                issues.add(f"profile variable '{k}' must be a string, number or boolean", where)
        out.append(Profile(name=raw["name"], variables=coerced))
    return tuple(out)


def resolve_profile(workflow: Workflow, name: str) -> Dict[str, str]:
    profile = workflow.profile(name)
    if profile is None:
        raise ProfileNotFound(name, [p.name for p in workflow.profiles])
    return dict(profile.variables)


# ----------------------------------------------------------------------
# Steps
# ----------------------------------------------------------------------

def _repair_step(raw: Dict[str, Any]) -> Dict[str, Any]:
    # `choose:` / `prompt:` left empty with their fields at step level
    for kind in ("choose", "prompt"):
        if kind in raw and raw[kind] is None and "message" in raw:
            fixed = {k: v for k, v in raw.items() if k not in (kind, "message", "options", "as", "default")}
            fixed[kind] = {k: raw[k] for k in ("message", "options", "as", "default") if k in raw}
            return fixed
    return raw


def _parse_step(raw: Any, issues: _Issues, where: str, in_parallel: bool) -> Optional[Step]:
    if not isinstance(raw, dict):
        issues.add("step must be a mapping", where)
        return None
    raw = _repair_step(raw)

    kinds = [k for k in STEP_TYPES if k in raw]
    if not kinds:
        issues.add(
            f"Unknown step type. Found keys: {sorted(map(str, raw.keys()))}. "
            f"Valid types: {', '.join(STEP_TYPES)}",
            where,
        )
        return None
    if len(kinds) > 1:
        issues.add(f"step has more than one type: {', '.join(kinds)}", where)
        return None
    kind = kinds[0]

    if in_parallel and kind in ("choose", "prompt"):
        issues.add("User input prompts cannot run in parallel", where)
        return None
    if in_parallel and kind == "parallel":
        issues.add("Nested parallel steps are not supported", where)
        return None

    when = None
    if "when" in raw:
        when = _parse_condition(raw["when"], issues, where)

    if kind == "run":
        return _parse_run(raw, when, issues, where)
    if kind == "choose":
        return _parse_choose(raw["choose"], when, issues, where)
    if kind == "prompt":
        return _parse_prompt(raw["prompt"], when, issues, where)
    if kind == "parallel":
        return _parse_parallel(raw["parallel"], when, issues, where)
    return _parse_fail(raw["fail"], when, issues, where)


def _parse_retry(value: Any, issues: _Issues, where: str) -> float:
    if value is None:
        return 0
    if value == "Infinity" or (isinstance(value, float) and math.isinf(value) and value > 0):
        return INFINITE_RETRY
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        issues.add("'retry' must be a non-negative integer or 'Infinity'", where)
        return 0
    return value


def _parse_timeout(value: Any, issues: _Issues, where: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        issues.add("'timeout' must be a positive number of seconds", where)
        return None
    return float(value)


def _parse_on_error(value: Any, issues: _Issues, where: str) -> Optional[OnError]:
    if value is None:
        return None
    if isinstance(value, str):
        value = {"run": value}
    if not isinstance(value, dict) or not isinstance(value.get("run"), str) or not value["run"].strip():
        issues.add("'onError' requires a non-empty 'run' command", where)
        return None
    return OnError(
        command=value["run"].strip(),
        timeout=_parse_timeout(value.get("timeout"), issues, where),
        retry=_parse_retry(value.get("retry"), issues, where),
        next=_parse_on_error(value.get("onError"), issues, where),
    )


def _parse_run(raw: Dict[str, Any], when: Optional[Condition], issues: _Issues, where: str) -> Optional[RunStep]:
    command = raw["run"]
    if not isinstance(command, str) or not command.strip():
        issues.add("'run' must be a non-empty string", where)
        return None

    cont = raw.get("continue")
    if cont is not None and not isinstance(cont, bool):
        issues.add("'continue' must be a boolean", where)
        cont = None

    captures: Tuple[Capture, ...] = ()
    if "captures" in raw:
        captures = _parse_captures(raw["captures"], issues, where)

    return RunStep(
        command=command.strip(),
        timeout=_parse_timeout(raw.get("timeout"), issues, where),
        retry=_parse_retry(raw.get("retry"), issues, where),
        shell=_parse_shell(raw["shell"], issues, where) if "shell" in raw else None,
        continue_on_error=cont,
        on_error=_parse_on_error(raw.get("onError"), issues, where),
        captures=captures,
        when=when,
    )


def _parse_choose(body: Any, when: Optional[Condition], issues: _Issues, where: str) -> Optional[ChooseStep]:
    if not isinstance(body, dict):
        issues.add("'choose' must be a mapping with 'message' and 'options'", where)
        return None
    message = body.get("message")
    if not isinstance(message, str):
        issues.add("'choose' requires a string 'message'", where)
    options: List[Option] = []
    raw_options = body.get("options")
    if not isinstance(raw_options, list) or not raw_options:
        issues.add("'choose' requires a non-empty 'options' list", where)
    else:
        for opt in raw_options:
            if isinstance(opt, dict) and isinstance(opt.get("id"), str) and isinstance(opt.get("label"), str):
                options.append(Option(id=opt["id"], label=opt["label"]))
            else:
                issues.add("each option requires string 'id' and 'label'", where)
    store_as = body.get("as")
    if store_as is not None and not isinstance(store_as, str):
        issues.add("'as' must be a string", where)
        store_as = None
    if not isinstance(message, str) or not options:
        return None
    return ChooseStep(message=message, options=tuple(options), store_as=store_as, when=when)


def _parse_prompt(body: Any, when: Optional[Condition], issues: _Issues, where: str) -> Optional[PromptStep]:
    if not isinstance(body, dict) or not isinstance(body.get("message"), str):
        issues.add("'prompt' requires a string 'message'", where)
        return None
    store_as = body.get("as")
    if not isinstance(store_as, str) or not store_as:
        issues.add("'prompt' requires 'as'", where)
        return None
    default = body.get("default")
    return PromptStep(
        message=body["message"],
        store_as=store_as,
        default=None if default is None else stringify(default),
        when=when,
    )


def _parse_parallel(body: Any, when: Optional[Condition], issues: _Issues, where: str) -> Optional[ParallelStep]:
    if not isinstance(body, list) or not body:
        issues.add("'parallel' must be a non-empty list of steps", where)
        return None
    branches: List[Step] = []
    for i, raw in enumerate(body):
        branch = _parse_step(raw, issues, f"{where}, parallel branch {i + 1}", in_parallel=True)
        if branch is not None:
            branches.append(branch)
    return ParallelStep(branches=tuple(branches), when=when)


def _parse_fail(body: Any, when: Optional[Condition], issues: _Issues, where: str) -> Optional[FailStep]:
    if isinstance(body, str):
        body = {"message": body}
    if not isinstance(body, dict) or not isinstance(body.get("message"), str):
        issues.add("'fail' requires a string 'message'", where)
        return None
    return FailStep(message=body["message"], when=when)


# ----------------------------------------------------------------------
# Conditions
# ----------------------------------------------------------------------

def _parse_condition(raw: Any, issues: _Issues, where: str) -> Optional[Condition]:
    if not isinstance(raw, dict) or not raw:
        issues.add("'when' must be a non-empty mapping", where)
        return None

    parts: List[Condition] = []
    for key, value in raw.items():
        cond = _parse_condition_entry(key, value, issues, where)
        if cond is not None:
            parts.append(cond)
    if len(parts) == 1:
        return parts[0]
    # several keys in one mapping must all hold
    return AllOf(tuple(parts))


def _parse_condition_entry(key: str, value: Any, issues: _Issues, where: str) -> Optional[Condition]:
    if key == "file":
        if isinstance(value, str):
            return FileExists(value)
    elif key == "var":
        if isinstance(value, str):
            return VarExists(value)
        if isinstance(value, dict) and value:
            return VarEquals(tuple((str(k), stringify(v)) for k, v in value.items()))
    elif key == "has":
        if isinstance(value, str):
            return HasVar(value)
    elif key == "status":
        if isinstance(value, dict) and isinstance(value.get("fact"), str) and value.get("is") in FACT_STATUSES:
            return FactStatus(fact=value["fact"], expected=value["is"])
    elif key == "step":
        if isinstance(value, dict) and isinstance(value.get("success"), bool):
            return LastStepOutcome(success=value["success"])
    elif key == "last_step":
        if value in ("success", "failure"):
            return LastStepOutcome(success=value == "success")
    elif key == "choice":
        if isinstance(value, str):
            return ChoiceMade(value)
    elif key in ("all", "any"):
        if isinstance(value, list):
            subs = []
            for sub in value:
                parsed = _parse_condition(sub, issues, where)
                if parsed is not None:
                    subs.append(parsed)
            return AllOf(tuple(subs)) if key == "all" else AnyOf(tuple(subs))
    elif key == "not":
        inner = _parse_condition(value, issues, where)
        return Not(inner) if inner is not None else None
    else:
        issues.add(f"unknown condition '{key}'", where)
        return None

    issues.add(f"invalid value for condition '{key}'", where)
    return None


# ----------------------------------------------------------------------
# Captures
# ----------------------------------------------------------------------

def _parse_captures(raw: Any, issues: _Issues, where: str) -> Tuple[Capture, ...]:
    if not isinstance(raw, list):
        issues.add("'captures' must be a list", where)
        return ()
    out: List[Capture] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("as"), str) or not item["as"]:
            issues.add("each capture requires 'as'", where)
            continue
        out.append(parse_capture_entry(item))
    return tuple(out)


def parse_capture_entry(item: Dict[str, Any]) -> Capture:
    """Build a Capture from its file form; unknown shapes capture everything."""
    name = item["as"]
    if isinstance(item.get("regex"), str):
        return RegexCapture(name, item["regex"])
    if isinstance(item.get("json"), str):
        return JsonCapture(name, item["json"])
    for key in ("yaml", "yml"):
        if isinstance(item.get(key), str):
            return YamlCapture(name, item[key])
    if isinstance(item.get("kv"), str):
        return KeyValueCapture(name, item["kv"])
    after, before = item.get("after"), item.get("before")
    if isinstance(after, str) and isinstance(before, str):
        return BetweenCapture(name, after, before)
    if isinstance(after, str):
        return AfterCapture(name, after)
    if isinstance(before, str):
        return BeforeCapture(name, before)
    line = item.get("line")
    if isinstance(line, dict) and isinstance(line.get("from"), int) and isinstance(line.get("to"), int):
        return LineRangeCapture(name, line["from"], line["to"])
    return FullCapture(name)
