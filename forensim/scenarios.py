"""Scenario and task definitions.

Scenarios are read from a JSON document keyed by scenario id. Keys starting
with an underscore are ignored so the file can carry comments and metadata.
Each task declares exactly one check policy:

    {"checkType": "interaction", "interactionTarget": "laptop"}
    {"checkType": "command", "checkCommand": "cd", "checkArgs": ["/mnt/usb"]}
    {"checkType": "flag", "flag": "FLAG{...}"}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .cache import TTLCache
from .devices import DEVICE_TYPES
from .errors import UnknownScenarioError, UnknownTaskError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionCheck:
    target_tag: str


@dataclass(frozen=True)
class CommandCheck:
    command: str
    expected_args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FlagCheck:
    expected_value: str


CheckPolicy = Union[InteractionCheck, CommandCheck, FlagCheck]


@dataclass(frozen=True)
class InteractAction:
    """Side effect run when an interaction task is satisfied."""

    action: str
    message: str = ""
    device_name: str = ""
    device_type: str = "disk"
    size: Optional[str] = None
    mount_content: Dict[str, Any] = field(default_factory=dict)
    mount_point: Optional[str] = None


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    points: int
    check: CheckPolicy
    hint_cost: int = 0
    hint: str = ""
    details: str = ""
    on_interact: Optional[InteractAction] = None

    @property
    def has_hint(self) -> bool:
        return bool(self.hint.strip())


@dataclass(frozen=True)
class CustomCommand:
    """Scenario-provided command with canned output.

    With ``requires_args`` the joined argument string is looked up in
    ``valid_args``; otherwise ``output`` is rendered with ``{argN}``
    placeholders replaced by positional arguments.
    """

    name: str
    output: str = ""
    description: str = ""
    requires_args: bool = False
    valid_args: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Scenario:
    id: str
    title: str
    tasks: Tuple[Task, ...]
    description: str = ""
    introduction: str = ""
    badge: Optional[str] = None
    custom_commands: Tuple[CustomCommand, ...] = ()
    filesystem: Dict[str, Any] = field(default_factory=dict)

    def custom_command(self, name: str) -> Optional[CustomCommand]:
        for command in self.custom_commands:
            if command.name == name:
                return command
        return None


# ---------- JSON loading ----------


def _parse_check(task_id: str, data: Mapping[str, Any]) -> CheckPolicy:
    check_type = data.get("checkType")
    if check_type == "interaction" or (check_type is None and data.get("interactionTarget")):
        return InteractionCheck(target_tag=str(data.get("interactionTarget", "")))
    if check_type == "flag" or (check_type is None and "flag" in data):
        return FlagCheck(expected_value=str(data.get("flag", "")))
    if check_type == "command" or data.get("checkCommand"):
        return CommandCheck(
            command=str(data.get("checkCommand", "")),
            expected_args=tuple(str(arg) for arg in data.get("checkArgs") or ()),
        )
    raise ValueError(f"Task {task_id} has no check policy")


def _parse_action(data: Optional[Mapping[str, Any]]) -> Optional[InteractAction]:
    if not data:
        return None
    device_type = str(data.get("deviceType", "disk"))
    if device_type not in DEVICE_TYPES:
        raise ValueError(f"Unknown device type: {device_type}")
    return InteractAction(
        action=str(data.get("action", "")),
        message=str(data.get("message", "")),
        device_name=str(data.get("deviceName", "")),
        device_type=device_type,
        size=data.get("size"),
        mount_content=dict(data.get("mountContent") or {}),
        mount_point=data.get("mountPoint") or None,
    )


def _parse_task(data: Mapping[str, Any]) -> Task:
    task_id = data.get("id")
    if not task_id:
        raise ValueError("Task is missing an id")
    return Task(
        id=str(task_id),
        title=str(data.get("title", "")),
        points=int(data.get("points", 0)),
        check=_parse_check(str(task_id), data),
        hint_cost=int(data.get("hintCost", 0)),
        hint=str(data.get("hint") or ""),
        details=str(data.get("details", "")),
        on_interact=_parse_action(data.get("onInteract")),
    )


def _parse_custom_command(data: Mapping[str, Any]) -> CustomCommand:
    return CustomCommand(
        name=str(data["name"]),
        output=str(data.get("output", "")),
        description=str(data.get("description") or data["name"]),
        requires_args=bool(data.get("requiresArgs", False)),
        valid_args={str(k): str(v) for k, v in (data.get("validArgs") or {}).items()},
    )


def parse_scenarios(raw: Mapping[str, Any]) -> Dict[str, Scenario]:
    """Build scenarios from a decoded JSON document.

    Raises:
        ValueError: if a task is malformed or a task id is used twice
    """
    scenarios: Dict[str, Scenario] = {}
    seen_tasks: Dict[str, str] = {}
    for scenario_id, data in raw.items():
        if scenario_id.startswith("_"):
            continue
        tasks = tuple(_parse_task(item) for item in data.get("tasks") or [])
        for task in tasks:
            if task.id in seen_tasks:
                raise ValueError(
                    f"Duplicate task id {task.id} in {scenario_id} "
                    f"(already used by {seen_tasks[task.id]})"
                )
            seen_tasks[task.id] = scenario_id
        commands = tuple(
            _parse_custom_command(item)
            for item in data.get("customCommands") or []
            if item.get("name")
        )
        scenarios[scenario_id] = Scenario(
            id=scenario_id,
            title=str(data.get("title") or scenario_id),
            description=str(data.get("description", "")),
            introduction=str(data.get("introduction", "")),
            badge=data.get("badge") or None,
            tasks=tasks,
            custom_commands=commands,
            filesystem=dict(data.get("filesystem") or {}),
        )
    return scenarios


def load_scenarios(path: Path) -> Dict[str, Scenario]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    scenarios = parse_scenarios(raw)
    LOGGER.info("Loaded %d scenarios from %s", len(scenarios), path)
    return scenarios


def public_task_view(task: Task) -> Dict[str, Any]:
    """Task fields safe to show a learner (no hint text, no answers)."""
    check = task.check
    return {
        "id": task.id,
        "title": task.title,
        "details": task.details,
        "points": task.points,
        "checkType": (
            "interaction"
            if isinstance(check, InteractionCheck)
            else "flag" if isinstance(check, FlagCheck) else "command"
        ),
        "interactionTarget": check.target_tag if isinstance(check, InteractionCheck) else None,
        "hintCost": task.hint_cost,
        "hasHint": task.has_hint,
    }


def public_scenario_view(scenario: Scenario) -> Dict[str, Any]:
    return {
        "id": scenario.id,
        "title": scenario.title,
        "description": scenario.description,
        "introduction": scenario.introduction,
        "badge": scenario.badge,
        "customCommands": [
            {"name": cmd.name, "description": cmd.description}
            for cmd in scenario.custom_commands
        ],
        "tasks": [public_task_view(task) for task in scenario.tasks],
    }


class ScenarioCatalog:
    """Read-only scenario definitions with a reloadable cache.

    Pass ``scenarios`` directly for fixed content, or ``path`` to load (and
    reload after ``invalidate()``) from a JSON file.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        scenarios: Optional[Mapping[str, Scenario]] = None,
        ttl: Optional[float] = None,
    ):
        if path is None and scenarios is None:
            raise ValueError("ScenarioCatalog needs a path or scenarios")
        self.path = path
        self._static = dict(scenarios) if scenarios is not None else None
        self._cache: TTLCache[Tuple[Dict[str, Scenario], Dict[str, Tuple[Task, Scenario]]]] = (
            TTLCache("scenarios", ttl=ttl)
        )

    def _load(self) -> Tuple[Dict[str, Scenario], Dict[str, Tuple[Task, Scenario]]]:
        scenarios = self._static if self._static is not None else load_scenarios(self.path)
        lookup: Dict[str, Tuple[Task, Scenario]] = {}
        for scenario in scenarios.values():
            for task in scenario.tasks:
                lookup[task.id] = (task, scenario)
        return scenarios, lookup

    def invalidate(self) -> None:
        self._cache.invalidate()

    def all(self) -> Dict[str, Scenario]:
        return self._cache.get_or_load(self._load)[0]

    def ids(self) -> List[str]:
        return list(self.all())

    def get(self, scenario_id: str) -> Scenario:
        scenario = self.all().get(scenario_id)
        if scenario is None:
            raise UnknownScenarioError(scenario_id)
        return scenario

    def find_task(self, task_id: str) -> Tuple[Task, Scenario]:
        entry = self._cache.get_or_load(self._load)[1].get(task_id)
        if entry is None:
            raise UnknownTaskError(task_id)
        return entry

    def public_view(self) -> Dict[str, Dict[str, Any]]:
        return {sid: public_scenario_view(s) for sid, s in self.all().items()}
