"""Task progression.

A learner's position in a scenario is a pointer into its ordered task list.
The pointer is derived from durable completion records: it is the number of
tasks completed contiguously from the first one. Evidence is only ever
checked against the task under the pointer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Union

from .parser import tokenize
from .scenarios import CommandCheck, FlagCheck, InteractionCheck, Scenario, Task
from .vfs import normalize_path, resolve_path

LOGGER = logging.getLogger(__name__)

INTERACTION_PREFIX = "interaction:"
FLAG_PREFIX = "flag:"


@dataclass(frozen=True)
class InteractionEvidence:
    tag: str


@dataclass(frozen=True)
class CommandEvidence:
    command: str
    args: tuple = ()
    cwd: str = "/"
    home: Optional[str] = None


@dataclass(frozen=True)
class FlagEvidence:
    value: str


Evidence = Union[InteractionEvidence, CommandEvidence, FlagEvidence]


def parse_evidence(answer: str, cwd: str = "/", home: Optional[str] = None) -> Evidence:
    """Decode the string form of a submission.

    ``interaction:<tag>`` and ``flag:<value>`` are explicit; anything else is
    a command line, split with both quote styles.
    """
    if answer.startswith(INTERACTION_PREFIX):
        return InteractionEvidence(tag=answer[len(INTERACTION_PREFIX) :])
    if answer.startswith(FLAG_PREFIX):
        return FlagEvidence(value=answer[len(FLAG_PREFIX) :])
    tokens = tokenize(answer, quotes="\"'")
    if not tokens:
        return CommandEvidence(command="", cwd=cwd, home=home)
    return CommandEvidence(command=tokens[0], args=tuple(tokens[1:]), cwd=cwd, home=home)


# ---------- Matching ----------


def _strip_slash(value: str) -> str:
    return value[:-1] if len(value) > 1 and value.endswith("/") else value


def _is_path_like(arg: str) -> bool:
    return "/" in arg or "." in arg


def _arg_matches(arg: str, wanted: str, cwd: str, home: Optional[str]) -> bool:
    if arg == wanted:
        return True
    if not _is_path_like(arg) or not wanted.startswith("/"):
        return False
    return resolve_path(arg, cwd, home) == normalize_path(wanted)


def command_matches(check: CommandCheck, evidence: CommandEvidence) -> bool:
    """Decide whether a command satisfies a command check.

    Tried in order, first success wins:
      1. arguments equal after stripping one trailing slash
      2. no arguments where the single expected one is the working directory
      3. path-like arguments (containing "/" or ".") resolved against the
         working directory; other arguments must be typed as expected
    """
    if evidence.command != check.command:
        return False
    if not check.expected_args:
        return True

    expected = [_strip_slash(arg.strip()) for arg in check.expected_args]
    supplied = [_strip_slash(arg.strip()) for arg in evidence.args]

    if supplied == expected:
        return True

    if not supplied and len(expected) == 1:
        if normalize_path(expected[0]) == normalize_path(evidence.cwd):
            return True

    if len(supplied) == len(expected):
        return all(
            _arg_matches(arg, wanted, evidence.cwd, evidence.home)
            for arg, wanted in zip(supplied, expected)
        )
    return False


def evidence_matches(task: Task, evidence: Evidence) -> bool:
    check = task.check
    if isinstance(check, InteractionCheck):
        return isinstance(evidence, InteractionEvidence) and evidence.tag == check.target_tag
    if isinstance(check, FlagCheck):
        return isinstance(evidence, FlagEvidence) and evidence.value == check.expected_value
    if isinstance(check, CommandCheck):
        return isinstance(evidence, CommandEvidence) and command_matches(check, evidence)
    return False


# ---------- Progress ----------


@dataclass
class ScenarioProgress:
    scenario_id: str
    task_index: int = 0
    total: int = 0
    completed_task_ids: Set[str] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.task_index >= self.total


def build_progress(scenario: Scenario, completed_task_ids: Iterable[str]) -> ScenarioProgress:
    """Place the pointer after the contiguous run of completed tasks."""
    completed = set(completed_task_ids) & {task.id for task in scenario.tasks}
    index = 0
    for task in scenario.tasks:
        if task.id not in completed:
            break
        index += 1
    return ScenarioProgress(
        scenario_id=scenario.id,
        task_index=index,
        total=len(scenario.tasks),
        completed_task_ids=completed,
    )


def current_task(scenario: Scenario, progress: ScenarioProgress) -> Optional[Task]:
    if progress.task_index >= len(scenario.tasks):
        return None
    return scenario.tasks[progress.task_index]


class TaskStateMachine:
    """Advances a learner through one scenario, one task at a time."""

    def __init__(self, scenario: Scenario, progress: ScenarioProgress):
        self.scenario = scenario
        self.progress = progress

    @property
    def current(self) -> Optional[Task]:
        return current_task(self.scenario, self.progress)

    def is_current(self, task_id: str) -> bool:
        task = self.current
        return task is not None and task.id == task_id

    def evaluate(self, evidence: Evidence) -> Optional[Task]:
        """Return the current task if ``evidence`` satisfies it, else None."""
        task = self.current
        if task is None:
            return None
        if evidence_matches(task, evidence):
            return task
        return None

    def advance(self) -> bool:
        """Move past the current task. Returns True when this finishes the scenario."""
        task = self.current
        if task is None:
            return False
        self.progress.completed_task_ids.add(task.id)
        self.progress.task_index += 1
        LOGGER.debug(
            "Scenario %s advanced to %d/%d",
            self.scenario.id,
            self.progress.task_index,
            self.progress.total,
        )
        return self.progress.is_complete


def pending_tasks(scenario: Scenario, progress: ScenarioProgress) -> List[Task]:
    return list(scenario.tasks[progress.task_index :])
