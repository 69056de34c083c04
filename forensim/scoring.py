"""Score, badges and hints.

The authoritative total of a user is the sum of every completion's
``score_awarded`` plus the points of every badge held. Hint costs are an
entry threshold checked against that total; they are never subtracted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import ScoringConfig
from .errors import HintUnavailableError, InsufficientPointsError
from .scenarios import Scenario, Task
from .store import LeaderboardEntry, Store

LOGGER = logging.getLogger(__name__)

SPEED_RUNNER = "Speed Runner"
HINT_FREE_EXPERT = "Hint-Free Expert"


@dataclass
class CompletionOutcome:
    already_completed: bool
    score_awarded: int
    total_score: int


@dataclass(frozen=True)
class BadgeUnlock:
    code: str
    points: int


@dataclass
class HintResult:
    hint: str
    hint_cost: int
    already_unlocked: bool = False
    hints_used: int = 0


@dataclass
class CompletionSummary:
    completed_tasks: List[dict] = field(default_factory=list)
    completed_scenarios: List[str] = field(default_factory=list)


class ScoringEngine:
    """Completion, badge and hint bookkeeping on top of ``Store``."""

    def __init__(self, store: Store, config: Optional[ScoringConfig] = None):
        self.store = store
        self.config = config or ScoringConfig()

    def total_score(self, user_id: str) -> int:
        return self.store.total_score(user_id)

    def record_completion(
        self, user_id: str, task: Task, scenario: Scenario, time_ms: Optional[int] = None
    ) -> CompletionOutcome:
        """Record that ``user_id`` finished ``task``, at most once.

        A repeated call reports ``already_completed`` and awards nothing.
        """
        inserted = self.store.insert_completion(
            user_id, task.id, scenario.id, task.points, time_ms
        )
        total = self.store.total_score(user_id)
        if not inserted:
            LOGGER.debug("Task %s already completed by %s", task.id, user_id)
            return CompletionOutcome(already_completed=True, score_awarded=0, total_score=total)

        LOGGER.info(
            "User %s completed task %s (+%d, total %d)", user_id, task.id, task.points, total
        )
        return CompletionOutcome(
            already_completed=False, score_awarded=task.points, total_score=total
        )

    def scenario_complete(self, user_id: str, scenario: Scenario) -> bool:
        if not scenario.tasks:
            return False
        done = {record.task_id for record in self.store.completions(user_id, scenario.id)}
        return all(task.id in done for task in scenario.tasks)

    def evaluate_scenario_badge(self, user_id: str, scenario: Scenario) -> Optional[BadgeUnlock]:
        """Award the scenario's own badge once every task is completed."""
        if not scenario.badge or not self.scenario_complete(user_id, scenario):
            return None
        points = self.config.scenario_badge_points
        if not self.store.award_badge(user_id, scenario.badge, points):
            return None
        LOGGER.info("User %s earned badge %s", user_id, scenario.badge)
        return BadgeUnlock(code=scenario.badge, points=points)

    def evaluate_skill_badges(
        self, user_id: str, scenario: Scenario, unlocked: Optional[List[BadgeUnlock]] = None
    ) -> List[BadgeUnlock]:
        """Speed Runner and Hint-Free Expert, checked when a scenario completes.

        Completions without a recorded time do not count towards Speed Runner;
        a scenario with no timed completions cannot earn it. Awards are
        appended to ``unlocked`` as soon as they are stored.
        """
        unlocked = [] if unlocked is None else unlocked
        if not self.scenario_complete(user_id, scenario):
            return unlocked

        points = self.config.skill_badge_points

        timings = [
            record.time_ms
            for record in self.store.completions(user_id, scenario.id)
            if record.time_ms is not None
        ]
        if timings and sum(timings) <= self.config.speed_runner_ms:
            if self.store.award_badge(user_id, SPEED_RUNNER, points):
                LOGGER.info("User %s earned badge %s on %s", user_id, SPEED_RUNNER, scenario.id)
                unlocked.append(BadgeUnlock(code=SPEED_RUNNER, points=points))

        if self.store.hint_usage(user_id, scenario.id) == 0:
            if self.store.award_badge(user_id, HINT_FREE_EXPERT, points):
                LOGGER.info(
                    "User %s earned badge %s on %s", user_id, HINT_FREE_EXPERT, scenario.id
                )
                unlocked.append(BadgeUnlock(code=HINT_FREE_EXPERT, points=points))

        return unlocked

    def evaluate_badges(
        self, user_id: str, scenario: Scenario, unlocked: Optional[List[BadgeUnlock]] = None
    ) -> List[BadgeUnlock]:
        """Every badge a completed scenario earns.

        Pass ``unlocked`` to keep the awards already stored if a later one
        raises ``StorageError``.
        """
        unlocked = [] if unlocked is None else unlocked
        scenario_badge = self.evaluate_scenario_badge(user_id, scenario)
        if scenario_badge is not None:
            unlocked.append(scenario_badge)
        return self.evaluate_skill_badges(user_id, scenario, unlocked)

    def request_hint(self, user_id: str, task: Task, scenario: Scenario) -> HintResult:
        """Reveal a task's hint.

        Every call counts as a hint fetch for the scenario. The points
        threshold applies only the first time; unlocked hints stay unlocked.

        Raises:
            HintUnavailableError: the task has no hint
            InsufficientPointsError: total score below the hint cost
        """
        if not task.has_hint:
            raise HintUnavailableError(task.id)

        already_unlocked = self.store.is_hint_unlocked(user_id, task.id)
        if not already_unlocked and task.hint_cost > 0:
            total = self.store.total_score(user_id)
            if total < task.hint_cost:
                LOGGER.warning(
                    "User %s cannot afford hint for %s (%d < %d)",
                    user_id,
                    task.id,
                    total,
                    task.hint_cost,
                )
                raise InsufficientPointsError(task.hint_cost, total)

        self.store.unlock_hint(user_id, task.id)
        used = self.store.increment_hint_usage(user_id, scenario.id)
        LOGGER.info("User %s fetched hint for %s (%d in %s)", user_id, task.id, used, scenario.id)
        return HintResult(
            hint=task.hint,
            hint_cost=task.hint_cost,
            already_unlocked=already_unlocked,
            hints_used=used,
        )

    def leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        return self.store.leaderboard(limit or self.config.leaderboard_size)
