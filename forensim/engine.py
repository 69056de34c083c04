"""Training engine: the single entry point used by every front-end.

``TrainingEngine`` ties the pieces together. It loads a learner's session
(tree, working directory and devices) from the store, runs commands through
the executor, checks evidence against the current task, records completions
and badges, and emits analytics events.

Locking:
- ("session", user, scenario) guards tree and device changes
- ("user", user) guards submissions and hint requests, so completion,
  total and badge evaluation of one learner never interleave
The user lock may be held while taking a session lock, never the reverse.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .cache import TTLCache
from .command_handler import CommandResult, ShellContext, execute
from .config import Config, get_config
from .devices import Device, DeviceManager, MountResult
from .errors import (
    AlreadyMountedError,
    DeviceNotAttachedError,
    InsufficientPointsError,
    HintUnavailableError,
    MountPointError,
    NotMountedError,
    StorageError,
    SubmissionFailedError,
)
from .events import (
    BADGE_AWARDED,
    COMMAND_EXECUTED,
    DEVICE_MOUNTED,
    HINT_REQUESTED,
    TASK_SUBMITTED,
    AnalyticsEvent,
    EventSink,
)
from .locks import InFlightGuard, SessionLocks
from .metrics import MetricsCollector, get_metrics_collector
from .parser import parse_command_line
from .progress import (
    CommandEvidence,
    Evidence,
    ScenarioProgress,
    TaskStateMachine,
    build_progress,
    current_task,
    parse_evidence,
)
from .scenarios import CommandCheck, InteractAction, Scenario, ScenarioCatalog, Task
from .scoring import BadgeUnlock, CompletionSummary, HintResult, ScoringEngine
from .store import LeaderboardEntry, Store
from .vfs import FilesystemState, default_tree, graft, normalize_path

LOGGER = logging.getLogger(__name__)


@dataclass
class SessionState:
    user_id: str
    scenario: Scenario
    fs: FilesystemState
    devices: DeviceManager


@dataclass
class SubmissionResult:
    task_id: str
    correct: bool
    already_completed: bool = False
    in_flight: bool = False
    score_awarded: int = 0
    points_awarded: int = 0
    new_total_score: int = 0
    badges_unlocked: List[BadgeUnlock] = field(default_factory=list)
    scenario_completed: bool = False
    next_task: Optional[Task] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "correct": self.correct,
            "alreadyCompleted": self.already_completed,
            "scoreAwarded": self.score_awarded,
            "newTotalScore": self.new_total_score,
            "badgesUnlocked": [badge.code for badge in self.badges_unlocked],
            "pointsAwarded": self.points_awarded,
        }


@dataclass
class ConsoleOutcome:
    result: CommandResult
    cwd: str
    submission: Optional[SubmissionResult] = None


class TrainingEngine:
    """Server-authoritative state for every learner and scenario."""

    def __init__(
        self,
        store: Store,
        catalog: ScenarioCatalog,
        config: Optional[Config] = None,
        event_sink: Optional[EventSink] = None,
        metrics: Optional[MetricsCollector] = None,
        locks: Optional[SessionLocks] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.config = config or get_config()
        self.scoring = ScoringEngine(store, self.config.scoring)
        self.events = event_sink or EventSink()
        self.metrics = metrics or get_metrics_collector()
        self.locks = locks or SessionLocks()
        self.in_flight = InFlightGuard()
        self._leaderboard: TTLCache[List[LeaderboardEntry]] = TTLCache(
            "leaderboard", ttl=self.config.scoring.leaderboard_ttl
        )

    # ---------- Session state ----------

    def _new_filesystem(self, scenario: Scenario) -> FilesystemState:
        home = self.config.console.home
        root = default_tree(home)
        if scenario.filesystem:
            graft(root, "/", scenario.filesystem)
        return FilesystemState(root=root, cwd=normalize_path(home))

    def load_session(self, user_id: str, scenario_id: str) -> SessionState:
        scenario = self.catalog.get(scenario_id)
        fs = self.store.load_filesystem(user_id, scenario_id) or self._new_filesystem(scenario)
        devices = DeviceManager(self.store.load_devices(user_id, scenario_id))
        return SessionState(user_id=user_id, scenario=scenario, fs=fs, devices=devices)

    def _save_session(
        self, session: SessionState, filesystem: bool = True, devices: bool = False
    ) -> None:
        if filesystem:
            self.store.save_filesystem(session.user_id, session.scenario.id, session.fs)
        if devices:
            self.store.save_devices(session.user_id, session.scenario.id, session.devices.devices)

    def cwd(self, user_id: str, scenario_id: str) -> str:
        fs = self.store.load_filesystem(user_id, scenario_id)
        return fs.cwd if fs is not None else normalize_path(self.config.console.home)

    def reset_session(self, user_id: str, scenario_id: str) -> None:
        """Discard the session tree and all devices of (user, scenario)."""
        with self.locks.hold(("session", user_id, scenario_id)):
            self.store.reset_session(user_id, scenario_id)
        LOGGER.info("Session of %s in %s reset", user_id, scenario_id)

    def reset_user(self, user_id: str) -> None:
        """Delete completions, badges and hint data of a learner."""
        with self.locks.hold(("user", user_id)):
            self.store.delete_user_progress(user_id)
        self.invalidate_leaderboard()
        LOGGER.info("Progress of %s deleted", user_id)

    def _emit(self, event_type: str, user_id: str, **kwargs) -> None:
        self.events.emit(AnalyticsEvent(type=event_type, user_id=user_id, **kwargs))

    # ---------- Commands ----------

    def _run_line(self, user_id: str, scenario_id: str, raw_line: str) -> ConsoleOutcome:
        parsed = parse_command_line(raw_line)
        with self.locks.hold(("session", user_id, scenario_id)):
            session = self.load_session(user_id, scenario_id)
            issued_in = session.fs.cwd
            ctx = ShellContext(
                fs=session.fs,
                devices=session.devices,
                scenario=session.scenario,
                console=self.config.console,
            )
            result = execute(parsed, ctx)
            if result.vfs_mutated or result.new_cwd is not None or result.devices_changed:
                self._save_session(
                    session,
                    filesystem=result.vfs_mutated or result.new_cwd is not None,
                    devices=result.devices_changed,
                )

        if parsed.is_empty:
            return ConsoleOutcome(result=result, cwd=issued_in)

        self.metrics.record_command(parsed.command, result.ok)
        if parsed.command in ("mount", "umount") and (result.devices_changed or not result.ok):
            self.metrics.record_mount(parsed.command, result.ok)
        if result.ok:
            self._emit(
                COMMAND_EXECUTED,
                user_id,
                scenario_id=scenario_id,
                detail={"command": parsed.command, "args": list(parsed.args)},
            )
            if result.mount is not None and not result.mount.already_mounted:
                self._emit(
                    DEVICE_MOUNTED,
                    user_id,
                    scenario_id=scenario_id,
                    detail={"device": result.mount.device.name, "mountPoint": result.mount.mount_point},
                )
        LOGGER.debug("%s@%s ran %r (ok=%s)", user_id, scenario_id, raw_line, result.ok)
        return ConsoleOutcome(result=result, cwd=issued_in)

    def execute_command(self, user_id: str, scenario_id: str, raw_line: str) -> CommandResult:
        """Run one console line against the learner's session."""
        return self._run_line(user_id, scenario_id, raw_line).result

    def run_console_line(
        self,
        user_id: str,
        scenario_id: str,
        raw_line: str,
        time_ms: Optional[int] = None,
    ) -> ConsoleOutcome:
        """Run a line and, if it succeeded, offer it as evidence for the current task.

        Only commands naming the current task's command are submitted.
        """
        outcome = self._run_line(user_id, scenario_id, raw_line)
        if not outcome.result.ok:
            return outcome

        parsed = parse_command_line(raw_line)
        if parsed.is_empty:
            return outcome
        task = self.current_task(user_id, scenario_id)
        if task is None or not isinstance(task.check, CommandCheck):
            return outcome
        if task.check.command != parsed.command:
            return outcome

        evidence = CommandEvidence(
            command=parsed.command,
            args=tuple(parsed.args),
            cwd=outcome.cwd,
            home=self.config.console.home,
        )
        outcome.submission = self.submit_task_evidence(user_id, task.id, evidence, time_ms)
        return outcome

    # ---------- Progress ----------

    def progress(self, user_id: str, scenario_id: str) -> ScenarioProgress:
        scenario = self.catalog.get(scenario_id)
        done = [record.task_id for record in self.store.completions(user_id, scenario_id)]
        return build_progress(scenario, done)

    def current_task(self, user_id: str, scenario_id: str) -> Optional[Task]:
        scenario = self.catalog.get(scenario_id)
        return current_task(scenario, self.progress(user_id, scenario_id))

    def completions(self, user_id: str) -> CompletionSummary:
        records = self.store.completions(user_id)
        summary = CompletionSummary(
            completed_tasks=[
                {
                    "taskId": record.task_id,
                    "scenarioId": record.scenario_id,
                    "scoreAwarded": record.score_awarded,
                    "completedAt": record.completed_at,
                }
                for record in records
            ]
        )
        done = {record.task_id for record in records}
        for scenario in self.catalog.all().values():
            if scenario.tasks and all(task.id in done for task in scenario.tasks):
                summary.completed_scenarios.append(scenario.id)
        return summary

    # ---------- Submissions ----------

    def _evaluate_badges(self, user_id: str, scenario: Scenario) -> List[BadgeUnlock]:
        """Badge evaluation that never undoes a recorded completion.

        Badges stored before a failure are still reported.
        """
        unlocked: List[BadgeUnlock] = []
        try:
            self.scoring.evaluate_badges(user_id, scenario, unlocked)
        except StorageError as exc:
            LOGGER.error(
                "Badge evaluation for %s in %s failed after %d award(s), will retry: %s",
                user_id,
                scenario.id,
                len(unlocked),
                exc,
            )
        for badge in unlocked:
            self.metrics.record_badge(badge.code)
            self._emit(
                BADGE_AWARDED,
                user_id,
                scenario_id=scenario.id,
                detail={"badge": badge.code, "points": badge.points},
            )
        return unlocked

    def reconcile_badges(self, user_id: str, scenario_id: str) -> List[BadgeUnlock]:
        """Award any badge a finished scenario should have produced."""
        scenario = self.catalog.get(scenario_id)
        with self.locks.hold(("user", user_id)):
            unlocked = self._evaluate_badges(user_id, scenario)
        if unlocked:
            self.invalidate_leaderboard()
        return unlocked

    def submit_task_evidence(
        self,
        user_id: str,
        task_id: str,
        evidence: Union[Evidence, str],
        time_ms: Optional[int] = None,
    ) -> SubmissionResult:
        """Check ``evidence`` against ``task_id`` and record the completion.

        The task must be the learner's current task. A task already completed
        is reported as such without changing the score.

        Raises:
            UnknownTaskError: no scenario defines ``task_id``
            SubmissionFailedError: the completion could not be stored
        """
        task, scenario = self.catalog.find_task(task_id)
        if isinstance(evidence, str):
            evidence = parse_evidence(
                evidence, cwd=self.cwd(user_id, scenario.id), home=self.config.console.home
            )

        if not self.in_flight.try_acquire(user_id, task_id):
            self.metrics.record_submission("in_flight")
            return SubmissionResult(task_id=task_id, correct=False, in_flight=True)

        started = time.time()
        try:
            with self.locks.hold(("user", user_id)):
                result = self._submit_locked(user_id, task, scenario, evidence, time_ms)
        except SubmissionFailedError:
            self.metrics.record_submission("failed", time.time() - started)
            raise
        finally:
            self.in_flight.release(user_id, task_id)

        if result.already_completed:
            label = "already_completed"
        else:
            label = "correct" if result.correct else "incorrect"
        self.metrics.record_submission(label, time.time() - started)
        self._emit(
            TASK_SUBMITTED,
            user_id,
            scenario_id=scenario.id,
            task_id=task_id,
            success=result.correct,
            detail=result.to_dict(),
        )
        return result

    def _submit_locked(
        self,
        user_id: str,
        task: Task,
        scenario: Scenario,
        evidence: Evidence,
        time_ms: Optional[int],
    ) -> SubmissionResult:
        try:
            if self.store.has_completion(user_id, task.id):
                return self._already_completed(user_id, task, scenario)
            done = [record.task_id for record in self.store.completions(user_id, scenario.id)]
        except StorageError as exc:
            raise SubmissionFailedError(task.id, str(exc)) from exc

        machine = TaskStateMachine(scenario, build_progress(scenario, done))
        if not machine.is_current(task.id) or machine.evaluate(evidence) is None:
            LOGGER.debug("Evidence for %s by %s rejected", task.id, user_id)
            return SubmissionResult(
                task_id=task.id,
                correct=False,
                new_total_score=self.scoring.total_score(user_id),
                next_task=machine.current,
            )

        try:
            outcome = self.scoring.record_completion(user_id, task, scenario, time_ms)
        except StorageError as exc:
            raise SubmissionFailedError(task.id, str(exc)) from exc
        if outcome.already_completed:
            return self._already_completed(user_id, task, scenario)

        finished = machine.advance()
        badges: List[BadgeUnlock] = []
        if finished:
            LOGGER.info("User %s completed scenario %s", user_id, scenario.id)
            self.metrics.record_scenario_completed(scenario.id)
            badges = self._evaluate_badges(user_id, scenario)
        self.invalidate_leaderboard()

        badge_points = sum(badge.points for badge in badges)
        message = ""
        if task.on_interact is not None:
            message = self._run_interact_action(user_id, scenario, task.on_interact)

        return SubmissionResult(
            task_id=task.id,
            correct=True,
            score_awarded=outcome.score_awarded,
            points_awarded=badge_points,
            new_total_score=outcome.total_score + badge_points,
            badges_unlocked=badges,
            scenario_completed=finished,
            next_task=machine.current,
            message=message,
        )

    def _already_completed(self, user_id: str, task: Task, scenario: Scenario) -> SubmissionResult:
        # Retry path for badges whose evaluation failed after an earlier completion.
        badges = self._evaluate_badges(user_id, scenario)
        if badges:
            self.invalidate_leaderboard()
        return SubmissionResult(
            task_id=task.id,
            correct=True,
            already_completed=True,
            points_awarded=sum(badge.points for badge in badges),
            new_total_score=self.scoring.total_score(user_id),
            badges_unlocked=badges,
            next_task=self.current_task(user_id, scenario.id),
        )

    def submit_current(
        self,
        user_id: str,
        scenario_id: str,
        evidence: Union[Evidence, str],
        time_ms: Optional[int] = None,
    ) -> Optional[SubmissionResult]:
        """Submit evidence for whatever task is current; None once the scenario is done."""
        task = self.current_task(user_id, scenario_id)
        if task is None:
            return None
        if isinstance(evidence, str):
            evidence = parse_evidence(
                evidence, cwd=self.cwd(user_id, scenario_id), home=self.config.console.home
            )
        return self.submit_task_evidence(user_id, task.id, evidence, time_ms)

    def _run_interact_action(self, user_id: str, scenario: Scenario, action: InteractAction) -> str:
        if action.action == "attach_device" and action.device_name:
            try:
                self.attach_device(
                    user_id,
                    scenario.id,
                    action.device_name,
                    device_type=action.device_type,
                    size=action.size,
                    content=action.mount_content,
                    mount_point=action.mount_point,
                )
            except (AlreadyMountedError, MountPointError, StorageError) as exc:
                LOGGER.error("Interaction action for %s failed: %s", user_id, exc)
                return str(exc)
            return action.message or f"Device {action.device_name} attached"
        if action.action == "show_message":
            return action.message
        LOGGER.warning("Unknown interaction action %r", action.action)
        return ""

    # ---------- Devices ----------

    def attach_device(
        self,
        user_id: str,
        scenario_id: str,
        name: str,
        device_type: str = "disk",
        size: Optional[str] = None,
        content: Optional[Dict[str, Any]] = None,
        mount_point: Optional[str] = None,
    ) -> Device:
        """Attach (or re-attach) a device to the session.

        Remote devices with a ``mount_point`` are mounted right away.
        """
        with self.locks.hold(("session", user_id, scenario_id)):
            session = self.load_session(user_id, scenario_id)
            device = session.devices.attach(name, device_type, size, content)
            grafted = False
            if device_type == "remote" and mount_point:
                mounted = session.devices.mount(
                    session.fs.root, f"/dev/{device.partition_name}", mount_point
                )
                grafted = not mounted.already_mounted
            self._save_session(session, filesystem=grafted, devices=True)
        if grafted:
            self.metrics.record_mount("mount", True)
            self._emit(
                DEVICE_MOUNTED,
                user_id,
                scenario_id=scenario_id,
                detail={"device": name, "mountPoint": device.mount_point},
            )
        return device

    def list_devices(self, user_id: str, scenario_id: str) -> List[Device]:
        self.catalog.get(scenario_id)
        return self.store.load_devices(user_id, scenario_id)

    def mount_device(
        self,
        user_id: str,
        scenario_id: str,
        device_path: str,
        mount_point: str,
        read_only: bool = False,
    ) -> MountResult:
        """Mount an attached device.

        Raises:
            DeviceNotAttachedError, AlreadyMountedError, MountPointError
        """
        with self.locks.hold(("session", user_id, scenario_id)):
            session = self.load_session(user_id, scenario_id)
            try:
                mounted = session.devices.mount(
                    session.fs.root, device_path, mount_point, read_only=read_only
                )
            except (DeviceNotAttachedError, AlreadyMountedError, MountPointError):
                self.metrics.record_mount("mount", False)
                raise
            if not mounted.already_mounted:
                self._save_session(session, filesystem=True, devices=True)
        if not mounted.already_mounted:
            self.metrics.record_mount("mount", True)
            self._emit(
                DEVICE_MOUNTED,
                user_id,
                scenario_id=scenario_id,
                detail={"device": mounted.device.name, "mountPoint": mounted.mount_point},
            )
        return mounted

    def unmount_device(self, user_id: str, scenario_id: str, mount_point: str) -> Device:
        """Unmount whatever is mounted at ``mount_point``.

        Raises:
            NotMountedError
        """
        with self.locks.hold(("session", user_id, scenario_id)):
            session = self.load_session(user_id, scenario_id)
            try:
                device = session.devices.unmount(mount_point)
            except NotMountedError:
                self.metrics.record_mount("umount", False)
                raise
            self._save_session(session, filesystem=False, devices=True)
        self.metrics.record_mount("umount", True)
        return device

    # ---------- Hints and score ----------

    def request_hint(self, user_id: str, task_id: str) -> HintResult:
        """Reveal a hint, gated by the learner's total score.

        Raises:
            UnknownTaskError, HintUnavailableError, InsufficientPointsError
        """
        task, scenario = self.catalog.find_task(task_id)
        with self.locks.hold(("user", user_id)):
            try:
                result = self.scoring.request_hint(user_id, task, scenario)
            except InsufficientPointsError:
                self.metrics.record_hint("insufficient_points")
                self._emit(
                    HINT_REQUESTED, user_id, scenario_id=scenario.id, task_id=task_id, success=False
                )
                raise
            except HintUnavailableError:
                self.metrics.record_hint("unavailable")
                raise
        self.metrics.record_hint("granted")
        self._emit(
            HINT_REQUESTED,
            user_id,
            scenario_id=scenario.id,
            task_id=task_id,
            detail={"hintCost": result.hint_cost, "alreadyUnlocked": result.already_unlocked},
        )
        return result

    def total_score(self, user_id: str) -> int:
        return self.scoring.total_score(user_id)

    def leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        entries = self._leaderboard.get_or_load(self.scoring.leaderboard)
        return entries[:limit] if limit else list(entries)

    def invalidate_leaderboard(self) -> None:
        self._leaderboard.invalidate()
