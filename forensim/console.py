"""Line-oriented learner console.

One ``ConsoleSession`` per connected learner. Shell commands go to the
engine (and are auto-submitted against the current task); a handful of
console commands expose progress, hints, flags and scene interactions,
which have no shell equivalent.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from colorama import Fore, Style

from .engine import SubmissionResult, TrainingEngine
from .errors import ForensimError, HintUnavailableError, InsufficientPointsError
from .progress import FlagEvidence, InteractionEvidence, pending_tasks

LOGGER = logging.getLogger(__name__)

CONSOLE_HELP = """Console commands:
  tasks              list the tasks of the current scenario
  progress           show score and the current task
  hint               reveal the hint for the current task
  flag <value>       submit a flag for the current task
  interact <object>  inspect an object in the scene
  scenario [id]      list scenarios or switch to one
  leaderboard        show the top learners
  reset              restore the scenario's filesystem and devices
  exit               leave the console"""


class ConsoleSession:
    """State of one learner's console connection."""

    def __init__(
        self,
        engine: TrainingEngine,
        user_id: str,
        scenario_id: Optional[str] = None,
        color: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.user_id = user_id
        self.color = color
        self._clock = clock
        self._task_started = clock()
        self.closed = False
        self.scenario_id = scenario_id or self._default_scenario()

    def _default_scenario(self) -> str:
        configured = self.engine.config.console.default_scenario
        if configured:
            return configured
        ids = self.engine.catalog.ids()
        if not ids:
            raise ForensimError("No scenarios available")
        return ids[0]

    def _paint(self, text: str, colour: str) -> str:
        if not self.color or not text:
            return text
        return colour + text + Style.RESET_ALL

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._task_started) * 1000)

    # ---------- Presentation ----------

    def prompt(self) -> str:
        console = self.engine.config.console
        cwd = self.engine.cwd(self.user_id, self.scenario_id)
        if cwd == console.home or cwd.startswith(console.home + "/"):
            cwd = "~" + cwd[len(console.home) :]
        user = self._paint(f"{console.user}@{console.hostname}", Fore.GREEN)
        path = self._paint(cwd, Fore.BLUE)
        return f"{user}:{path}$ "

    def banner(self) -> str:
        scenario = self.engine.catalog.get(self.scenario_id)
        lines = [self._paint(f"=== {scenario.title} ===", Fore.CYAN)]
        if scenario.introduction:
            lines.append(scenario.introduction)
        lines.append(self._describe_current())
        lines.append("Type 'help' for commands.")
        return "\n".join(lines)

    def _describe_current(self) -> str:
        task = self.engine.current_task(self.user_id, self.scenario_id)
        if task is None:
            return self._paint("All tasks in this scenario are complete.", Fore.GREEN)
        text = f"Current task: {task.title}"
        if task.details:
            text += f"\n  {task.details}"
        return text

    def format_submission(self, submission: SubmissionResult) -> str:
        if submission.in_flight:
            return self._paint("[!] Submission already in progress", Fore.YELLOW)
        if submission.already_completed:
            return self._paint("[=] Task already completed", Fore.YELLOW)
        if not submission.correct:
            return self._paint("[-] That does not solve the current task.", Fore.RED)

        lines = [
            self._paint(
                f"[+] Task complete (+{submission.score_awarded} points, "
                f"total {submission.new_total_score})",
                Fore.GREEN,
            )
        ]
        if submission.message:
            lines.append(self._paint(f"[*] {submission.message}", Fore.CYAN))
        for badge in submission.badges_unlocked:
            lines.append(self._paint(f"[*] Badge unlocked: {badge.code} (+{badge.points})", Fore.MAGENTA))
        if submission.scenario_completed:
            lines.append(self._paint("[*] Scenario complete!", Fore.MAGENTA))
        elif submission.next_task is not None:
            lines.append(f"Next task: {submission.next_task.title}")
        return "\n".join(lines)

    def _after_submission(self, submission: Optional[SubmissionResult]) -> str:
        if submission is None:
            return self._paint("All tasks in this scenario are complete.", Fore.GREEN)
        if submission.correct and not submission.already_completed:
            self._task_started = self._clock()
        return self.format_submission(submission)

    # ---------- Console commands ----------

    def _cmd_exit(self, rest: str) -> str:
        self.closed = True
        return "logout"

    def _cmd_tasks(self, rest: str) -> str:
        scenario = self.engine.catalog.get(self.scenario_id)
        progress = self.engine.progress(self.user_id, self.scenario_id)
        upcoming = {task.id for task in pending_tasks(scenario, progress)}
        lines: List[str] = []
        for index, task in enumerate(scenario.tasks):
            if task.id not in upcoming:
                marker = self._paint("[x]", Fore.GREEN)
            elif index == progress.task_index:
                marker = self._paint("[>]", Fore.YELLOW)
            else:
                marker = "[ ]"
            lines.append(f"{marker} {task.title} ({task.points} pts)")
        return "\n".join(lines)

    def _cmd_progress(self, rest: str) -> str:
        progress = self.engine.progress(self.user_id, self.scenario_id)
        total = self.engine.total_score(self.user_id)
        return (
            f"Scenario {self.scenario_id}: {progress.task_index}/{progress.total} tasks, "
            f"score {total}\n{self._describe_current()}"
        )

    def _cmd_hint(self, rest: str) -> str:
        task = self.engine.current_task(self.user_id, self.scenario_id)
        if task is None:
            return "No current task."
        try:
            hint = self.engine.request_hint(self.user_id, task.id)
        except (InsufficientPointsError, HintUnavailableError) as exc:
            return self._paint(str(exc), Fore.RED)
        return self._paint(f"Hint: {hint.hint}", Fore.YELLOW)

    def _cmd_flag(self, rest: str) -> str:
        if not rest:
            return "Usage: flag <value>"
        submission = self.engine.submit_current(
            self.user_id, self.scenario_id, FlagEvidence(value=rest), self._elapsed_ms()
        )
        return self._after_submission(submission)

    def _cmd_interact(self, rest: str) -> str:
        if not rest:
            return "Usage: interact <object>"
        submission = self.engine.submit_current(
            self.user_id, self.scenario_id, InteractionEvidence(tag=rest), self._elapsed_ms()
        )
        return self._after_submission(submission)

    def _cmd_scenario(self, rest: str) -> str:
        if not rest:
            lines = []
            for scenario in self.engine.catalog.all().values():
                marker = "*" if scenario.id == self.scenario_id else " "
                lines.append(f"{marker} {scenario.id:<20} {scenario.title}")
            return "\n".join(lines)
        self.engine.catalog.get(rest)
        self.scenario_id = rest
        self._task_started = self._clock()
        LOGGER.info("User %s switched to scenario %s", self.user_id, rest)
        return self.banner()

    def _cmd_leaderboard(self, rest: str) -> str:
        entries = self.engine.leaderboard(10)
        if not entries:
            return "No scores yet."
        return "\n".join(
            f"{rank:>3}. {entry.user_id:<20} {entry.total_score:>6} pts  {entry.tasks_completed} tasks"
            for rank, entry in enumerate(entries, start=1)
        )

    def _cmd_reset(self, rest: str) -> str:
        self.engine.reset_session(self.user_id, self.scenario_id)
        return "Filesystem and devices restored."

    _CONSOLE_COMMANDS: Dict[str, Callable[["ConsoleSession", str], str]] = {
        "exit": _cmd_exit,
        "logout": _cmd_exit,
        "tasks": _cmd_tasks,
        "progress": _cmd_progress,
        "hint": _cmd_hint,
        "flag": _cmd_flag,
        "interact": _cmd_interact,
        "scenario": _cmd_scenario,
        "leaderboard": _cmd_leaderboard,
        "reset": _cmd_reset,
    }

    # ---------- Entry point ----------

    def handle_line(self, line: str) -> str:
        """Process one input line and return the text to show."""
        stripped = line.strip()
        if not stripped:
            return ""

        name, _, rest = stripped.partition(" ")
        handler = self._CONSOLE_COMMANDS.get(name)
        try:
            if handler is not None:
                return handler(self, rest.strip())

            outcome = self.engine.run_console_line(
                self.user_id, self.scenario_id, stripped, self._elapsed_ms()
            )
        except ForensimError as exc:
            LOGGER.warning("Console command %r failed for %s: %s", name, self.user_id, exc)
            return self._paint(str(exc), Fore.RED)

        parts = [outcome.result.output] if outcome.result.output else []
        if outcome.result.error:
            parts.append(self._paint(outcome.result.error, Fore.RED))
        if name == "help":
            parts.append(CONSOLE_HELP)
        if outcome.submission is not None:
            parts.append(self._after_submission(outcome.submission))
        return "\n".join(parts)
