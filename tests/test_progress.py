"""Tests for evidence matching and task progression."""

from forensim.progress import (
    CommandEvidence,
    FlagEvidence,
    InteractionEvidence,
    TaskStateMachine,
    build_progress,
    command_matches,
    current_task,
    evidence_matches,
    parse_evidence,
)
from forensim.scenarios import CommandCheck


class TestParseEvidence:
    """Tests for the string form of submissions."""

    def test_prefixed_forms(self):
        """interaction: and flag: prefixes select the evidence type."""
        assert parse_evidence("interaction:laptop") == InteractionEvidence(tag="laptop")
        assert parse_evidence("flag:FLAG{x}") == FlagEvidence(value="FLAG{x}")

    def test_command_form(self):
        """Anything else is a command line, both quote styles group."""
        evidence = parse_evidence("cd 'my dir'", cwd="/tmp")
        assert evidence == CommandEvidence(command="cd", args=("my dir",), cwd="/tmp")


class TestCommandMatching:
    """Tests for the command check strategies."""

    CHECK = CommandCheck(command="cd", expected_args=("/home/user/evidence",))

    def test_exact_args(self):
        """Identical arguments match."""
        evidence = CommandEvidence("cd", ("/home/user/evidence",), cwd="/")
        assert command_matches(self.CHECK, evidence)

    def test_trailing_slash(self):
        """A trailing slash is ignored."""
        evidence = CommandEvidence("cd", ("/home/user/evidence/",), cwd="/")
        assert command_matches(self.CHECK, evidence)

    def test_no_args_in_expected_directory(self):
        """Bare cd counts when issued from the expected directory."""
        evidence = CommandEvidence("cd", (), cwd="/home/user/evidence")
        assert command_matches(self.CHECK, evidence)

    def test_no_args_elsewhere(self):
        """Bare cd elsewhere does not count."""
        evidence = CommandEvidence("cd", (), cwd="/tmp")
        assert not command_matches(self.CHECK, evidence)

    def test_relative_path_resolved(self):
        """Path-like relative arguments resolve against the cwd."""
        evidence = CommandEvidence("cd", ("./evidence",), cwd="/home/user")
        assert command_matches(self.CHECK, evidence)
        evidence = CommandEvidence("cd", ("../user/evidence",), cwd="/home/user")
        assert command_matches(self.CHECK, evidence)
        evidence = CommandEvidence("cd", ("./evidence",), cwd="/tmp")
        assert not command_matches(self.CHECK, evidence)

    def test_bare_name_not_resolved(self):
        """An argument without '/' or '.' is never resolved."""
        evidence = CommandEvidence("cd", ("evidence",), cwd="/home/user")
        assert not command_matches(self.CHECK, evidence)

    def test_home_relative_path(self):
        """'~' expands when the evidence carries a home directory."""
        evidence = CommandEvidence("cd", ("~/evidence",), cwd="/tmp", home="/home/user")
        assert command_matches(self.CHECK, evidence)

    def test_relative_expected_arg_compared_literally(self):
        """Non-absolute expected arguments must be typed as given."""
        check = CommandCheck(command="sha256sum", expected_args=("memdump.raw",))
        assert command_matches(check, CommandEvidence("sha256sum", ("memdump.raw",), cwd="/tmp"))
        assert not command_matches(check, CommandEvidence("sha256sum", ("other.raw",), cwd="/tmp"))

    def test_wrong_command(self):
        """The program name must match."""
        evidence = CommandEvidence("ls", ("/home/user/evidence",), cwd="/")
        assert not command_matches(self.CHECK, evidence)

    def test_empty_expected_args_match_anything(self):
        """A check without expected args accepts any arguments."""
        check = CommandCheck(command="lsblk")
        assert command_matches(check, CommandEvidence("lsblk", ("-f",), cwd="/"))
        assert command_matches(check, CommandEvidence("lsblk", (), cwd="/"))

    def test_multiple_args(self):
        """Each path-like argument resolves on its own."""
        check = CommandCheck(command="mount", expected_args=("/dev/sdb1", "/mnt/usb"))
        evidence = CommandEvidence("mount", ("/dev/sdb1", "../mnt/usb"), cwd="/tmp")
        assert command_matches(check, evidence)


class TestEvidenceMatching:
    """Tests for matching evidence to a task's check."""

    def test_type_must_agree(self, scenarios):
        """Evidence of the wrong kind never matches."""
        laptop = scenarios["case01"].tasks[0]
        assert evidence_matches(laptop, InteractionEvidence("laptop"))
        assert not evidence_matches(laptop, FlagEvidence("laptop"))
        assert not evidence_matches(laptop, InteractionEvidence("desk"))


class TestTaskStateMachine:
    """Tests for the progress pointer."""

    def test_pointer_counts_contiguous_completions(self, scenarios):
        """The pointer stops at the first incomplete task."""
        scenario = scenarios["speedy"]
        progress = build_progress(scenario, ["s1", "s3"])
        assert progress.task_index == 1
        assert current_task(scenario, progress).id == "s2"
        assert not progress.is_complete

    def test_only_current_task_accepted(self, scenarios):
        """Evidence for a later task is not accepted early."""
        scenario = scenarios["speedy"]
        machine = TaskStateMachine(scenario, build_progress(scenario, []))
        assert machine.evaluate(FlagEvidence("b")) is None
        assert machine.evaluate(FlagEvidence("a")).id == "s1"

    def test_advance_to_completion(self, scenarios):
        """Advancing past the last task completes the scenario."""
        scenario = scenarios["speedy"]
        machine = TaskStateMachine(scenario, build_progress(scenario, ["s1", "s2"]))
        assert machine.advance() is True
        assert machine.current is None
        assert machine.advance() is False

    def test_unknown_completions_ignored(self, scenarios):
        """Completions of other scenarios do not move the pointer."""
        scenario = scenarios["speedy"]
        progress = build_progress(scenario, ["c1_laptop"])
        assert progress.task_index == 0
        assert progress.completed_task_ids == set()
