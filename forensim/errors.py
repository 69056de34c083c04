"""Error taxonomy for Forensim.

Shell-level failures (missing paths, bad arguments) are reported to the
learner as text together with an ``ErrorKind``. Service-level failures
raise a ``ForensimError`` subclass.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PATH_NOT_FOUND = "PathNotFound"
    NOT_A_DIRECTORY = "NotADirectory"
    NOT_A_FILE = "NotAFile"
    ALREADY_EXISTS = "AlreadyExists"
    ALREADY_MOUNTED = "AlreadyMounted"
    NOT_MOUNTED = "NotMounted"
    DEVICE_NOT_ATTACHED = "DeviceNotAttached"
    INSUFFICIENT_POINTS = "InsufficientPoints"
    INVALID_COMMAND = "InvalidCommand"
    MALFORMED_CUSTOM_COMMAND_ARGS = "MalformedCustomCommandArgs"


class ForensimError(Exception):
    """Base class for service-level errors."""

    kind: ErrorKind = ErrorKind.INVALID_COMMAND


class UnknownScenarioError(ForensimError):
    def __init__(self, scenario_id: str):
        super().__init__(f"Unknown scenario: {scenario_id}")
        self.scenario_id = scenario_id


class UnknownTaskError(ForensimError):
    def __init__(self, task_id: str):
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class DeviceNotAttachedError(ForensimError):
    kind = ErrorKind.DEVICE_NOT_ATTACHED

    def __init__(self, device: str = ""):
        super().__init__("Device not found. You must attach the device first.")
        self.device = device


class AlreadyMountedError(ForensimError):
    kind = ErrorKind.ALREADY_MOUNTED

    def __init__(self, device: str, mount_point: str):
        super().__init__(f"Device already mounted on {mount_point}")
        self.device = device
        self.mount_point = mount_point


class NotMountedError(ForensimError):
    kind = ErrorKind.NOT_MOUNTED

    def __init__(self, mount_point: str):
        super().__init__("No device mounted at that mount point")
        self.mount_point = mount_point


class MountPointError(ForensimError):
    """The mount point cannot be created because a file is in the way."""

    kind = ErrorKind.NOT_A_DIRECTORY

    def __init__(self, mount_point: str):
        super().__init__(f"mount: {mount_point}: Not a directory")
        self.mount_point = mount_point


class InsufficientPointsError(ForensimError):
    kind = ErrorKind.INSUFFICIENT_POINTS

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient points: hint costs {required}, you have {available}"
        )
        self.required = required
        self.available = available


class HintUnavailableError(ForensimError):
    def __init__(self, task_id: str):
        super().__init__(f"No hint available for task {task_id}")
        self.task_id = task_id


class StorageError(ForensimError):
    """Wraps failures of the persistence layer."""


class SubmissionFailedError(ForensimError):
    """A task submission could not be persisted; progress did not advance."""

    def __init__(self, task_id: str, reason: str):
        super().__init__(f"Submission for task {task_id} failed: {reason}")
        self.task_id = task_id
        self.reason = reason
