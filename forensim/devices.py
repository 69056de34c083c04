"""Attached block devices and their mounts.

A session owns an ordered list of devices. Attaching the same name again
replaces its type, size and content but keeps its position and mount state.
Mounting grafts the device content into the session tree; unmounting only
clears the mount flag and leaves the grafted entries in place.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import (
    AlreadyMountedError,
    DeviceNotAttachedError,
    MountPointError,
    NotMountedError,
)
from .vfs import DirNode, graft, normalize_path

LOGGER = logging.getLogger(__name__)

DEVICE_TYPES = ("disk", "remote")
DEFAULT_DEVICE_SIZE = "500G"
FORENSIC_IMAGE_DIR = "/forensic/"


@dataclass
class Device:
    name: str
    type: str = "disk"
    size: str = DEFAULT_DEVICE_SIZE
    partition_name: str = ""
    mounted: bool = False
    mount_point: Optional[str] = None
    read_only: bool = False
    content: Dict[str, Any] = field(default_factory=dict)
    attached_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.partition_name:
            self.partition_name = f"{self.name}1"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "partitionName": self.partition_name,
            "mounted": self.mounted,
            "mountPoint": self.mount_point,
            "readOnly": self.read_only,
            "content": self.content,
        }


@dataclass
class MountResult:
    device: Device
    mount_point: str
    message: str
    already_mounted: bool = False


def device_name_from_path(device_path: str) -> str:
    """Map ``/dev/sdb1`` or ``/dev/sdb`` (or a bare ``sdb1``) to ``sdb``."""
    name = device_path
    if name.startswith("/dev/"):
        name = name[len("/dev/") :]
    if name.endswith("1"):
        name = name[:-1]
    return name


def is_forensic_image(device_path: str) -> bool:
    return device_path.startswith(FORENSIC_IMAGE_DIR) and device_path.endswith(".img")


class DeviceManager:
    """Device records of one (user, scenario) session."""

    def __init__(self, devices: Optional[Iterable[Device]] = None):
        self.devices: List[Device] = list(devices or [])

    def get(self, name: str) -> Optional[Device]:
        for device in self.devices:
            if device.name == name:
                return device
        return None

    def attach(
        self,
        name: str,
        device_type: str = "disk",
        size: Optional[str] = None,
        content: Optional[Dict[str, Any]] = None,
    ) -> Device:
        """Insert or replace the device called ``name``.

        Re-attaching is idempotent: the record keeps its attach order and its
        current mount state.
        """
        if device_type not in DEVICE_TYPES:
            raise ValueError(f"Unknown device type: {device_type}")

        existing = self.get(name)
        if existing is not None:
            existing.type = device_type
            existing.size = size or DEFAULT_DEVICE_SIZE
            existing.partition_name = f"{name}1"
            existing.content = dict(content or {})
            LOGGER.debug("Device %s re-attached", name)
            return existing

        device = Device(
            name=name,
            type=device_type,
            size=size or DEFAULT_DEVICE_SIZE,
            content=dict(content or {}),
        )
        self.devices.append(device)
        LOGGER.info("Device %s attached (%s, %s)", name, device_type, device.size)
        return device

    def resolve(self, device_path: str) -> Device:
        """Find the device a mount source refers to.

        Forensic image paths refer to the most recently attached device.
        """
        if is_forensic_image(device_path):
            if not self.devices:
                raise DeviceNotAttachedError(device_path)
            return self.devices[-1]

        device = self.get(device_name_from_path(device_path))
        if device is None:
            raise DeviceNotAttachedError(device_path)
        return device

    def mount(
        self,
        root: DirNode,
        device_path: str,
        mount_point: str,
        read_only: bool = False,
    ) -> MountResult:
        """Graft a device's content at ``mount_point`` and mark it mounted.

        Raises:
            DeviceNotAttachedError: no device matches ``device_path``
            AlreadyMountedError: the device is mounted somewhere else
            MountPointError: a file blocks the mount point
        """
        device = self.resolve(device_path)
        mount_point = normalize_path(mount_point)

        if device.mounted:
            if device.mount_point == mount_point:
                return MountResult(
                    device=device,
                    mount_point=mount_point,
                    message=f"Device already mounted on {mount_point}",
                    already_mounted=True,
                )
            raise AlreadyMountedError(device.name, device.mount_point or "")

        if not graft(root, mount_point, device.content):
            raise MountPointError(mount_point)

        device.mounted = True
        device.mount_point = mount_point
        device.read_only = read_only
        LOGGER.info("Device %s mounted on %s", device.name, mount_point)

        message = f"Mounted {device_path} on {mount_point}"
        if read_only:
            message += " (read-only)"
        return MountResult(device=device, mount_point=mount_point, message=message)

    def unmount(self, mount_point: str) -> Device:
        """Clear the mount flag of the device at ``mount_point``.

        The grafted entries stay in the tree.
        """
        mount_point = normalize_path(mount_point)
        for device in self.devices:
            if device.mounted and device.mount_point == mount_point:
                device.mounted = False
                device.mount_point = None
                device.read_only = False
                LOGGER.info("Device %s unmounted from %s", device.name, mount_point)
                return device
        raise NotMountedError(mount_point)

    def lsblk(self) -> str:
        """Render the block device inventory."""
        lines = [
            f"{'NAME':<10}{'SIZE':>6} {'TYPE':<5}MOUNTPOINT",
            f"{'sda':<10}{'256G':>6} {'disk':<5}/",
        ]
        for device in self.devices:
            lines.append(f"{device.name:<10}{device.size:>6} {'disk':<5}")
            mount = device.mount_point if device.mounted else ""
            lines.append(f"{'└─' + device.partition_name:<10}{device.size:>6} {'part':<5}{mount}")
        return "\n".join(line.rstrip() for line in lines)
