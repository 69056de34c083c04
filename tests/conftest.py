"""Shared fixtures for the Forensim test suite."""

import json

import pytest

from forensim.command_handler import ShellContext
from forensim.config import Config
from forensim.devices import DeviceManager
from forensim.engine import TrainingEngine
from forensim.events import MemoryEventSink
from forensim.locks import SessionLocks
from forensim.scenarios import ScenarioCatalog, parse_scenarios
from forensim.store import Store
from forensim.vfs import FilesystemState, default_tree, graft

SCENARIO_DATA = {
    "_comment": "ignored by the loader",
    "case01": {
        "title": "Case 01",
        "introduction": "A laptop was seized.",
        "badge": "Case Closer",
        "filesystem": {
            "home/user/evidence/log.txt": "line one\nerror two\nline three\n",
        },
        "customCommands": [
            {"name": "strings", "output": "strings of {arg0}", "description": "print strings"},
            {
                "name": "volatility",
                "requiresArgs": True,
                "output": "Usage: volatility <plugin>",
                "validArgs": {"pslist": "PID 1 init"},
            },
        ],
        "tasks": [
            {
                "id": "c1_laptop",
                "title": "Inspect the laptop",
                "points": 10,
                "checkType": "interaction",
                "interactionTarget": "laptop",
                "onInteract": {
                    "action": "attach_device",
                    "message": "USB stick attached",
                    "deviceName": "sdb",
                    "deviceType": "disk",
                    "size": "16G",
                    "mountContent": {"notes.txt": "secret\n", "logs/a.log": "FLAG{x}\n"},
                },
            },
            {
                "id": "c1_lsblk",
                "title": "List devices",
                "points": 10,
                "checkType": "command",
                "checkCommand": "lsblk",
                "hintCost": 15,
                "hint": "use lsblk",
            },
            {
                "id": "c1_mount",
                "title": "Mount the stick",
                "points": 20,
                "checkType": "command",
                "checkCommand": "mount",
                "checkArgs": ["/dev/sdb1", "/mnt/usb"],
                "hint": "mount /dev/sdb1 /mnt/usb",
            },
            {
                "id": "c1_cd",
                "title": "Open the evidence folder",
                "points": 10,
                "checkType": "command",
                "checkCommand": "cd",
                "checkArgs": ["/home/user/evidence"],
            },
            {
                "id": "c1_flag",
                "title": "Submit the flag",
                "points": 30,
                "checkType": "flag",
                "flag": "FLAG{x}",
            },
        ],
    },
    "speedy": {
        "title": "Speed drill",
        "tasks": [
            {"id": "s1", "title": "One", "points": 10, "checkType": "flag", "flag": "a"},
            {"id": "s2", "title": "Two", "points": 10, "checkType": "flag", "flag": "b"},
            {"id": "s3", "title": "Three", "points": 10, "checkType": "flag", "flag": "c"},
        ],
    },
}


@pytest.fixture
def scenarios():
    return parse_scenarios(SCENARIO_DATA)


@pytest.fixture
def catalog(scenarios):
    return ScenarioCatalog(scenarios=scenarios)


@pytest.fixture
def store():
    db = Store(":memory:")
    yield db
    db.close()


@pytest.fixture
def config(monkeypatch):
    for key in ("FORENSIM_HOME", "FORENSIM_SPEED_RUNNER_MS", "FORENSIM_DEFAULT_SCENARIO"):
        monkeypatch.delenv(key, raising=False)
    return Config()


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def engine(store, catalog, config, sink):
    return TrainingEngine(store, catalog, config=config, event_sink=sink, locks=SessionLocks())


@pytest.fixture
def shell(scenarios, config):
    """A fresh shell context on the case01 tree, cwd at home."""
    root = default_tree(config.console.home)
    graft(root, "/", scenarios["case01"].filesystem)
    fs = FilesystemState(root=root, cwd=config.console.home)
    return ShellContext(
        fs=fs, devices=DeviceManager(), scenario=scenarios["case01"], console=config.console
    )


@pytest.fixture
def scenario_file(tmp_path):
    """The test scenarios written to a JSON file."""
    path = tmp_path / "scenarios.json"
    path.write_text(json.dumps(SCENARIO_DATA), encoding="utf-8")
    return path
