"""Virtual filesystem for Forensim sessions.

The tree is a plain nesting of ``DirNode`` and ``FileNode`` objects. All path
helpers are pure: they never raise and report failure with ``None``.

Serialized form (stored per user and scenario):
{
    "type": "dir",
    "children": {
        "notes.txt": {"type": "file", "content": "..."},
        ...
    }
}
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


@dataclass
class FileNode:
    content: str = ""


@dataclass
class DirNode:
    children: Dict[str, "Node"] = field(default_factory=dict)


Node = Union[DirNode, FileNode]


# ---------- Path algebra ----------


def split_path(path: str) -> List[str]:
    """Return the canonical segments of a path (no '.', '..' or empties)."""
    stack: List[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if stack:
                stack.pop()
            continue
        stack.append(segment)
    return stack


def normalize_path(path: str) -> str:
    """Collapse '.', '..' and repeated slashes into an absolute path."""
    return "/" + "/".join(split_path(path))


def resolve_path(raw: str, cwd: str, home: Optional[str] = None) -> str:
    """Convert a target path (absolute or relative) into an absolute path.

    ``..`` at the root stays at the root. ``~`` expands to ``home`` when given.
    """
    if not raw:
        return normalize_path(cwd)
    if home is not None and (raw == "~" or raw.startswith("~/")):
        raw = home + raw[1:]
    if raw.startswith("/"):
        return normalize_path(raw)
    return normalize_path(cwd + "/" + raw)


def basename(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else "/"


def dirname(path: str) -> str:
    return normalize_path("/".join(split_path(path)[:-1]))


def is_within(path: str, ancestor: str) -> bool:
    """True if ``path`` equals ``ancestor`` or lies below it."""
    parts = split_path(path)
    prefix = split_path(ancestor)
    return parts[: len(prefix)] == prefix


# ---------- Tree access ----------


def get_node(root: DirNode, path: str) -> Optional[Node]:
    node: Node = root
    for part in split_path(path):
        if not isinstance(node, DirNode):
            return None
        child = node.children.get(part)
        if child is None:
            return None
        node = child
    return node


def ensure_parent(root: DirNode, path: str) -> Optional[Tuple[DirNode, str]]:
    """Locate the directory that should hold the leaf of ``path``.

    Returns ``(parent, leaf_name)`` only if every ancestor exists and is a
    directory; nothing is created. The root itself has no parent.
    """
    parts = split_path(path)
    if not parts:
        return None
    node: Node = root
    for part in parts[:-1]:
        if not isinstance(node, DirNode):
            return None
        child = node.children.get(part)
        if child is None:
            return None
        node = child
    if not isinstance(node, DirNode):
        return None
    return node, parts[-1]


def ensure_directories(root: DirNode, path: str) -> Optional[DirNode]:
    """Create every missing directory along ``path`` and return the last one.

    Returns ``None`` if an existing file sits on the way.
    """
    node = root
    for part in split_path(path):
        child = node.children.get(part)
        if child is None:
            child = DirNode()
            node.children[part] = child
        if not isinstance(child, DirNode):
            return None
        node = child
    return node


def list_children(directory: DirNode, show_hidden: bool = False) -> List[str]:
    names = sorted(directory.children)
    if show_hidden:
        return names
    return [name for name in names if not name.startswith(".")]


def clone_node(node: Node) -> Node:
    """Deep copy a subtree so the copy shares nothing with the source."""
    return copy.deepcopy(node)


# ---------- Serialization ----------


def node_to_dict(node: Node) -> Dict[str, Any]:
    if isinstance(node, FileNode):
        return {"type": "file", "content": node.content}
    return {
        "type": "dir",
        "children": {name: node_to_dict(child) for name, child in node.children.items()},
    }


def node_from_data(data: Any) -> Node:
    """Build a node from its serialized or shorthand form.

    Accepts ``{"type": "file", ...}`` / ``{"type": "dir", ...}`` dicts, a bare
    string (file content) or a plain mapping (directory of entries).
    """
    if isinstance(data, str):
        return FileNode(content=data)
    if isinstance(data, Mapping):
        node_type = data.get("type")
        if node_type == "file":
            return FileNode(content=str(data.get("content", "")))
        if node_type == "dir":
            children = data.get("children") or {}
            return DirNode(
                children={name: node_from_data(child) for name, child in children.items()}
            )
        return DirNode(children={name: node_from_data(child) for name, child in data.items()})
    if data is None:
        return FileNode()
    return FileNode(content=str(data))


def graft(root: DirNode, mount_point: str, content: Mapping[str, Any]) -> bool:
    """Place ``content`` entries under ``mount_point``, creating directories.

    Entry names may contain slashes, in which case intermediate directories
    are created below the mount point. Existing entries with the same name
    are replaced. Returns False when a file blocks the mount point.
    """
    target = ensure_directories(root, mount_point)
    if target is None:
        return False
    for name, data in content.items():
        parts = split_path(name)
        if not parts:
            continue
        holder = ensure_directories(target, "/".join(parts[:-1]))
        if holder is None:
            return False
        holder.children[parts[-1]] = node_from_data(data)
    return True


def default_tree(home: str = "/home/user") -> DirNode:
    """Fresh tree for a new session."""
    root = DirNode()
    for directory in (home, "/tmp", "/mnt", "/dev", "/forensic", "/etc"):
        ensure_directories(root, directory)
    etc = get_node(root, "/etc")
    if isinstance(etc, DirNode):
        etc.children["hostname"] = FileNode(content="forensics-lab\n")
    return root


@dataclass
class FilesystemState:
    """A session's tree together with its working directory."""

    root: DirNode = field(default_factory=DirNode)
    cwd: str = "/home/user"

    def to_dict(self) -> Dict[str, Any]:
        return {"vfs": node_to_dict(self.root), "cwd": self.cwd}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FilesystemState":
        root = node_from_data(data.get("vfs") or {"type": "dir", "children": {}})
        if not isinstance(root, DirNode):
            root = DirNode()
        return cls(root=root, cwd=normalize_path(data.get("cwd") or "/"))
