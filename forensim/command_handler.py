"""Command execution for the learner console.

Every built-in is a member of ``Command`` with exactly one handler in
``_HANDLERS``. Anything else is looked up in the active scenario's custom
commands. Handlers operate on a ``ShellContext`` (the session tree, the
session devices and the console environment) and always return a
``CommandResult``; failures are reported as text plus an ``ErrorKind`` and
never raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .config import ConsoleConfig
from .devices import DeviceManager, MountResult
from .errors import (
    AlreadyMountedError,
    DeviceNotAttachedError,
    ErrorKind,
    MountPointError,
    NotMountedError,
)
from .parser import ParsedCommand, Redirect, parse_command_line
from .scenarios import CustomCommand, Scenario
from .vfs import (
    DirNode,
    FileNode,
    FilesystemState,
    Node,
    basename,
    clone_node,
    dirname,
    ensure_directories,
    ensure_parent,
    get_node,
    is_within,
    list_children,
    resolve_path,
    split_path,
)

LOGGER = logging.getLogger(__name__)


class Command(Enum):
    LS = "ls"
    CD = "cd"
    PWD = "pwd"
    CAT = "cat"
    GREP = "grep"
    MKDIR = "mkdir"
    TOUCH = "touch"
    RM = "rm"
    CP = "cp"
    ECHO = "echo"
    ENV = "env"
    MOUNT = "mount"
    UMOUNT = "umount"
    LSBLK = "lsblk"
    HELP = "help"
    CLEAR = "clear"

    @classmethod
    def lookup(cls, name: str) -> Optional["Command"]:
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass
class CommandResult:
    output: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    new_cwd: Optional[str] = None
    vfs_mutated: bool = False
    devices_changed: bool = False
    mount: Optional[MountResult] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        """Everything the learner should see, output first."""
        parts = [part for part in (self.output, self.error) if part]
        return "\n".join(parts)


@dataclass
class ShellContext:
    fs: FilesystemState
    devices: DeviceManager = field(default_factory=DeviceManager)
    scenario: Optional[Scenario] = None
    console: ConsoleConfig = field(default_factory=ConsoleConfig)

    @property
    def cwd(self) -> str:
        return self.fs.cwd

    def resolve(self, raw: str) -> str:
        return resolve_path(raw, self.fs.cwd, self.console.home)


def _fail(message: str, kind: ErrorKind, **kwargs) -> CommandResult:
    return CommandResult(error=message, error_kind=kind, **kwargs)


def _split_flags(args: List[str]) -> Tuple[str, List[str]]:
    """Separate ``-x`` style flags (letters merged) from operands."""
    flags = ""
    operands: List[str] = []
    for arg in args:
        if arg.startswith("-") and len(arg) > 1:
            flags += arg[1:]
        else:
            operands.append(arg)
    return flags, operands


def _ancestor_failure(root: DirNode, path: str) -> ErrorKind:
    """Why ``ensure_parent`` refused ``path``: a missing or a non-directory ancestor."""
    node: Node = root
    for part in split_path(path)[:-1]:
        if isinstance(node, FileNode):
            return ErrorKind.NOT_A_DIRECTORY
        child = node.children.get(part)
        if child is None:
            return ErrorKind.PATH_NOT_FOUND
        node = child
    if isinstance(node, FileNode):
        return ErrorKind.NOT_A_DIRECTORY
    return ErrorKind.PATH_NOT_FOUND


def _describe(kind: ErrorKind) -> str:
    if kind == ErrorKind.NOT_A_DIRECTORY:
        return "Not a directory"
    return "No such file or directory"


def _merge(outputs: List[str], errors: List[Tuple[str, ErrorKind]], **kwargs) -> CommandResult:
    result = CommandResult(output="\n".join(outputs), **kwargs)
    if errors:
        result.error = "\n".join(message for message, _ in errors)
        result.error_kind = errors[0][1]
    return result


# ---------- Built-in command handlers ----------


def _handle_ls(args: List[str], ctx: ShellContext) -> CommandResult:
    """List a directory (or echo a file's name); dotfiles only with -a."""
    flags, operands = _split_flags(args)
    target = operands[0] if operands else "."
    node = get_node(ctx.fs.root, ctx.resolve(target))

    if node is None:
        return _fail(
            f"ls: cannot access '{target}': No such file or directory",
            ErrorKind.PATH_NOT_FOUND,
        )
    if isinstance(node, FileNode):
        return CommandResult(output=basename(ctx.resolve(target)))
    return CommandResult(output="\n".join(list_children(node, show_hidden="a" in flags)))


def _handle_cd(args: List[str], ctx: ShellContext) -> CommandResult:
    target = args[0] if args else "~"
    new_path = ctx.resolve(target)
    node = get_node(ctx.fs.root, new_path)

    if node is None:
        return _fail(f"cd: {target}: No such file or directory", ErrorKind.PATH_NOT_FOUND)
    if isinstance(node, FileNode):
        return _fail(f"cd: {target}: Not a directory", ErrorKind.NOT_A_DIRECTORY)

    ctx.fs.cwd = new_path
    return CommandResult(new_cwd=new_path)


def _handle_pwd(args: List[str], ctx: ShellContext) -> CommandResult:
    return CommandResult(output=ctx.cwd)


def _handle_cat(args: List[str], ctx: ShellContext) -> CommandResult:
    if not args:
        return _fail("cat: missing file operand", ErrorKind.INVALID_COMMAND)

    outputs: List[str] = []
    errors: List[Tuple[str, ErrorKind]] = []
    for name in args:
        node = get_node(ctx.fs.root, ctx.resolve(name))
        if node is None:
            errors.append((f"cat: {name}: No such file or directory", ErrorKind.PATH_NOT_FOUND))
        elif isinstance(node, DirNode):
            errors.append((f"cat: {name}: Is a directory", ErrorKind.NOT_A_FILE))
        else:
            outputs.append(node.content.rstrip("\n"))
    return _merge(outputs, errors)


def _handle_grep(args: List[str], ctx: ShellContext) -> CommandResult:
    """Print the lines of a file containing a literal substring."""
    if len(args) < 2:
        return _fail("grep: missing pattern or file", ErrorKind.INVALID_COMMAND)

    pattern, name = args[0], args[1]
    node = get_node(ctx.fs.root, ctx.resolve(name))
    if node is None:
        return _fail(f"grep: {name}: No such file or directory", ErrorKind.PATH_NOT_FOUND)
    if isinstance(node, DirNode):
        return _fail(f"grep: {name}: Is a directory", ErrorKind.NOT_A_FILE)

    matches = [line for line in node.content.split("\n") if pattern in line]
    return CommandResult(output="\n".join(matches))


def _handle_mkdir(args: List[str], ctx: ShellContext) -> CommandResult:
    if not args:
        return _fail("mkdir: missing operand", ErrorKind.INVALID_COMMAND)

    errors: List[Tuple[str, ErrorKind]] = []
    created = False
    for name in args:
        path = ctx.resolve(name)
        if get_node(ctx.fs.root, path) is not None:
            errors.append(
                (f"mkdir: cannot create directory '{name}': File exists", ErrorKind.ALREADY_EXISTS)
            )
            continue
        located = ensure_parent(ctx.fs.root, path)
        if located is None:
            kind = _ancestor_failure(ctx.fs.root, path)
            errors.append((f"mkdir: cannot create directory '{name}': {_describe(kind)}", kind))
            continue
        parent, leaf = located
        parent.children[leaf] = DirNode()
        created = True
    return _merge([], errors, vfs_mutated=created)


def _handle_touch(args: List[str], ctx: ShellContext) -> CommandResult:
    if not args:
        return _fail("touch: missing file operand", ErrorKind.INVALID_COMMAND)

    errors: List[Tuple[str, ErrorKind]] = []
    created = False
    for name in args:
        path = ctx.resolve(name)
        if get_node(ctx.fs.root, path) is not None:
            continue
        located = ensure_parent(ctx.fs.root, path)
        if located is None:
            kind = _ancestor_failure(ctx.fs.root, path)
            errors.append((f"touch: cannot touch '{name}': {_describe(kind)}", kind))
            continue
        parent, leaf = located
        parent.children[leaf] = FileNode()
        created = True
    return _merge([], errors, vfs_mutated=created)


def _handle_rm(args: List[str], ctx: ShellContext) -> CommandResult:
    """Remove entries; directories go too, no recursion flag needed."""
    _, operands = _split_flags(args)
    if not operands:
        return _fail("rm: missing operand", ErrorKind.INVALID_COMMAND)

    errors: List[Tuple[str, ErrorKind]] = []
    removed = False
    for name in operands:
        located = ensure_parent(ctx.fs.root, ctx.resolve(name))
        if located is None or located[1] not in located[0].children:
            errors.append(
                (f"rm: cannot remove '{name}': No such file or directory", ErrorKind.PATH_NOT_FOUND)
            )
            continue
        parent, leaf = located
        del parent.children[leaf]
        removed = True
    return _merge([], errors, vfs_mutated=removed)


def _handle_cp(args: List[str], ctx: ShellContext) -> CommandResult:
    flags, operands = _split_flags(args)
    recursive = "r" in flags or "R" in flags
    if not operands:
        return _fail("cp: missing file operand", ErrorKind.INVALID_COMMAND)
    if len(operands) < 2:
        return _fail(
            f"cp: missing destination file operand after '{operands[0]}'",
            ErrorKind.INVALID_COMMAND,
        )

    src_name, dest_name = operands[0], operands[1]
    src_path = ctx.resolve(src_name)
    source = get_node(ctx.fs.root, src_path)
    if source is None:
        return _fail(
            f"cp: cannot stat '{src_name}': No such file or directory",
            ErrorKind.PATH_NOT_FOUND,
        )
    if isinstance(source, DirNode) and not recursive:
        return _fail(
            f"cp: -r not specified; omitting directory '{src_name}'",
            ErrorKind.INVALID_COMMAND,
        )

    dest_path = ctx.resolve(dest_name)
    if isinstance(source, DirNode) and is_within(dest_path, src_path):
        return _fail(
            f"cp: cannot copy a directory, '{src_name}', into itself, '{dest_name}'",
            ErrorKind.INVALID_COMMAND,
        )

    copy = clone_node(source)
    existing = get_node(ctx.fs.root, dest_path)

    if isinstance(existing, DirNode):
        existing.children[basename(src_path)] = copy
        return CommandResult(vfs_mutated=True)

    if isinstance(existing, FileNode):
        if isinstance(copy, DirNode):
            return _fail(
                f"cp: cannot overwrite non-directory '{dest_name}' with directory '{src_name}'",
                ErrorKind.NOT_A_DIRECTORY,
            )
        existing.content = copy.content
        return CommandResult(vfs_mutated=True)

    parent = ensure_directories(ctx.fs.root, dirname(dest_path))
    if parent is None:
        return _fail(f"cp: cannot create '{dest_name}': Not a directory", ErrorKind.NOT_A_DIRECTORY)
    parent.children[basename(dest_path)] = copy
    return CommandResult(vfs_mutated=True)


def _handle_echo(args: List[str], ctx: ShellContext) -> CommandResult:
    return CommandResult(output=" ".join(args))


def _handle_env(args: List[str], ctx: ShellContext) -> CommandResult:
    lines = [
        f"USER={ctx.console.user}",
        f"HOME={ctx.console.home}",
        f"PATH={ctx.console.path}",
    ]
    return CommandResult(output="\n".join(lines))


MOUNT_USAGE = (
    "Usage: mount [-o ro] <device> <mountpoint>\n"
    "Example: mount /dev/sdb1 /mnt/evidence\n"
    "         mount -o ro /forensic/evidence.img /mnt/evidence"
)


def _handle_mount(args: List[str], ctx: ShellContext) -> CommandResult:
    options: List[str] = []
    operands: List[str] = []
    index = 0
    while index < len(args):
        if args[index] == "-o" and index + 1 < len(args):
            options.extend(args[index + 1].split(","))
            index += 2
            continue
        operands.append(args[index])
        index += 1

    if not operands:
        lines = [
            f"/dev/{d.partition_name} on {d.mount_point} ({'ro' if d.read_only else 'rw'})"
            for d in ctx.devices.devices
            if d.mounted
        ]
        return CommandResult(output="\n".join(lines))
    if len(operands) < 2:
        return _fail(MOUNT_USAGE, ErrorKind.INVALID_COMMAND)

    source = operands[0]
    if not source.startswith("/dev/") and ("/" in source or source.endswith(".img")):
        source = ctx.resolve(source)
    try:
        mounted = ctx.devices.mount(
            ctx.fs.root, source, ctx.resolve(operands[1]), read_only="ro" in options
        )
    except (DeviceNotAttachedError, AlreadyMountedError, MountPointError) as exc:
        return _fail(str(exc), exc.kind)

    return CommandResult(
        output=mounted.message,
        vfs_mutated=not mounted.already_mounted,
        devices_changed=not mounted.already_mounted,
        mount=mounted,
    )


def _handle_umount(args: List[str], ctx: ShellContext) -> CommandResult:
    if not args:
        return _fail(
            "Usage: umount <mountpoint>\nExample: umount /mnt/evidence",
            ErrorKind.INVALID_COMMAND,
        )
    mount_point = ctx.resolve(args[0])
    try:
        ctx.devices.unmount(mount_point)
    except NotMountedError as exc:
        return _fail(f"umount: {exc}", exc.kind)
    return CommandResult(output=f"Unmounted {mount_point}", devices_changed=True)


def _handle_lsblk(args: List[str], ctx: ShellContext) -> CommandResult:
    return CommandResult(output=ctx.devices.lsblk())


def _handle_help(args: List[str], ctx: ShellContext) -> CommandResult:
    lines = ["Available commands:"]
    lines.append("  " + " ".join(cmd.value for cmd in Command))
    if ctx.scenario is not None and ctx.scenario.custom_commands:
        lines.append("Scenario commands:")
        for custom in ctx.scenario.custom_commands:
            lines.append(f"  {custom.name:<12} {custom.description}")
    return CommandResult(output="\n".join(lines))


def _handle_clear(args: List[str], ctx: ShellContext) -> CommandResult:
    return CommandResult(output="\033[2J\033[H")


_HANDLERS: Dict[Command, Callable[[List[str], ShellContext], CommandResult]] = {
    Command.LS: _handle_ls,
    Command.CD: _handle_cd,
    Command.PWD: _handle_pwd,
    Command.CAT: _handle_cat,
    Command.GREP: _handle_grep,
    Command.MKDIR: _handle_mkdir,
    Command.TOUCH: _handle_touch,
    Command.RM: _handle_rm,
    Command.CP: _handle_cp,
    Command.ECHO: _handle_echo,
    Command.ENV: _handle_env,
    Command.MOUNT: _handle_mount,
    Command.UMOUNT: _handle_umount,
    Command.LSBLK: _handle_lsblk,
    Command.HELP: _handle_help,
    Command.CLEAR: _handle_clear,
}


# ---------- Scenario commands ----------


def run_custom_command(custom: CustomCommand, args: List[str]) -> CommandResult:
    """Render a scenario command's canned output for ``args``."""
    if custom.requires_args and custom.valid_args:
        if not args:
            return CommandResult(output=custom.output or f"Usage: {custom.name} <args>")
        key = " ".join(args)
        if key in custom.valid_args:
            return CommandResult(output=custom.valid_args[key])
        message = f"{custom.name}: invalid arguments"
        if custom.output:
            message += "\n" + custom.output
        return _fail(message, ErrorKind.MALFORMED_CUSTOM_COMMAND_ARGS)

    text = custom.output
    for index, arg in enumerate(args):
        text = text.replace(f"{{arg{index}}}", arg)
    return CommandResult(output=text)


# ---------- Redirection ----------


def _apply_redirect(result: CommandResult, redirect: Redirect, ctx: ShellContext) -> None:
    """Send ``result.output`` to a file instead of the console.

    Missing parent directories are an error; they are never created.
    """
    path = ctx.resolve(redirect.path)
    located = ensure_parent(ctx.fs.root, path)
    if located is None:
        result.error = "Error: destination directory does not exist."
        result.error_kind = ErrorKind.PATH_NOT_FOUND
        return
    parent, leaf = located
    existing = parent.children.get(leaf)
    if isinstance(existing, DirNode):
        result.error = f"{redirect.path}: Is a directory"
        result.error_kind = ErrorKind.NOT_A_FILE
        return

    text = result.output + "\n"
    if redirect.append and isinstance(existing, FileNode):
        existing.content += text
    else:
        parent.children[leaf] = FileNode(content=text)
    result.output = ""
    result.vfs_mutated = True


# ---------- Entry points ----------


def execute(parsed: ParsedCommand, ctx: ShellContext) -> CommandResult:
    """Run one parsed command against a session context."""
    if parsed.is_empty:
        return CommandResult()
    if parsed.redirect is not None and not parsed.redirect.path:
        return _fail(
            "bash: syntax error near unexpected token `newline'", ErrorKind.INVALID_COMMAND
        )

    command = Command.lookup(parsed.command)
    if command is not None:
        result = _HANDLERS[command](parsed.args, ctx)
    else:
        custom = ctx.scenario.custom_command(parsed.command) if ctx.scenario else None
        if custom is None:
            LOGGER.debug("Unknown command %r", parsed.command)
            return _fail(f"{parsed.command}: command not found", ErrorKind.INVALID_COMMAND)
        result = run_custom_command(custom, parsed.args)

    if parsed.redirect is not None and result.ok:
        _apply_redirect(result, parsed.redirect, ctx)
    return result


def handle_command(line: str, ctx: ShellContext) -> CommandResult:
    """Parse and execute a raw console line."""
    return execute(parse_command_line(line), ctx)
