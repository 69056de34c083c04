"""Tests for forensim.command_handler module."""

import pytest

from forensim.command_handler import Command, handle_command
from forensim.errors import ErrorKind
from forensim.vfs import DirNode, FileNode, get_node


def run(shell, line):
    return handle_command(line, shell)


class TestDispatch:
    """Tests for command lookup."""

    def test_every_command_has_a_handler(self):
        """Each Command member dispatches without raising."""
        from forensim.command_handler import _HANDLERS

        assert set(_HANDLERS) == set(Command)

    def test_unknown_command(self, shell):
        """Unknown programs fail like bash does."""
        result = run(shell, "foobar --x")
        assert result.error == "foobar: command not found"
        assert result.error_kind == ErrorKind.INVALID_COMMAND

    def test_empty_line(self, shell):
        """An empty line produces nothing."""
        result = run(shell, "   ")
        assert result.ok
        assert result.output == ""


class TestNavigation:
    """Tests for cd, pwd and ls."""

    def test_pwd(self, shell):
        """pwd prints the working directory."""
        assert run(shell, "pwd").output == "/home/user"

    def test_cd_absolute_and_relative(self, shell):
        """cd accepts absolute and relative targets."""
        result = run(shell, "cd /tmp")
        assert result.new_cwd == "/tmp"
        run(shell, "cd ../home/user/evidence")
        assert shell.cwd == "/home/user/evidence"

    def test_cd_without_args_goes_home(self, shell):
        """Bare cd returns to the home directory."""
        run(shell, "cd /tmp")
        assert run(shell, "cd").new_cwd == "/home/user"

    def test_cd_tilde(self, shell):
        """cd ~/x expands the home directory."""
        run(shell, "cd /")
        assert run(shell, "cd ~/evidence").new_cwd == "/home/user/evidence"

    def test_cd_missing(self, shell):
        """cd into a missing path fails and keeps the cwd."""
        result = run(shell, "cd nowhere")
        assert result.error == "cd: nowhere: No such file or directory"
        assert result.error_kind == ErrorKind.PATH_NOT_FOUND
        assert shell.cwd == "/home/user"

    def test_cd_into_file(self, shell):
        """cd into a file fails with NotADirectory."""
        result = run(shell, "cd evidence/log.txt")
        assert result.error == "cd: evidence/log.txt: Not a directory"
        assert result.error_kind == ErrorKind.NOT_A_DIRECTORY

    def test_ls_hidden_files(self, shell):
        """ls hides dotfiles unless -a is given."""
        run(shell, "touch .secret visible")
        assert run(shell, "ls").output.split("\n") == ["evidence", "visible"]
        assert ".secret" in run(shell, "ls -a").output.split("\n")

    def test_ls_missing(self, shell):
        """ls of a missing path reports it."""
        result = run(shell, "ls ghost")
        assert result.error == "ls: cannot access 'ghost': No such file or directory"


class TestFileCommands:
    """Tests for mkdir, touch, rm, cp, cat and grep."""

    def test_mkdir_requires_parent(self, shell):
        """mkdir a/b fails until a exists."""
        result = run(shell, "mkdir a/b")
        assert result.error_kind == ErrorKind.PATH_NOT_FOUND

        assert run(shell, "mkdir a").ok
        assert run(shell, "mkdir a/b").ok
        assert run(shell, "ls a").output == "b"

    def test_mkdir_existing(self, shell):
        """mkdir of an existing entry fails with AlreadyExists."""
        result = run(shell, "mkdir evidence")
        assert result.error == "mkdir: cannot create directory 'evidence': File exists"
        assert result.error_kind == ErrorKind.ALREADY_EXISTS

    def test_touch_twice_is_noop(self, shell):
        """The second touch changes nothing."""
        first = run(shell, "touch f")
        second = run(shell, "touch f")
        assert first.ok and first.vfs_mutated
        assert second.ok and not second.vfs_mutated
        assert isinstance(get_node(shell.fs.root, "/home/user/f"), FileNode)

    def test_touch_keeps_content(self, shell):
        """touch never truncates an existing file."""
        run(shell, "touch evidence/log.txt")
        assert get_node(shell.fs.root, "/home/user/evidence/log.txt").content.startswith("line one")

    def test_rm_twice_fails(self, shell):
        """Removing a removed file reports PathNotFound."""
        run(shell, "touch f")
        assert run(shell, "rm f").ok
        result = run(shell, "rm f")
        assert result.error == "rm: cannot remove 'f': No such file or directory"
        assert result.error_kind == ErrorKind.PATH_NOT_FOUND

    def test_rm_directory_without_flag(self, shell):
        """rm removes directories without a recursion flag."""
        assert run(shell, "rm evidence").ok
        assert get_node(shell.fs.root, "/home/user/evidence") is None

    def test_cp_directory_requires_recursion(self, shell):
        """cp refuses directories without -r."""
        result = run(shell, "cp evidence backup")
        assert not result.ok
        assert run(shell, "cp -r evidence backup").ok
        assert get_node(shell.fs.root, "/home/user/backup/log.txt") is not None

    def test_cp_copy_is_independent(self, shell):
        """Editing a copy leaves the source alone."""
        run(shell, "cp evidence/log.txt copy.txt")
        run(shell, "echo changed > copy.txt")
        assert get_node(shell.fs.root, "/home/user/copy.txt").content == "changed\n"
        assert get_node(shell.fs.root, "/home/user/evidence/log.txt").content.startswith("line one")

    def test_cp_into_directory(self, shell):
        """Copying onto a directory places the source inside it."""
        run(shell, "cp evidence/log.txt /tmp")
        assert isinstance(get_node(shell.fs.root, "/tmp/log.txt"), FileNode)

    def test_cp_directory_into_itself_refused(self, shell):
        """A directory cannot be copied into itself or below itself."""
        result = run(shell, "cp -r / /tmp")
        assert result.error == "cp: cannot copy a directory, '/', into itself, '/tmp'"
        assert result.error_kind == ErrorKind.INVALID_COMMAND
        assert "/" not in get_node(shell.fs.root, "/tmp").children

        assert not run(shell, "cp -r /home/user /home/user/evidence").ok
        assert not run(shell, "cp -r evidence evidence").ok
        assert get_node(shell.fs.root, "/home/user/evidence/user") is None
        assert get_node(shell.fs.root, "/home/user/evidence/evidence") is None

    def test_cat_file(self, shell):
        """cat prints file content."""
        assert run(shell, "cat evidence/log.txt").output == "line one\nerror two\nline three"

    def test_cat_directory(self, shell):
        """cat of a directory fails with NotAFile."""
        result = run(shell, "cat evidence")
        assert result.error == "cat: evidence: Is a directory"
        assert result.error_kind == ErrorKind.NOT_A_FILE

    def test_cat_without_operand(self, shell):
        """cat needs a file."""
        assert run(shell, "cat").error == "cat: missing file operand"

    def test_grep(self, shell):
        """grep prints matching lines."""
        assert run(shell, "grep line evidence/log.txt").output == "line one\nline three"
        assert run(shell, "grep").error == "grep: missing pattern or file"


class TestRedirection:
    """Tests for > and >> redirection."""

    def test_truncate_then_append(self, shell):
        """echo hi > f then echo bye >> f yields both lines."""
        first = run(shell, "echo hi > out.txt")
        assert first.ok
        assert first.output == ""
        assert get_node(shell.fs.root, "/home/user/out.txt").content == "hi\n"

        run(shell, "echo bye >> out.txt")
        assert get_node(shell.fs.root, "/home/user/out.txt").content == "hi\nbye\n"

    def test_truncate_replaces(self, shell):
        """'>' replaces existing content."""
        run(shell, "echo one > out.txt")
        run(shell, "echo two > out.txt")
        assert get_node(shell.fs.root, "/home/user/out.txt").content == "two\n"

    def test_missing_destination_directory(self, shell):
        """Redirection never creates directories."""
        result = run(shell, "echo x > nodir/out.txt")
        assert result.error == "Error: destination directory does not exist."
        assert get_node(shell.fs.root, "/home/user/nodir") is None

    def test_missing_destination(self, shell):
        """A dangling '>' is a syntax error."""
        result = run(shell, "echo x >")
        assert result.error == "bash: syntax error near unexpected token `newline'"
        assert result.error_kind == ErrorKind.INVALID_COMMAND

    def test_redirect_onto_directory(self, shell):
        """Writing over a directory fails."""
        result = run(shell, "echo x > evidence")
        assert result.error_kind == ErrorKind.NOT_A_FILE
        assert isinstance(get_node(shell.fs.root, "/home/user/evidence"), DirNode)

    def test_empty_echo_writes_newline(self, shell):
        """echo with no arguments still writes a line break."""
        assert run(shell, "echo > empty.txt").ok
        assert get_node(shell.fs.root, "/home/user/empty.txt").content == "\n"

    def test_quoted_operator_printed(self, shell):
        """A quoted '>' is echoed instead of redirecting."""
        result = run(shell, 'echo ">" out.txt')
        assert result.output == "> out.txt"
        assert get_node(shell.fs.root, "/home/user/out.txt") is None


class TestEnvironment:
    """Tests for env, help and clear."""

    def test_env(self, shell):
        """env reports user, home and path."""
        lines = run(shell, "env").output.split("\n")
        assert "HOME=/home/user" in lines
        assert "USER=forensic" in lines

    def test_help_lists_scenario_commands(self, shell):
        """help includes the scenario's custom commands."""
        output = run(shell, "help").output
        assert "mount" in output
        assert "strings" in output
        assert "volatility" in output


class TestCustomCommands:
    """Tests for scenario-defined commands."""

    def test_templated_output(self, shell):
        """{argN} placeholders take positional arguments."""
        assert run(shell, "strings image.bin").output == "strings of image.bin"

    def test_valid_args(self, shell):
        """Known argument strings return their canned output."""
        assert run(shell, "volatility pslist").output == "PID 1 init"

    def test_invalid_args(self, shell):
        """Unknown argument strings fail."""
        result = run(shell, "volatility bogus")
        assert result.error_kind == ErrorKind.MALFORMED_CUSTOM_COMMAND_ARGS

    def test_builtin_wins_over_custom(self, shell):
        """Built-ins are tried before scenario commands."""
        assert run(shell, "pwd").output == "/home/user"


class TestDevices:
    """Tests for mount, umount and lsblk."""

    @pytest.fixture
    def attached(self, shell):
        shell.devices.attach("sdb", content={"notes.txt": "secret\n"})
        return shell

    def test_mount(self, attached):
        """Mounting grafts the device content."""
        result = run(attached, "mount /dev/sdb1 /mnt/usb")
        assert result.output == "Mounted /dev/sdb1 on /mnt/usb"
        assert result.devices_changed
        assert get_node(attached.fs.root, "/mnt/usb/notes.txt").content == "secret\n"

    def test_mount_same_point_is_noop(self, attached):
        """A second mount at the same point succeeds without changes."""
        run(attached, "mount /dev/sdb1 /mnt/usb")
        result = run(attached, "mount /dev/sdb1 /mnt/usb")
        assert result.ok
        assert result.output == "Device already mounted on /mnt/usb"
        assert not result.devices_changed

    def test_mount_elsewhere_fails(self, attached):
        """A mounted device cannot be mounted at another point."""
        run(attached, "mount /dev/sdb1 /mnt/usb")
        result = run(attached, "mount /dev/sdb1 /mnt/other")
        assert result.error_kind == ErrorKind.ALREADY_MOUNTED

    def test_mount_read_only(self, attached):
        """-o ro is noted in the message."""
        result = run(attached, "mount -o ro /dev/sdb1 /mnt/usb")
        assert result.output.endswith("(read-only)")
        assert attached.devices.get("sdb").read_only

    def test_mount_unattached(self, shell):
        """Mounting an unknown device fails."""
        result = run(shell, "mount /dev/sdc1 /mnt/x")
        assert result.error == "Device not found. You must attach the device first."
        assert result.error_kind == ErrorKind.DEVICE_NOT_ATTACHED

    def test_mount_usage(self, attached):
        """A single operand prints usage."""
        result = run(attached, "mount /dev/sdb1")
        assert result.error.startswith("Usage: mount")

    def test_mount_listing(self, attached):
        """Bare mount lists mounted devices."""
        run(attached, "mount /dev/sdb1 /mnt/usb")
        assert run(attached, "mount").output == "/dev/sdb1 on /mnt/usb (rw)"

    def test_forensic_image_uses_last_device(self, attached):
        """An image path under /forensic maps to the latest device."""
        result = run(attached, "mount /forensic/evidence.img /mnt/img")
        assert result.ok
        assert attached.devices.get("sdb").mount_point == "/mnt/img"

    def test_umount(self, attached):
        """umount clears the mount but keeps the files."""
        run(attached, "mount /dev/sdb1 /mnt/usb")
        assert run(attached, "umount /mnt/usb").ok
        assert not attached.devices.get("sdb").mounted
        assert get_node(attached.fs.root, "/mnt/usb/notes.txt") is not None

    def test_umount_not_mounted(self, shell):
        """umount of an empty mount point fails."""
        result = run(shell, "umount /mnt/usb")
        assert result.error_kind == ErrorKind.NOT_MOUNTED

    def test_lsblk(self, attached):
        """lsblk lists the device and its partition."""
        run(attached, "mount /dev/sdb1 /mnt/usb")
        output = run(attached, "lsblk").output
        assert "sdb" in output
        assert "sdb1" in output
        assert "/mnt/usb" in output
