# command_processor.py

# The command interpreter. A front-end hands each submitted line to
# process_command together with its Session; the snapshot is loaded, the
# command runs against it, the snapshot is saved, and a CommandResult tells
# the front-end what to print and how the session changes.

import fnmatch
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from accounts import add_user, authenticate, elevated, is_root, switch_user
from command_history import CommandHistory, autocomplete
from fake_filesystem import (
    DIRECTORY,
    FILE,
    change_permissions,
    copy_node,
    create_node,
    delete_node,
    get_node,
    move_node,
    now_ms,
    split_path,
    walk,
)
from path_resolver import home_dir, resolve_path

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/home/ubuntu"
HOSTNAME = "terminal"

WELCOME_LINES = [
    "Welcome to Ubuntu 22.04.1 LTS (GNU/Linux 5.15.0-56-generic x86_64)",
    'Type "help" to see available commands.',
]


class Mode(Enum):
    NORMAL = "normal"
    LOGIN_PASSWORD = "login_password"
    SUDO_PASSWORD = "sudo_password"


@dataclass
class CommandResult:
    output: List[str] = field(default_factory=list)
    new_path: Optional[str] = None
    mode: Mode = Mode.NORMAL
    temp_user: str = ""
    sudo_command: str = ""
    clear: bool = False


@dataclass
class Session:
    """Interpreter state owned by one front-end connection."""

    current_path: str = DEFAULT_PATH
    mode: Mode = Mode.NORMAL
    temp_user: str = ""
    sudo_command: str = ""
    history: CommandHistory = field(default_factory=CommandHistory)

    def apply(self, result):
        if result.new_path:
            self.current_path = result.new_path
        self.mode = result.mode
        self.temp_user = result.temp_user
        self.sudo_command = result.sudo_command


def output(*lines, **changes):
    return CommandResult(output=list(lines), **changes)


# Dispatch table, filled in by the @command decorator below
COMMANDS = {}


def command(*names):
    def register(handler):
        for name in names:
            COMMANDS[name] = handler
        return handler
    return register


def process_command(line, session, storage):
    """Run one submitted line and persist the resulting snapshot."""
    fs = storage.load()

    if session.mode is Mode.SUDO_PASSWORD:
        result = _finish_sudo(fs, line, session)
    elif session.mode is Mode.LOGIN_PASSWORD:
        result = _finish_login(fs, line, session)
    else:
        result = run_command(fs, line, session)

    storage.save(fs)
    return result


def _finish_sudo(fs, password, session):
    if not authenticate(fs, "root", password):
        logger.info("sudo authentication failed for %s", fs.current_user)
        return output("Sorry, try again.")

    logger.info("%s ran as root: %s", fs.current_user, session.sudo_command)
    with elevated(fs, "root"):
        result = run_command(fs, session.sudo_command, session)

    result.mode = Mode.NORMAL
    result.temp_user = ""
    result.sudo_command = ""
    return result


def _finish_login(fs, password, session):
    target = session.temp_user
    if not authenticate(fs, target, password):
        logger.info("login failed for %s", target)
        return output("Authentication failed.")

    switch_user(fs, target)
    return output(f"Welcome, {target}!", new_path=home_dir(fs, target))


def run_command(fs, line, session):
    args = line.split()
    if not args:
        return CommandResult()

    name = args[0].lower()
    handler = COMMANDS.get(name)
    if handler is None:
        if len(args) > 1 and args[1] in ("--help", "-h"):
            return output(f"Help for {name} would be displayed here.")
        return output(f"{name}: command not found")

    return handler(fs, args, session)


# Privilege commands

@command("sudo")
def cmd_sudo(fs, args, session):
    if len(args) < 2:
        return output("sudo: command required")

    # Always asks for the root password, even when already root
    return output(
        f"[sudo] password for {fs.current_user}:",
        mode=Mode.SUDO_PASSWORD,
        sudo_command=" ".join(args[1:]),
    )


@command("su")
def cmd_su(fs, args, session):
    target = args[1] if len(args) > 1 else "root"

    if target not in fs.users:
        return output(f"su: user {target} does not exist")

    # Root, or switching to yourself, needs no password
    if is_root(fs) or target == fs.current_user:
        switch_user(fs, target)
        return output(new_path=home_dir(fs, target))

    return output(
        f"Password for {target}:",
        mode=Mode.LOGIN_PASSWORD,
        temp_user=target,
    )


@command("whoami")
def cmd_whoami(fs, args, session):
    return output(fs.current_user)


@command("adduser")
def cmd_adduser(fs, args, session):
    if not is_root(fs):
        return output("adduser: Only root may add a user or group to the system.")

    if len(args) < 2:
        return output("adduser: Missing username")

    username = args[1]
    # Password defaults to the username
    password = args[2] if len(args) > 2 else username

    if username in fs.users:
        return output(f"adduser: The user '{username}' already exists.")

    if not add_user(fs, username, password):
        return output(f"adduser: cannot create home directory '/home/{username}'")

    return output(f"Added user {username}. Home directory created at /home/{username}")


@command("passwd")
def cmd_passwd(fs, args, session):
    if len(args) < 2:
        return output("passwd: Missing username")

    username = args[1]
    if not is_root(fs) and fs.current_user != username:
        return output("passwd: Only root can change passwords for other users")

    if username not in fs.users:
        return output(f"passwd: user '{username}' does not exist")

    if len(args) < 3:
        return output("passwd: Missing new password")

    fs.users[username].password = args[2]
    return output(f"Password for {username} changed")


# Navigation

@command("pwd")
def cmd_pwd(fs, args, session):
    return output(session.current_path)


@command("cd")
def cmd_cd(fs, args, session):
    target = args[1] if len(args) > 1 else "~"
    path = resolve_path(fs, target, session.current_path)
    node = get_node(fs, path)

    if node is None:
        return output(f"cd: {target}: No such file or directory")
    if not node.is_dir:
        return output(f"cd: {target}: Not a directory")

    return output(new_path=path)


def _format_time(ms):
    dt = datetime.fromtimestamp(ms / 1000)
    clock = dt.strftime("%I:%M:%S %p").lstrip("0")
    return f"{dt.month}/{dt.day}/{dt.year} {clock}"


def _long_entry(name, node):
    type_char = "d" if node.is_dir else "-"
    size = str(len(node.content or "")) if node.is_file else "4096"
    suffix = "/" if node.is_dir else ""
    return f"{type_char}{node.permissions} {node.owner} {size} {_format_time(node.modified)} {name}{suffix}"


@command("ls")
def cmd_ls(fs, args, session):
    target = "."
    path = session.current_path
    show_hidden = False
    long_format = False

    for arg in args[1:]:
        if arg.startswith("-"):
            show_hidden = show_hidden or "a" in arg
            long_format = long_format or "l" in arg
        else:
            target = arg
            path = resolve_path(fs, arg, session.current_path)

    node = get_node(fs, path)
    if node is None:
        return output(f"ls: cannot access '{target}': No such file or directory")

    if node.is_file:
        return output(target)

    entries = [
        (name, child) for name, child in node.children.items()
        if show_hidden or not name.startswith(".")
    ]

    if long_format:
        return output(*[_long_entry(name, child) for name, child in entries])

    names = [f"{name}/" if child.is_dir else name for name, child in entries]
    return output("  ".join(names))


@command("find")
def cmd_find(fs, args, session):
    target = "."
    pattern = None

    rest = args[1:]
    if rest and rest[0] != "-name":
        target = rest.pop(0)
    if rest:
        if rest[0] != "-name" or len(rest) < 2:
            return output("find: usage: find [path] [-name pattern]")
        pattern = rest[1]

    start = resolve_path(fs, target, session.current_path)
    node = get_node(fs, start)
    if node is None:
        return output(f"find: '{target}': No such file or directory")

    def matches(path):
        return pattern is None or fnmatch.fnmatch(split_path(path)[1], pattern)

    found = [start] if matches(start) else []
    found.extend(path for path, _ in walk(node, start) if matches(path))
    return output(*found)


# File operations

@command("mkdir")
def cmd_mkdir(fs, args, session):
    if len(args) < 2:
        return output("mkdir: missing operand")

    path = resolve_path(fs, args[1], session.current_path)
    if create_node(fs, path, DIRECTORY):
        return output()
    return output(f"mkdir: cannot create directory '{args[1]}': File exists or invalid path")


@command("touch")
def cmd_touch(fs, args, session):
    if len(args) < 2:
        return output("touch: missing file operand")

    path = resolve_path(fs, args[1], session.current_path)
    if create_node(fs, path, FILE):
        return output()
    return output(f"touch: cannot touch '{args[1]}': File exists or invalid path")


@command("cat")
def cmd_cat(fs, args, session):
    if len(args) < 2:
        return output("cat: missing file operand")

    node = get_node(fs, resolve_path(fs, args[1], session.current_path))
    if node is None:
        return output(f"cat: {args[1]}: No such file or directory")
    if node.is_dir:
        return output(f"cat: {args[1]}: Is a directory")

    return output(*(node.content or "").split("\n"))


def _write_file(fs, path, text, append):
    node = get_node(fs, path)

    if node is None:
        return create_node(fs, path, FILE, text)
    if node.is_dir:
        return False

    node.content = f"{node.content or ''}\n{text}" if append else text
    node.modified = now_ms()
    return True


@command("echo")
def cmd_echo(fs, args, session):
    text = " ".join(args[1:])
    redirect = text.find(">")

    if redirect < 0:
        return output(text)

    content = text[:redirect].strip()
    target = text[redirect + 1:].strip()
    append = target.startswith(">")
    if append:
        target = target[1:].strip()

    path = resolve_path(fs, target, session.current_path)
    node = get_node(fs, path)
    if node is not None and node.is_dir:
        return output(f"echo: {target}: Is a directory")

    if not _write_file(fs, path, content, append):
        return output(f"echo: {target}: No such file or directory")
    return output()


@command("rm")
def cmd_rm(fs, args, session):
    recursive = False
    force = False
    target = ""

    for arg in args[1:]:
        if arg.startswith("-"):
            recursive = recursive or "r" in arg or "R" in arg
            force = force or "f" in arg
        else:
            target = arg

    if not target:
        return output("rm: missing operand")

    path = resolve_path(fs, target, session.current_path)
    node = get_node(fs, path)

    if node is None:
        if force:
            return output()
        return output(f"rm: cannot remove '{target}': No such file or directory")

    if node.is_dir and not recursive:
        return output(f"rm: cannot remove '{target}': Is a directory")

    if delete_node(fs, path):
        return output()
    return output(f"rm: cannot remove '{target}'")


@command("cp")
def cmd_cp(fs, args, session):
    if len(args) < 3:
        return output("cp: missing file operand")

    src = resolve_path(fs, args[1], session.current_path)
    dst = resolve_path(fs, args[2], session.current_path)

    if get_node(fs, src) is None:
        return output(f"cp: cannot stat '{args[1]}': No such file or directory")

    if copy_node(fs, src, dst):
        return output()
    return output(f"cp: cannot copy '{args[1]}' to '{args[2]}'")


@command("mv")
def cmd_mv(fs, args, session):
    if len(args) < 3:
        return output("mv: missing file operand")

    src = resolve_path(fs, args[1], session.current_path)
    dst = resolve_path(fs, args[2], session.current_path)

    if get_node(fs, src) is None:
        return output(f"mv: cannot stat '{args[1]}': No such file or directory")

    if move_node(fs, src, dst):
        return output()
    return output(f"mv: cannot move '{args[1]}' to '{args[2]}'")


@command("chmod")
def cmd_chmod(fs, args, session):
    if len(args) < 3:
        return output("chmod: missing operand")

    mode = args[1]
    path = resolve_path(fs, args[2], session.current_path)

    if get_node(fs, path) is None:
        return output(f"chmod: cannot access '{args[2]}': No such file or directory")

    if change_permissions(fs, path, mode):
        return output()
    return output(f"chmod: invalid mode: '{mode}'")


@command("grep")
def cmd_grep(fs, args, session):
    if len(args) < 3:
        return output("grep: missing pattern or file")

    pattern = args[1]
    node = get_node(fs, resolve_path(fs, args[2], session.current_path))

    if node is None:
        return output(f"grep: {args[2]}: No such file or directory")
    if not node.is_file:
        return output(f"grep: {args[2]}: Is a directory")

    # Literal substring match, not a regular expression
    matching = [line for line in (node.content or "").split("\n") if pattern in line]
    return output(*(matching or [""]))


# Informational commands

@command("clear")
def cmd_clear(fs, args, session):
    return CommandResult(clear=True)


@command("history")
def cmd_history(fs, args, session):
    return output(*[f"{i + 1}  {c}" for i, c in enumerate(session.history.commands)])


@command("date")
def cmd_date(fs, args, session):
    return output(time.strftime("%a %b %d %H:%M:%S %Z %Y"))


@command("uname")
def cmd_uname(fs, args, session):
    if "-a" in args:
        return output(
            "Linux terminal-simulation 5.15.0-56-generic #1 SMP Ubuntu 22.04.1 LTS x86_64 GNU/Linux"
        )
    return output("Linux")


@command("df")
def cmd_df(fs, args, session):
    return output(
        "Filesystem     1K-blocks    Used Available Use% Mounted on",
        "udev             8151440       0   8151440   0% /dev",
        "tmpfs            1638624    1852   1636772   1% /run",
        "/dev/sda1      165735648 5121324 151918800   4% /",
    )


def _fake_pid():
    return random.randint(1000, 9999)


@command("ps")
def cmd_ps(fs, args, session):
    return output(
        "PID TTY          TIME CMD",
        "  1 pts/0    00:00:00 bash",
        f"  {_fake_pid()} pts/0    00:00:00 ps",
    )


@command("top")
def cmd_top(fs, args, session):
    return output(
        f"top - {time.strftime('%H:%M:%S')} up 2 days,  3:12,  1 user,  load average: 0.00, 0.01, 0.05",
        "Tasks:   3 total,   1 running,   2 sleeping,   0 stopped,   0 zombie",
        "%Cpu(s):  2.0 us,  1.0 sy,  0.0 ni, 97.0 id,  0.0 wa,  0.0 hi,  0.0 si,  0.0 st",
        "MiB Mem :  16000.0 total,  14000.0 free,   1200.0 used,    800.0 buff/cache",
        "MiB Swap:   2048.0 total,   2048.0 free,      0.0 used.  14000.0 avail Mem",
        "",
        "  PID USER      PR  NI    VIRT    RES    SHR S  %CPU  %MEM     TIME+ COMMAND",
        "    1 root      20   0   10000   2400   1600 S   0.0   0.0   0:00.10 init",
        f"{_fake_pid()} {fs.current_user}      20   0   12000   3000   2000 R   0.7   0.0   0:00.01 top",
        "(press q to quit)",
    )


@command("apt", "apt-get")
def cmd_apt(fs, args, session):
    action = args[1] if len(args) > 1 else ""

    if action == "update":
        return output(
            "Reading package lists... Done",
            "Building dependency tree... Done",
            "All packages are up to date.",
        )

    if action == "upgrade":
        return output(
            "Reading package lists... Done",
            "Building dependency tree... Done",
            "Calculating upgrade... Done",
            "0 upgraded, 0 newly installed, 0 to remove and 0 not upgraded.",
        )

    if action == "install":
        if len(args) < 3:
            return output("apt: Missing package name")
        return output(f"Simulating installation of {', '.join(args[2:])}...", "Done!")

    return output(
        "apt-get commands:",
        "  update - Retrieve new lists of packages",
        "  upgrade - Perform an upgrade",
        "  install - Install packages",
    )


MAN_PAGES = {
    "ls": [
        "NAME",
        "       ls - list directory contents",
        "",
        "SYNOPSIS",
        "       ls [OPTION]... [FILE]...",
        "",
        "DESCRIPTION",
        "       List information about the FILEs (the current directory by default).",
        "       Sort entries alphabetically.",
        "",
        "       -a, --all",
        "              do not ignore entries starting with .",
        "",
        "       -l     use a long listing format",
    ],
    "cd": [
        "NAME",
        "       cd - change the working directory",
        "",
        "SYNOPSIS",
        "       cd [dir]",
        "",
        "DESCRIPTION",
        "       Change the shell working directory.",
        "",
        "       Change the current directory to DIR. The default DIR is the value of the",
        "       HOME shell variable.",
    ],
    "find": [
        "NAME",
        "       find - search for files in a directory hierarchy",
        "",
        "SYNOPSIS",
        "       find [path] [-name pattern]",
        "",
        "DESCRIPTION",
        "       Print every path below the starting point (the current directory by",
        "       default). With -name, only paths whose base name matches the shell",
        "       pattern are printed.",
    ],
}


@command("man")
def cmd_man(fs, args, session):
    if len(args) < 2:
        return output("What manual page do you want?")

    page = args[1].lower()
    if page in MAN_PAGES:
        return output(*MAN_PAGES[page])
    return output(f"No manual entry for {page}")


@command("help")
def cmd_help(fs, args, session):
    return output(
        "Available commands:",
        "File operations: ls, cd, mkdir, touch, cat, rm, cp, mv, pwd, chmod, find",
        "System commands: clear, whoami, su, sudo, adduser, passwd, history",
        "Package management: apt-get, apt",
        "Text processing: echo, grep",
        "Information: date, uname, df, ps, top, man, help",
        "",
        "Use man <command> for more information on specific commands.",
    )


@command("exit")
def cmd_exit(fs, args, session):
    # Farewell only; the session keeps reading input
    return output("Exiting terminal session...")


class Terminal:
    """Front-end helper tying one Session to a storage backend."""

    def __init__(self, storage, session=None, user=None):
        self.storage = storage
        self.session = session or Session()
        # When set, this session acts as its own user even if another
        # session on the same storage switched the stored current user
        self.user = user

    def banner(self):
        return list(WELCOME_LINES)

    def prompt(self):
        if self.session.mode is Mode.LOGIN_PASSWORD:
            return "Password:"

        user = self.user or self.storage.load().current_user
        if self.session.mode is Mode.SUDO_PASSWORD:
            return f"[sudo] password for {user}:"
        return f"{user}@{HOSTNAME}:{self.session.current_path}$"

    def _claim_user(self):
        fs = self.storage.load()
        if fs.current_user != self.user and switch_user(fs, self.user):
            self.storage.save(fs)

    def submit(self, line):
        line = line.strip()
        if self.session.mode is Mode.NORMAL and line:
            self.session.history.add(line)

        if self.user is not None:
            self._claim_user()

        result = process_command(line, self.session, self.storage)
        self.session.apply(result)

        # su and logins move this session to another user
        if self.user is not None:
            self.user = self.storage.load().current_user
        return result

    def complete(self, line):
        fs = self.storage.load()
        return autocomplete(fs, line, self.session.current_path)

    @property
    def in_password_mode(self):
        return self.session.mode is not Mode.NORMAL
