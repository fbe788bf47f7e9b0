# command_history.py

# Per-session command history and Tab completion used by the front-ends.

from fake_filesystem import get_node

# Command names offered by Tab completion
AVAILABLE_COMMANDS = [
    "ls", "cd", "pwd", "mkdir", "touch", "cat", "rm", "echo", "clear",
    "sudo", "su", "whoami", "adduser", "passwd", "apt", "apt-get",
    "grep", "date", "uname", "df", "ps", "top", "man", "cp", "mv",
    "chmod", "find", "history", "help", "exit",
]

# Commands whose single argument is completed against the current directory
PATH_COMMANDS = ["cd", "ls", "cat", "rm", "mkdir", "touch", "cp", "mv"]


class CommandHistory:
    """Ordered list of submitted lines plus an up/down cursor.

    The cursor sits one past the last entry after every add, which is the
    "fresh prompt" position.
    """

    def __init__(self):
        self.commands = []
        self.position = 0

    def __len__(self):
        return len(self.commands)

    def add(self, command):
        # Skip blanks and repeats of the previous entry
        if command.strip() and (not self.commands or self.commands[-1] != command):
            self.commands.append(command)
        self.position = len(self.commands)

    def previous(self):
        if not self.commands:
            return ""
        if self.position > 0:
            self.position -= 1
        return self.commands[self.position]

    def next(self):
        if self.position < len(self.commands) - 1:
            self.position += 1
            return self.commands[self.position]
        self.position = len(self.commands)
        return ""


def autocomplete(fs, line, current_path):
    """Return full-line completions for line, or [] when nothing applies."""
    if not line.strip():
        return []

    args = line.split()

    # First word: complete command names
    if len(args) == 1:
        return [cmd for cmd in AVAILABLE_COMMANDS if cmd.startswith(args[0])]

    # Second word of a path command: complete names in the current directory
    if args[0] in PATH_COMMANDS and len(args) == 2:
        node = get_node(fs, current_path)
        if node is None or not node.is_dir:
            return []

        prefix = args[1]
        options = []
        for name, child in node.children.items():
            if name.startswith(prefix):
                suffix = "/" if child.is_dir else ""
                options.append(f"{args[0]} {name}{suffix}")
        return options

    return []
