"""Tests for the SSH and console front-ends.

The SSH shell is driven through a fake channel, so no sockets are opened.
"""

import json

import paramiko

from command_processor import Terminal
from fake_filesystem import get_node
from snapshot_store import MemoryStorage
from terminal_server import ChannelShell, TerminalSSH, build_parser, log_event, run_local


class FakeChannel:
    def __init__(self, data):
        self.data = data
        self.sent = b""

    def recv(self, n):
        chunk, self.data = self.data[:n], self.data[n:]
        return chunk

    def send(self, data):
        self.sent += data
        return len(data)


def run_shell(terminal, data):
    chan = FakeChannel(data)
    shell = ChannelShell(chan, terminal)
    shell.run()
    return shell, chan.sent.decode()


def console_input(lines):
    # Stands in for input(); EOF once the lines run out
    lines = iter(lines)

    def read(prompt):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError
    return read


class TestChannelShell:
    """Line editing over an SSH channel."""

    def test_runs_commands_until_disconnect(self, terminal):
        shell, sent = run_shell(terminal, b"pwd\r")
        assert sent.startswith("Welcome to Ubuntu")
        assert "ubuntu@terminal:/home/ubuntu$ " in sent
        assert "/home/ubuntu\r\n" in sent
        assert shell.commands == ["pwd"]

    def test_crlf_is_one_submission(self, terminal):
        shell, _ = run_shell(terminal, b"pwd\r\nwhoami\r\n")
        assert shell.commands == ["pwd", "whoami"]
        assert terminal.session.history.commands == ["pwd", "whoami"]

    def test_backspace(self, terminal):
        shell, sent = run_shell(terminal, b"whoamx\x7fi\r")
        assert shell.commands == ["whoami"]
        assert "\x08 \x08" in sent

    def test_password_is_neither_echoed_nor_logged(self, terminal):
        shell, sent = run_shell(terminal, b"su root\rtoor\rwhoami\r")
        assert shell.commands == ["su root", "whoami"]
        assert "toor" not in sent
        assert "Welcome, root!" in sent
        assert "root@terminal:/root$ " in sent

    def test_tab_completes_single_option(self, terminal):
        shell, _ = run_shell(terminal, b"whoa\t\r")
        assert shell.commands == ["whoami"]

    def test_tab_lists_several_options(self, terminal):
        shell, sent = run_shell(terminal, b"c\t\x03")
        assert "cd  cat  clear  cp  chmod" in sent
        assert shell.commands == []

    def test_arrow_up_recalls_history(self, terminal):
        shell, _ = run_shell(terminal, b"whoami\r\x1b[A\r")
        assert shell.commands == ["whoami", "whoami"]

    def test_arrow_down_returns_to_empty_line(self, terminal):
        shell, _ = run_shell(terminal, b"pwd\r\x1b[A\x1b[Bwhoami\r")
        assert shell.commands == ["pwd", "whoami"]

    def test_exit_keeps_reading(self, terminal):
        shell, sent = run_shell(terminal, b"exit\rpwd\r")
        assert shell.commands == ["exit", "pwd"]
        assert "Exiting terminal session...\r\n" in sent
        assert sent.endswith("/home/ubuntu\r\n" + terminal.prompt() + " ")

    def test_multibyte_input_is_kept(self, terminal):
        shell, sent = run_shell(terminal, "echo h\u00e9llo > u.txt\rcat u.txt\r".encode())
        assert shell.commands == ["echo h\u00e9llo > u.txt", "cat u.txt"]
        assert "h\u00e9llo\r\n" in sent
        assert get_node(terminal.storage.load(), "/home/ubuntu/u.txt").content == "h\u00e9llo"

    def test_invalid_bytes_are_replaced(self, terminal):
        shell, _ = run_shell(terminal, b"echo a\xffb\r")
        assert shell.commands == ["echo a\ufffdb"]

    def test_ctrl_d_ends_session(self, terminal):
        shell, _ = run_shell(terminal, b"\x04pwd\r")
        assert shell.commands == []

    def test_clear_sends_escape(self, terminal):
        _, sent = run_shell(terminal, b"clear\r")
        assert "\x1b[2J\x1b[H" in sent


class TestTerminalSSH:
    """Authentication against the simulated user registry."""

    def test_registered_user(self, storage):
        server = TerminalSSH(("10.0.0.1", 5555), storage)
        assert server.check_auth_password("ubuntu", "ubuntu") == paramiko.AUTH_SUCCESSFUL
        assert server.username == "ubuntu"

    def test_wrong_password(self, storage):
        server = TerminalSSH(("10.0.0.1", 5555), storage)
        assert server.check_auth_password("root", "root") == paramiko.AUTH_FAILED
        assert server.username is None

    def test_only_session_channels(self, storage):
        server = TerminalSSH(("10.0.0.1", 5555), storage)
        assert server.check_channel_request("session", 1) == paramiko.OPEN_SUCCEEDED
        assert server.check_channel_request("direct-tcpip", 1) == paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED
        assert server.get_allowed_auths("ubuntu") == "password"


class TestLogEvent:
    """Session transcripts."""

    def test_appends_json_lines(self, tmp_path):
        log_file = str(tmp_path / "logs" / "terminal.log")
        log_event({"username": "ubuntu", "commands": ["ls"]}, log_file)
        log_event({"username": "root", "commands": []}, log_file)

        with open(log_file) as f:
            lines = [json.loads(line) for line in f]
        assert [entry["username"] for entry in lines] == ["ubuntu", "root"]


class TestLocalConsole:
    """The --local console loop."""

    def test_exit_does_not_stop_the_console(self, storage, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", console_input(["mkdir foo", "ls", "exit", "pwd"]))

        run_local(Terminal(storage))

        out = capsys.readouterr().out
        assert "welcome.txt  foo/" in out
        assert "Exiting terminal session...\n/home/ubuntu\n" in out

    def test_password_prompt_uses_getpass(self, storage, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", console_input(["su root", "whoami"]))
        monkeypatch.setattr("getpass.getpass", lambda prompt: "toor")

        run_local(Terminal(storage))

        out = capsys.readouterr().out
        assert "Welcome, root!" in out
        assert "root\n" in out


class TestParser:
    """Command line options."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.port == 2222
        assert args.state_file == "state/filesystem.json"
        assert not args.local

    def test_overrides(self):
        args = build_parser().parse_args(["--local", "--port", "2022", "--state-file", "x.json"])
        assert args.local
        assert args.port == 2022
        assert args.state_file == "x.json"


class TestConcurrentSessions:
    """SSH sessions sharing one snapshot keep their own user."""

    def test_su_in_one_session_leaves_the_other_alone(self):
        storage = MemoryStorage()
        first = Terminal(storage, user="ubuntu")
        second = Terminal(storage, user="ubuntu")

        second.submit("su root")
        second.submit("toor")

        assert first.submit("whoami").output == ["ubuntu"]
        assert first.prompt() == "ubuntu@terminal:/home/ubuntu$"
        assert second.submit("whoami").output == ["root"]
        assert second.prompt() == "root@terminal:/root$"

    def test_sudo_keeps_session_user(self):
        storage = MemoryStorage()
        terminal = Terminal(storage, user="ubuntu")

        terminal.submit("sudo touch /tmp/x")
        terminal.submit("toor")

        assert terminal.user == "ubuntu"
        assert get_node(storage.load(), "/tmp/x").owner == "root"

    def test_channel_shell_uses_session_user(self):
        storage = MemoryStorage()
        other = Terminal(storage, user="ubuntu")
        other.submit("su root")
        other.submit("toor")

        shell, sent = run_shell(Terminal(storage, user="ubuntu"), b"whoami\r")
        assert "\r\nubuntu\r\n" in sent
