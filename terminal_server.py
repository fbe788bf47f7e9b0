# =========================
# Ubuntu Terminal Simulator
# =========================
# Serves the simulated shell over SSH using Paramiko, or on the local
# console with --local. Logins are checked against the simulated user
# registry, every session gets its own history and working directory,
# and the command transcript of each SSH session is logged as JSON.
#
# All sessions share one snapshot file and the last write wins. Each SSH
# session claims its own user in the snapshot before every command.
# =========================

import argparse
import codecs
import getpass
import json
import logging
import os
import socket
import threading
import time

import paramiko

from accounts import authenticate
from command_processor import Terminal
from path_resolver import home_dir
from snapshot_store import JsonFileStorage

logger = logging.getLogger(__name__)

HOST = "0.0.0.0"
PORT = 2222
HOST_KEY_PATH = "ssh_host_rsa.key"

# Session transcripts, one JSON object per line
LOG_FILE = "logs/terminal.log"

# Persisted snapshot of the simulated machine
STATE_FILE = "state/filesystem.json"

CLEAR_SCREEN = "\x1b[2J\x1b[H"


def load_or_create_host_key(path):
    # Load an existing SSH host key if present.
    # Otherwise, generate and store a new one.

    if os.path.exists(path):
        return paramiko.RSAKey(filename=path)

    key = paramiko.RSAKey.generate(2048)
    key.write_private_key_file(path)
    logger.info("generated new host key at %s", path)
    return key


# Writes one session transcript as JSON
def log_event(data, log_file=LOG_FILE):
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    with open(log_file, "a") as f:
        f.write(json.dumps(data) + "\n")


# SSH Server Interface

# Authentication and channel setup. Passwords are checked against the users
# registered in the simulated machine.
class TerminalSSH(paramiko.ServerInterface):
    def __init__(self, addr, storage):
        self.addr = addr
        self.storage = storage
        self.event = threading.Event()
        self.username = None

    def check_auth_password(self, username, password):
        fs = self.storage.load()
        if authenticate(fs, username, password):
            self.username = username
            return paramiko.AUTH_SUCCESSFUL
        logger.info("rejected login for %s from %s", username, self.addr[0])
        return paramiko.AUTH_FAILED

    # Only allow password authentication
    def get_allowed_auths(self, username):
        return "password"

    # Allow only session channels (no port forwarding, etc.)
    def check_channel_request(self, kind, chanid):
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_pty_request(self, channel, term, width, height, pixelwidth, pixelheight, modes):
        return True

    # Allow an interactive shell
    def check_channel_shell_request(self, channel):
        self.event.set()
        return True


class ChannelShell:
    """Line editing and rendering for a terminal over an SSH channel.

    Reads the channel one byte at a time: Enter submits, backspace edits,
    Ctrl-C drops the line, Ctrl-D disconnects, the up/down arrows walk the
    session history and Tab completes. Nothing is echoed while a password
    is being typed.
    """

    def __init__(self, chan, terminal):
        self.chan = chan
        self.terminal = terminal
        self.commands = []
        self._last = b""
        # Multi-byte characters arrive one byte per recv
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def send(self, text):
        self.chan.send(text.replace("\n", "\r\n").encode())

    def send_lines(self, lines):
        for line in lines:
            self.send(line + "\n")

    def _replace_line(self, old, new):
        self.send("\x08 \x08" * len(old) + new)
        return new

    def _complete(self, buf):
        options = self.terminal.complete(buf)
        if len(options) == 1:
            return self._replace_line(buf, options[0])
        if options:
            self.send("\n" + "  ".join(options) + "\n" + self.terminal.prompt() + " " + buf)
        return buf

    def read_line(self):
        """Return the next submitted line, or None once the client is gone."""
        history = self.terminal.session.history
        hidden = self.terminal.in_password_mode
        buf = ""

        while True:
            ch = self.chan.recv(1)
            if not ch:
                return None

            last, self._last = self._last, ch

            if ch == b"\n" and last == b"\r":
                continue

            if ch in (b"\r", b"\n"):
                self.send("\n")
                return buf

            if ch in (b"\x7f", b"\x08"):
                if buf:
                    buf = buf[:-1]
                    if not hidden:
                        self.send("\x08 \x08")
            elif ch == b"\x03":
                self.send("^C\n")
                return ""
            elif ch == b"\x04":
                return None
            elif ch == b"\x1b":
                seq = self.chan.recv(2)
                if hidden:
                    continue
                if seq == b"[A":
                    previous = history.previous()
                    if previous:
                        buf = self._replace_line(buf, previous)
                elif seq == b"[B":
                    buf = self._replace_line(buf, history.next())
            elif ch == b"\t":
                if not hidden:
                    buf = self._complete(buf)
            else:
                text = self._decoder.decode(ch)
                if text.isprintable():
                    buf += text
                    if not hidden:
                        self.send(text)

    def run(self):
        self.send_lines(self.terminal.banner())

        while True:
            self.send(self.terminal.prompt() + " ")
            hidden = self.terminal.in_password_mode

            line = self.read_line()
            if line is None:
                break

            if not hidden and line.strip():
                self.commands.append(line.strip())

            result = self.terminal.submit(line)
            if result.clear:
                self.send(CLEAR_SCREEN)
            self.send_lines(result.output)


# Handles a single SSH connection from start to finish
def handle_connection(client, addr, storage, host_key, log_file=LOG_FILE):
    # Wrap raw socket in a Paramiko SSH transport
    transport = paramiko.Transport(client)
    transport.add_server_key(host_key)

    server = TerminalSSH(addr, storage)

    # start SSH negotiation (key exchange, encryption, auth)
    try:
        transport.start_server(server=server)
    except paramiko.SSHException as e:
        logger.info("SSH negotiation with %s failed: %s", addr[0], e)
        return

    # accept SSH channel
    chan = transport.accept(20)
    if chan is None:
        transport.close()
        return

    # wait for shell request to be confirmed
    server.event.wait(10)

    # The session runs as the user who logged in, starting in their home directory
    terminal = Terminal(storage, user=server.username)
    terminal.session.current_path = home_dir(storage.load(), server.username)
    shell = ChannelShell(chan, terminal)

    started = time.time()
    try:
        shell.run()
    except (OSError, EOFError, paramiko.SSHException) as e:
        logger.info("connection from %s dropped: %s", addr[0], e)

    log_event({
        "timestamp": started,
        "source_ip": addr[0],
        "username": server.username,
        "commands": shell.commands,
    }, log_file)

    # clean up connection
    chan.close()
    transport.close()


# creates a TCP listener and spawns a thread per connection
def start_server(storage, host=HOST, port=PORT, host_key_path=HOST_KEY_PATH, log_file=LOG_FILE):
    host_key = load_or_create_host_key(host_key_path)

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    sock.listen(100)

    print(f"[+] Terminal simulator listening on {host}:{port}")

    while True:
        client, addr = sock.accept()
        threading.Thread(
            target=handle_connection,
            args=(client, addr, storage, host_key, log_file),
            daemon=True,
        ).start()


# Interactive session on stdin/stdout
def run_local(terminal):
    for line in terminal.banner():
        print(line)

    while True:
        prompt = terminal.prompt() + " "
        try:
            if terminal.in_password_mode:
                line = getpass.getpass(prompt)
            else:
                line = input(prompt)
        except (EOFError, KeyboardInterrupt):
            print()
            break

        result = terminal.submit(line)
        if result.clear:
            print(CLEAR_SCREEN, end="")
        for out in result.output:
            print(out)


def build_parser():
    parser = argparse.ArgumentParser(description="Simulated Ubuntu terminal over SSH or the local console")
    parser.add_argument("--host", default=HOST, help="address to listen on")
    parser.add_argument("--port", type=int, default=PORT, help="port to listen on")
    parser.add_argument("--host-key", default=HOST_KEY_PATH, help="RSA host key file, created if missing")
    parser.add_argument("--log-file", default=LOG_FILE, help="JSON lines session log")
    parser.add_argument("--state-file", default=STATE_FILE, help="persisted filesystem snapshot")
    parser.add_argument("--local", action="store_true", help="run one session on this console instead of serving SSH")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # The local console keeps diagnostics out of the transcript unless asked
    if args.verbose:
        level = logging.DEBUG
    elif args.local:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = JsonFileStorage(args.state_file)

    if args.local:
        run_local(Terminal(storage))
        return

    start_server(storage, args.host, args.port, args.host_key, args.log_file)


if __name__ == "__main__":
    main()
