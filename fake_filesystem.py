# fake_filesystem.py

# In-memory directory tree plus the user registry that together form the
# persisted snapshot. Every operation here works on absolute paths; turning
# user input into an absolute path is path_resolver's job.

import re
import time
from dataclasses import dataclass, field
from typing import Dict, Optional


FILE = "file"
DIRECTORY = "directory"

DEFAULT_FILE_PERMISSIONS = "rw-r--r--"
DEFAULT_DIR_PERMISSIONS = "rwxr-xr-x"

# Canonical nine character mode string, e.g. rwxr-xr-x
PERMISSION_PATTERN = re.compile(r"^[r-][w-][x-][r-][w-][x-][r-][w-][x-]$")


def now_ms():
    # Timestamps are milliseconds since the epoch
    return int(time.time() * 1000)


@dataclass
class Node:
    type: str
    owner: str
    permissions: str
    created: int
    modified: int
    content: Optional[str] = None
    children: Optional[Dict[str, "Node"]] = None

    @property
    def is_dir(self):
        return self.type == DIRECTORY

    @property
    def is_file(self):
        return self.type == FILE

    def to_dict(self):
        data = {
            "type": self.type,
            "owner": self.owner,
            "permissions": self.permissions,
            "created": self.created,
            "modified": self.modified,
        }
        if self.is_file:
            data["content"] = self.content or ""
        else:
            data["children"] = {
                name: child.to_dict() for name, child in self.children.items()
            }
        return data

    @classmethod
    def from_dict(cls, data):
        kind = data["type"]
        if kind not in (FILE, DIRECTORY):
            raise ValueError(f"unknown node type: {kind!r}")

        node = cls(
            type=kind,
            owner=data.get("owner", "root"),
            permissions=data.get(
                "permissions",
                DEFAULT_FILE_PERMISSIONS if kind == FILE else DEFAULT_DIR_PERMISSIONS,
            ),
            created=int(data.get("created", 0)),
            modified=int(data.get("modified", 0)),
        )
        if kind == FILE:
            node.content = str(data.get("content") or "")
        else:
            node.children = {
                name: cls.from_dict(child)
                for name, child in (data.get("children") or {}).items()
            }
        return node


@dataclass
class UserRecord:
    password: str
    is_admin: bool = False
    home_dir: str = ""

    def to_dict(self):
        return {"password": self.password, "isAdmin": self.is_admin, "homeDir": self.home_dir}

    @classmethod
    def from_dict(cls, data):
        return cls(
            password=data["password"],
            is_admin=bool(data.get("isAdmin", False)),
            home_dir=data["homeDir"],
        )


@dataclass
class FileSystem:
    root: Node
    current_user: str
    users: Dict[str, UserRecord] = field(default_factory=dict)

    def to_dict(self):
        return {
            "root": self.root.to_dict(),
            "currentUser": self.current_user,
            "users": {name: user.to_dict() for name, user in self.users.items()},
        }

    @classmethod
    def from_dict(cls, data):
        root = Node.from_dict(data["root"])
        if not root.is_dir:
            raise ValueError("snapshot root must be a directory")

        fs = cls(
            root=root,
            current_user=data["currentUser"],
            users={name: UserRecord.from_dict(u) for name, u in data["users"].items()},
        )
        if fs.current_user not in fs.users:
            raise ValueError(f"current user {fs.current_user!r} is not registered")
        return fs


# Node constructors

def make_file(owner, content="", permissions=DEFAULT_FILE_PERMISSIONS, stamp=None):
    stamp = now_ms() if stamp is None else stamp
    return Node(FILE, owner, permissions, stamp, stamp, content=content)


def make_dir(owner, children=None, permissions=DEFAULT_DIR_PERMISSIONS, stamp=None):
    stamp = now_ms() if stamp is None else stamp
    return Node(DIRECTORY, owner, permissions, stamp, stamp, children=dict(children or {}))


def bashrc_for(username):
    return (
        f"# ~/.bashrc for {username}\n"
        "# User specific settings\n"
        'PS1="\\[\\033[01;32m\\]\\u@\\h:\\w\\$\\[\\033[00m\\] "'
    )


def default_filesystem():
    """Build the first-run snapshot: users ubuntu and root plus a small skeleton."""
    stamp = now_ms()

    def f(content, owner="root", permissions=DEFAULT_FILE_PERMISSIONS):
        return make_file(owner, content, permissions, stamp)

    def d(children=None, owner="root", permissions=DEFAULT_DIR_PERMISSIONS):
        return make_dir(owner, children, permissions, stamp)

    ubuntu_home = d({
        "welcome.txt": f(
            'Welcome to Ubuntu Terminal!\nType "help" to see available commands.',
            owner="ubuntu",
        ),
        ".bashrc": f(
            "# ~/.bashrc: executed by bash for non-login shells\n"
            "# If not running interactively, don't do anything\n"
            '[[ "$-" != *i* ]] && return\n'
            "# Don't put duplicate lines in the history\n"
            "HISTCONTROL=ignoreboth",
            owner="ubuntu",
        ),
    }, owner="ubuntu")

    root = d({
        "home": d({"ubuntu": ubuntu_home}),
        "etc": d({
            "passwd": f(
                "root:x:0:0:root:/root:/bin/bash\n"
                "ubuntu:x:1000:1000:Ubuntu:/home/ubuntu:/bin/bash"
            ),
            "hostname": f("ubuntu-terminal"),
            "hosts": f("127.0.0.1 localhost\n127.0.1.1 ubuntu-terminal"),
        }),
        "bin": d(),
        "usr": d({"bin": d()}),
        "var": d({
            "log": d({
                "syslog": f(
                    "Apr 16 00:00:00 ubuntu-terminal systemd[1]: Started User Manager for UID 1000.\n"
                    "Apr 16 00:00:01 ubuntu-terminal systemd[1]: Starting System Logger...\n"
                    "Apr 16 00:00:01 ubuntu-terminal systemd[1]: Started System Logger."
                ),
            }),
        }),
        "tmp": d(permissions="rwxrwxrwx"),
        "root": d({
            ".bashrc": f(
                "# ~/.bashrc: executed by bash for non-login shells\n"
                "# Root user specific settings\n"
                'PS1="\\[\\033[01;31m\\]\\u@\\h:\\w\\$\\[\\033[00m\\] "',
                permissions="rw-------",
            ),
        }, permissions="rwx------"),
    })

    return FileSystem(
        root=root,
        current_user="ubuntu",
        users={
            "root": UserRecord(password="toor", is_admin=True, home_dir="/root"),
            "ubuntu": UserRecord(password="ubuntu", is_admin=False, home_dir="/home/ubuntu"),
        },
    )


# Path helpers

def split_path(path):
    """Split an absolute path into (parent_path, base_name)."""
    path = path.rstrip("/") or "/"
    idx = path.rfind("/")
    parent = "/" if idx <= 0 else path[:idx]
    return parent, path[idx + 1:]


def join_path(parent, name):
    return f"{parent.rstrip('/')}/{name}"


# Tree operations

def get_node(fs, path):
    node = fs.root
    for segment in (s for s in path.split("/") if s):
        if not node.is_dir or segment not in node.children:
            return None
        node = node.children[segment]
    return node


def _parent_dir(fs, path):
    parent_path, name = split_path(path)
    if not name:
        return None, None
    parent = get_node(fs, parent_path)
    if parent is None or not parent.is_dir:
        return None, None
    return parent, name


def create_node(fs, path, kind, content=""):
    parent, name = _parent_dir(fs, path)
    if parent is None or name in parent.children:
        return False

    if kind == FILE:
        parent.children[name] = make_file(fs.current_user, content)
    else:
        parent.children[name] = make_dir(fs.current_user)
    return True


def delete_node(fs, path):
    # Recursive: a directory goes away together with its subtree
    parent, name = _parent_dir(fs, path)
    if parent is None or name not in parent.children:
        return False

    del parent.children[name]
    return True


def clone_node(node, stamp=None):
    stamp = now_ms() if stamp is None else stamp
    clone = Node(
        type=node.type,
        owner=node.owner,
        permissions=node.permissions,
        created=node.created,
        modified=stamp,
    )
    if node.is_file:
        clone.content = node.content
    else:
        clone.children = {
            name: clone_node(child, stamp) for name, child in node.children.items()
        }
    return clone


def copy_node(fs, src, dst):
    source = get_node(fs, src)
    if source is None:
        return False

    target = get_node(fs, dst)
    if target is not None and target.is_dir:
        # Copy into the directory under the source's own name
        dest_dir_path, dest_name = dst, split_path(src)[1]
    else:
        dest_dir_path, dest_name = split_path(dst)

    if not dest_name:
        return False

    dest_dir = get_node(fs, dest_dir_path)
    if dest_dir is None or not dest_dir.is_dir:
        return False

    dest_dir.children[dest_name] = clone_node(source)
    return True


def move_node(fs, src, dst):
    # Not atomic: if the delete fails the copy stays behind
    if copy_node(fs, src, dst):
        return delete_node(fs, src)
    return False


def change_permissions(fs, path, mode):
    node = get_node(fs, path)
    if node is None:
        return False

    # Canonical rwx strings are refused, anything else is stored as given
    if PERMISSION_PATTERN.match(mode):
        return False

    node.permissions = mode
    node.modified = now_ms()
    return True


def walk(node, path="/"):
    """Yield (path, node) for every descendant of node, depth first."""
    if not node.is_dir:
        return
    for name, child in node.children.items():
        child_path = join_path(path, name)
        yield child_path, child
        yield from walk(child, child_path)
