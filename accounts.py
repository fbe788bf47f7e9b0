# accounts.py

# User registry operations on a FileSystem snapshot. Passwords are stored
# and compared in plain text.

import logging
from contextlib import contextmanager

from fake_filesystem import (
    DIRECTORY,
    UserRecord,
    bashrc_for,
    create_node,
    get_node,
    make_file,
)

logger = logging.getLogger(__name__)

ROOT_USER = "root"


def authenticate(fs, username, password):
    user = fs.users.get(username)
    if user is None:
        return False
    return user.password == password


def switch_user(fs, username):
    if username not in fs.users:
        return False
    fs.current_user = username
    logger.debug("current user is now %s", username)
    return True


def add_user(fs, username, password, is_admin=False):
    """Register a user, creating /home/<username> with a default .bashrc.

    An existing directory at the home path is reused. If the home directory
    cannot be created the user is not registered.
    """
    if username in fs.users:
        return False

    home = f"/home/{username}"
    existing = get_node(fs, home)
    if existing is None:
        if not create_node(fs, home, DIRECTORY):
            logger.info("cannot create home directory %s", home)
            return False
        existing = get_node(fs, home)
    elif not existing.is_dir:
        return False

    fs.users[username] = UserRecord(password=password, is_admin=is_admin, home_dir=home)
    existing.children[".bashrc"] = make_file(username, bashrc_for(username))
    return True


def is_root(fs):
    return fs.current_user == ROOT_USER


@contextmanager
def elevated(fs, username=ROOT_USER):
    """Run the with-block as another user, restoring the original user on exit."""
    original = fs.current_user
    fs.current_user = username
    try:
        yield fs
    finally:
        fs.current_user = original
