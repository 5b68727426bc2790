"""
Shared pytest fixtures for vtlogin tests.

Sessions run real processes as the current user inside a temporary home,
system accounting is replaced with an in-memory store.
"""

import os
import pwd
import stat

import pytest

from vtlogin.carrier import WaylandCarrier
from vtlogin.config import SessionConfig
from vtlogin.errors import StartupError
from vtlogin.interrupt import InterruptFlag
from vtlogin.user import UserIdentity
from vtlogin.utmp import AccountingLedger


class FakeStore:
    """In-memory accounting store."""

    def __init__(self, fail_add=False, fail_remove=False):
        self.fail_add = fail_add
        self.fail_remove = fail_remove
        self.active = []
        self.history = []

    def add(self, entry):
        if self.fail_add:
            raise OSError("utmp is read-only")
        self.active.append(entry)
        self.history.append(("add", entry))

    def remove(self, entry):
        if self.fail_remove:
            raise OSError("utmp is read-only")
        self.active.remove(entry)
        self.history.append(("remove", entry))


class CountingCarrier(WaylandCarrier):
    """Wayland carrier that counts calls and can fail or report errors."""

    def __init__(self, identity, config, fail_start=False, stop_error=None):
        super().__init__(identity, config)
        self.fail_start = fail_start
        self.stop_error = stop_error
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1
        if self.fail_start:
            raise StartupError("carrier refused to start")

    def stop(self):
        self.stops += 1
        return self.stop_error


def make_script(path, body: str) -> str:
    """Writes executable shell script, returns its path."""
    with open(path, "w", encoding="UTF-8") as script:
        script.write("#!/bin/sh\n" + body + "\n")
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def identity(tmp_path):
    """Current user with temporary home and runtime dir."""
    home = tmp_path / "home"
    home.mkdir()
    entry = pwd.getpwuid(os.getuid())
    return UserIdentity(
        username=entry.pw_name,
        uid=os.getuid(),
        gid=os.getgid(),
        homedir=str(home),
        shell="/bin/sh",
        env={"XDG_RUNTIME_DIR": str(tmp_path / "run")},
    )


@pytest.fixture
def config():
    return SessionConfig(tty=2, switch_tty=False, dbus_launch=False)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def ledger(store):
    return AccountingLedger(store)


@pytest.fixture
def flag():
    return InterruptFlag()
