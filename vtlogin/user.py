import os
import pwd
import shlex
from enum import Enum
from typing import Dict, List, Optional

from xdg.DesktopEntry import DesktopEntry
from xdg.util import which

from vtlogin.params import DEFAULT_SHELL
from vtlogin.misc import print_debug


class UserIdentity:
    "Resolved target user with a mutable environment mapping"

    def __init__(
        self,
        username: str,
        uid: int,
        gid: int,
        homedir: str,
        shell: str = "",
        env: Optional[Dict[str, str]] = None,
    ):
        self.username = username
        self.uid = uid
        self.gid = gid
        self.homedir = homedir
        self.shell = shell
        self.env = dict(env or {})

    @classmethod
    def from_name(cls, username: str) -> "UserIdentity":
        "Looks user up in passwd database, raises KeyError if not found"
        entry = pwd.getpwnam(username)
        return cls(
            username=entry.pw_name,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
            homedir=entry.pw_dir,
            shell=entry.pw_shell,
        )

    def get_shell(self) -> str:
        "Returns user's shell or default"
        return self.shell or DEFAULT_SHELL

    def getenv(self, key: str, default: str = "") -> str:
        return self.env.get(key, default)

    def setenv(self, key: str, value: str):
        self.env[key] = value

    def setenv_if_empty(self, key: str, value: str):
        "Sets key only if it is absent or empty"
        if not self.env.get(key):
            self.env[key] = value

    def environ(self) -> Dict[str, str]:
        "Returns a copy of the environment"
        return dict(self.env)

    def __str__(self):
        return f"{self.username} ({self.uid}:{self.gid}, {self.homedir})"


class Family(Enum):
    "Display technology of a session"

    WAYLAND = "wayland"
    XORG = "x11"

    @property
    def session_type(self) -> str:
        "Value for XDG_SESSION_TYPE"
        return self.value

    @property
    def label(self) -> str:
        return {"wayland": "Wayland", "x11": "Xorg"}[self.value]

    @classmethod
    def from_string(cls, string: str) -> "Family":
        string = string.lower()
        if string in ("xorg", "x", "x11"):
            return cls.XORG
        if string == "wayland":
            return cls.WAYLAND
        raise ValueError(f'Expected "wayland" or "x11" family, got "{string}"')


class DesktopSelection:
    """
    Chosen desktop: family, command line, optional login shell override.
    May wrap a child selection (i.e. a compositor started through a script),
    in which case the child's command is appended to this one.
    'raw' selections are never run through a startup wrapper.
    """

    def __init__(
        self,
        family: Family,
        exec: str,
        name: str = "",
        login_shell: str = "",
        child: Optional["DesktopSelection"] = None,
        raw: bool = False,
        desktop_names: Optional[List[str]] = None,
    ):
        if not isinstance(family, Family):
            raise TypeError(f'"family" should be a Family, got: {type(family)}')
        self.family = family
        self.exec = exec
        self.name = name
        self.login_shell = login_shell
        self.child = child
        self.raw = raw
        self.desktop_names = tuple(desktop_names or ())

    def get_str_exec(self):
        "Returns (command line, startup prefix allowed)"
        if self.child is not None:
            return (
                f"{self.exec} {self.child.exec}".strip(),
                not (self.raw or self.child.raw),
            )
        return self.exec, not self.raw

    def get_login_shell(self) -> str:
        return self.login_shell or DEFAULT_SHELL

    def get_name(self) -> str:
        "Own name, or child's if own is empty"
        if self.name:
            return self.name
        if self.child is not None:
            return self.child.name
        return ""

    def __str__(self):
        return f"{self.family.label} session {self.get_name() or self.exec!r}"

    @classmethod
    def from_entry(
        cls, path: str, family: Optional[Family] = None, **kwargs
    ) -> "DesktopSelection":
        """
        Builds selection from a given session desktop entry file.
        Family is guessed from the parent directory ("wayland-sessions" or "xsessions")
        if not given.
        """
        try:
            entry = DesktopEntry(path)
        except Exception as caught_exception:
            raise RuntimeError(
                f'Failed to parse entry "{path}"!'
            ) from caught_exception
        print_debug("entry", entry)

        if entry.getHidden():
            raise RuntimeError(f"Entry {path} is hidden")
        if entry.hasKey("TryExec") and not entry.findTryExec():
            raise RuntimeError(f"Entry {path} is discarded by TryExec")
        entry_exec = entry.getExec()
        if not entry_exec:
            raise RuntimeError(f"Entry {path} does not have Exec")
        if not which(shlex.split(entry_exec)[0]):
            raise RuntimeError(
                f"Entry {path} points to missing executable {shlex.split(entry_exec)[0]}"
            )

        if family is None:
            parent = os.path.basename(os.path.dirname(os.path.abspath(path)))
            if parent == "wayland-sessions":
                family = Family.WAYLAND
            elif parent == "xsessions":
                family = Family.XORG
            else:
                raise ValueError(
                    f"Can not guess session family of {path}, specify it explicitly"
                )

        desktop_names = entry.get("DesktopNames", list=True)
        return cls(
            family=family,
            exec=entry_exec,
            name=entry.getName(),
            desktop_names=[name for name in desktop_names if name],
            **kwargs,
        )
