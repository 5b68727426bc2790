import os
import shlex
import signal
import subprocess
from typing import List, Tuple

from xdg.util import which

from vtlogin.config import SessionConfig
from vtlogin.errors import StartupError
from vtlogin.misc import print_debug, print_normal, print_warning
from vtlogin.user import DesktopSelection, Family, UserIdentity


class UserCommand:
    """
    Not yet started command that runs as the given user,
    in user's home directory, with user's environment.
    Environment is snapshotted when the command is started.
    """

    def __init__(self, identity: UserIdentity, args: List[str]):
        self.identity = identity
        self.args = list(args)

    def __str__(self):
        return shlex.join(self.args)

    def _popen_kwargs(self) -> dict:
        "Credentials, cwd and env for subprocess"
        kwargs = {"cwd": self.identity.homedir, "env": self.identity.environ()}
        if os.geteuid() == 0:
            kwargs["user"] = self.identity.uid
            kwargs["group"] = self.identity.gid
            kwargs["extra_groups"] = os.getgrouplist(
                self.identity.username, self.identity.gid
            )
        elif self.identity.uid != os.geteuid():
            # will fail with PermissionError, but let the system say so
            kwargs["user"] = self.identity.uid
            kwargs["group"] = self.identity.gid
        return kwargs

    def start(self, stderr=None) -> subprocess.Popen:
        "Spawns the command, raises StartupError on failure"
        if not self.args or not self.args[0]:
            raise StartupError("Empty session command")
        print_debug("starting", self.args)
        try:
            return subprocess.Popen(self.args, stderr=stderr, **self._popen_kwargs())
        except (OSError, ValueError, subprocess.SubprocessError) as caught_exception:
            raise StartupError(
                f'Could not start "{self}": {caught_exception}'
            ) from caught_exception

    def run(self, **how) -> subprocess.CompletedProcess:
        "Runs the command to completion, passes 'how' to subprocess.run"
        sprc = subprocess.run(self.args, **how, **self._popen_kwargs())
        print_debug(sprc)
        return sprc


def cmd_as_user(identity: UserIdentity, *args: str) -> UserCommand:
    "Builds UserCommand from args"
    return UserCommand(identity, args)


def prepare_gui_command(
    identity: UserIdentity, desktop: DesktopSelection, config: SessionConfig
) -> Tuple[UserCommand, str, bool]:
    """
    Builds session command for desktop selection.
    Returns (command, command line string, auxiliary bus requested)
    """
    str_exec, allow_startup_prefix = desktop.get_str_exec()
    shell_wrap = not allow_startup_prefix
    wants_bus = config.always_dbus_launch

    xinitrc = os.path.join(identity.homedir, ".xinitrc")
    if (
        allow_startup_prefix
        and config.xinitrc_launch
        and desktop.family is Family.XORG
        and ".xinitrc" not in str_exec
        and os.path.isfile(xinitrc)
    ):
        # startup script gets the session command as arguments
        str_exec = f"{xinitrc} {str_exec}"
        shell_wrap = True
        wants_bus = True
    elif (
        allow_startup_prefix
        and config.dbus_launch
        and desktop.family is Family.XORG
        and "dbus-launch" not in str_exec
    ):
        wants_bus = True

    if shell_wrap:
        cmd = cmd_as_user(identity, desktop.get_login_shell(), *str_exec.split())
    else:
        try:
            cmd = cmd_as_user(identity, *shlex.split(str_exec))
        except ValueError as caught_exception:
            raise StartupError(
                f'Could not parse command line "{str_exec}": {caught_exception}'
            ) from caught_exception

    print_debug("gui command", cmd.args, "wants_bus", wants_bus)
    return cmd, str_exec, wants_bus


class DbusLauncher:
    "Auxiliary session bus started via dbus-launch before the session process"

    def __init__(self, identity: UserIdentity):
        self.identity = identity
        self.pid = 0

    def launch(self):
        "Starts bus as user, exports its address to user's environment. Logs failures."
        dbus_launch = which("dbus-launch")
        if not dbus_launch:
            print_warning('"dbus-launch" is not in PATH, skipping session bus launch')
            return
        try:
            sprc = cmd_as_user(self.identity, dbus_launch).run(
                text=True, capture_output=True, check=False
            )
        except OSError as caught_exception:
            print_warning(f"Could not launch session bus: {caught_exception}")
            return
        if sprc.returncode != 0:
            print_warning(
                f'"{dbus_launch}" returned {sprc.returncode}: {sprc.stderr.strip()}'
            )
            return

        try:
            bus_vars = parse_dbus_launch(sprc.stdout)
        except ValueError as caught_exception:
            print_warning(f"Could not parse dbus-launch output: {caught_exception}")
            return
        for var, value in bus_vars.items():
            if var == "DBUS_SESSION_BUS_PID":
                self.pid = int(value)
            self.identity.setenv(var, value)
        print_normal(f"Launched session bus (PID {self.pid})")

    def stop(self):
        "Terminates the bus, if launched"
        if self.pid <= 0:
            return
        try:
            os.kill(self.pid, signal.SIGTERM)
        except ProcessLookupError:
            print_debug(f"session bus {self.pid} already gone")
        self.pid = 0


def parse_dbus_launch(output: str) -> dict:
    "Takes dbus-launch output, returns dict of DBUS_SESSION_BUS_* vars"
    values = {}
    for line in output.splitlines():
        line = line.strip().removesuffix(";")
        if "=" not in line:
            continue
        var, value = line.split("=", maxsplit=1)
        var = var.removeprefix("export ").strip()
        if var not in ("DBUS_SESSION_BUS_ADDRESS", "DBUS_SESSION_BUS_PID"):
            continue
        # sh-syntax quotes values
        value = value.strip("'\"")
        if var == "DBUS_SESSION_BUS_PID" and not value.isnumeric():
            raise ValueError(f'Malformed DBUS_SESSION_BUS_PID: "{value}"')
        values[var] = value
    return values
