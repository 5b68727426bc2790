"""
Session lifecycle: environment, carrier, session process, accounting, teardown.

States go Init -> EnvReady -> CarrierUp -> Launched -> Running -> Ending -> Done,
a failed start jumps to Ending. Interruption is tracked separately by InterruptFlag.
Teardown runs every step regardless of failures in previous ones,
errors are escalated only after teardown is complete.
"""

import os
from typing import Optional

from vtlogin.config import SessionConfig
from vtlogin.carrier import Carrier, select_carrier
from vtlogin.errors import StartupError, RuntimeExitError, CarrierExitError
from vtlogin.interrupt import INTERRUPTED, InterruptFlag, InterruptWatcher
from vtlogin.launcher import DbusLauncher, prepare_gui_command
from vtlogin.misc import print_debug, print_error, print_normal, print_ok, print_warning
from vtlogin.user import DesktopSelection, UserIdentity
from vtlogin.utmp import AccountingEntry, AccountingLedger


class State:
    "Session controller states"

    init = "init"
    env_ready = "env_ready"
    carrier_up = "carrier_up"
    launched = "launched"
    running = "running"
    ending = "ending"
    done = "done"


def define_environment(
    identity: UserIdentity, desktop: DesktopSelection, config: SessionConfig
):
    "Prepares environment of user's session"
    fallback = not config.no_xdg_fallback

    identity.setenv("HOME", identity.homedir)
    identity.setenv("PWD", identity.homedir)
    identity.setenv("USER", identity.username)
    identity.setenv("LOGNAME", identity.username)
    identity.setenv("UID", str(identity.uid))
    if fallback:
        identity.setenv_if_empty(
            "XDG_CONFIG_HOME", os.path.join(identity.homedir, ".config")
        )
        identity.setenv_if_empty("XDG_RUNTIME_DIR", f"/run/user/{identity.uid}")
        identity.setenv_if_empty("XDG_SEAT", "seat0")
        identity.setenv("XDG_SESSION_CLASS", "user")
        if config.tty > 0:
            identity.setenv_if_empty("XDG_VTNR", str(config.tty))
    identity.setenv("SHELL", identity.get_shell())
    identity.setenv_if_empty("LANG", config.lang)
    identity.setenv_if_empty("PATH", os.getenv("PATH", ""))

    if fallback:
        desktop_name = desktop.get_name()
        if desktop_name:
            identity.setenv("DESKTOP_SESSION", desktop_name)
            identity.setenv("XDG_SESSION_DESKTOP", desktop_name)
        if desktop.desktop_names:
            identity.setenv("XDG_CURRENT_DESKTOP", ":".join(desktop.desktop_names))

    print_normal("Defined environment")

    if fallback:
        ensure_runtime_dir(identity)


def ensure_runtime_dir(identity: UserIdentity):
    "Creates XDG_RUNTIME_DIR owned by user if it is absent, logs failures"
    runtime_dir = identity.getenv("XDG_RUNTIME_DIR")
    if os.path.isdir(runtime_dir):
        print_debug(f"runtime dir {runtime_dir} already exists")
        return
    try:
        os.makedirs(runtime_dir, mode=0o700)
        os.chown(runtime_dir, identity.uid, identity.gid)
    except OSError as caught_exception:
        print_warning(f"Could not create runtime dir: {caught_exception}")
        return
    print_normal(f"Created runtime dir {runtime_dir}")


def open_session_error_log(config: SessionConfig):
    "Returns opened session error log file or None, logs failures"
    if config.session_error_logging == "disabled":
        return None
    path = config.session_error_logfile
    mode = "a" if config.session_error_logging == "appending" else "w"
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        return open(path, mode, encoding="UTF-8")
    except OSError as caught_exception:
        print_warning(f"Could not open session error log: {caught_exception}")
        return None


class SessionController:
    "Runs one session from environment definition to teardown"

    def __init__(
        self,
        identity: UserIdentity,
        desktop: DesktopSelection,
        config: SessionConfig,
        carrier: Optional[Carrier] = None,
        ledger: Optional[AccountingLedger] = None,
        interrupted: InterruptFlag = INTERRUPTED,
    ):
        self.identity = identity
        self.desktop = desktop
        self.config = config
        self.carrier = (
            carrier if carrier is not None else select_carrier(identity, desktop, config)
        )
        self.ledger = ledger if ledger is not None else AccountingLedger()
        self.interrupted = interrupted
        self.watcher = InterruptWatcher(interrupted)
        self.state = State.init
        self.bus: Optional[DbusLauncher] = None
        self.process = None
        self.str_exec = ""
        self.entry: Optional[AccountingEntry] = None
        self.error_log = None
        self.exit_error: Optional[RuntimeExitError] = None
        self.carrier_error: Optional[CarrierExitError] = None

    @property
    def label(self) -> str:
        return self.desktop.family.label

    def run(self):
        "Blocks until session ends, raises SessionError subclasses after teardown"
        define_environment(self.identity, self.desktop, self.config)
        self.state = State.env_ready

        try:
            try:
                self.launch()
            except StartupError as caught_exception:
                self.state = State.ending
                print_error(caught_exception)
                raise StartupError(
                    f"{self.label} session failed to start, please check logs"
                ) from caught_exception
            self.wait()
        finally:
            self.teardown()

        self.escalate()

    def launch(self):
        "Starts carrier and session process, adds accounting entry"
        print_normal(f"Starting {self.desktop} for {self.identity.username}")
        self.carrier.start()
        self.state = State.carrier_up

        if not self.config.no_xdg_fallback:
            self.identity.setenv("XDG_SESSION_TYPE", self.carrier.session_type)

        cmd, self.str_exec, wants_bus = prepare_gui_command(
            self.identity, self.desktop, self.config
        )
        if wants_bus:
            self.bus = DbusLauncher(self.identity)

        self.watcher.arm()
        self.error_log = open_session_error_log(self.config)

        # bus address has to be in environment before the process starts
        if self.bus is not None:
            self.bus.launch()

        print_normal(f"Starting {self.str_exec}")
        self.process = cmd.start(stderr=self.error_log)
        self.watcher.watch(self.process)
        self.state = State.launched

        pid = self.carrier.pid
        if pid <= 0:
            pid = self.process.pid
        self.entry = self.ledger.add(
            self.identity.username,
            pid,
            self.config.tty_name,
            self.identity.getenv("DISPLAY"),
        )
        self.state = State.running

    def wait(self):
        "Waits for session process to exit, records exit error"
        returncode = self.process.wait()
        self.state = State.ending
        print_debug(f"session process exited with {returncode}")
        if returncode != 0:
            self.exit_error = RuntimeExitError(
                f'"{self.str_exec}" finished with code {returncode}'
            )

    def stop_bus(self):
        if self.bus is not None:
            self.bus.stop()

    def stop_carrier(self):
        self.carrier_error = self.carrier.stop()

    def remove_entry(self):
        self.ledger.remove(self.entry)
        self.entry = None

    def close_error_log(self):
        if self.error_log is not None:
            self.error_log.close()
            self.error_log = None

    def teardown(self):
        "Runs all teardown steps, each failure is logged and skipped"
        steps = [
            ("interrupt watcher", self.watcher.disarm),
            ("session bus", self.stop_bus),
            ("carrier", self.stop_carrier),
            ("accounting entry", self.remove_entry),
            ("session error log", self.close_error_log),
            ("signal handlers", self.watcher.restore),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as caught_exception:
                print_warning(f"Teardown of {name} failed: {caught_exception}")
        self.state = State.done

    def escalate(self):
        "Raises user-facing error for failed, not interrupted session"
        if self.interrupted.is_set():
            if self.exit_error or self.carrier_error:
                print_debug(
                    "suppressed after interrupt:", self.exit_error, self.carrier_error
                )
            print_ok(f"{self.label} session was interrupted")
            return

        errors = []
        if self.exit_error is not None:
            print_error(
                f"{self.exit_error}. For more details see SESSION_ERROR_LOGGING in configuration."
            )
            errors.append(
                RuntimeExitError(
                    f"{self.label} session finished with error, please check logs"
                )
            )
        if self.carrier_error is not None:
            print_error(f"{self.label} finished with error: {self.carrier_error}")
            errors.append(
                CarrierExitError(f"{self.label} finished with error, please check logs")
            )
        if errors:
            raise errors[0]
        print_ok(f"{self.label} session finished")


def start_session(
    identity: UserIdentity, desktop: DesktopSelection, config: SessionConfig, **how
):
    "Runs session to completion, 'how' is passed to SessionController"
    SessionController(identity, desktop, config, **how).run()
