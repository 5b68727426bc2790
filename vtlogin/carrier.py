import os
import signal
import subprocess
import time
from typing import Optional

from xdg.util import which

from vtlogin.params import X_LOCK_DIR, X_SOCKET_DIR, XORG_BIN, CARRIER_POLL_STEP
from vtlogin.config import SessionConfig
from vtlogin.errors import StartupError, CarrierExitError
from vtlogin.launcher import cmd_as_user
from vtlogin.misc import print_debug, print_normal, print_ok, print_warning, random_hex
from vtlogin.user import DesktopSelection, Family, UserIdentity


class Carrier:
    """
    Display technology underlying a session.
    start() raises StartupError, stop() is idempotent and returns
    CarrierExitError or None instead of raising.
    """

    family: Family = None

    def __init__(self, identity: UserIdentity, config: SessionConfig):
        self.identity = identity
        self.config = config

    @property
    def session_type(self) -> str:
        return self.family.session_type

    @property
    def pid(self) -> int:
        "PID of carrier process, 0 if there is none"
        return 0

    def start(self):
        pass

    def stop(self) -> Optional[CarrierExitError]:
        return None

    def __str__(self):
        return f"{self.family.label} carrier"


class WaylandCarrier(Carrier):
    "Compositor is the session process itself, nothing to carry"

    family = Family.WAYLAND

    def start(self):
        print_debug("wayland carrier start is a no-op")


class XorgCarrier(Carrier):
    "Separate X server bound to session's VT"

    family = Family.XORG

    def __init__(
        self,
        identity: UserIdentity,
        config: SessionConfig,
        xorg_bin: str = None,
        xauth_bin: str = None,
        lock_dir: str = X_LOCK_DIR,
        socket_dir: str = X_SOCKET_DIR,
    ):
        super().__init__(identity, config)
        self.xorg_bin = xorg_bin or which("Xorg") or XORG_BIN
        self.xauth_bin = xauth_bin or which("xauth") or "xauth"
        self.lock_dir = lock_dir
        self.socket_dir = socket_dir
        self.display: Optional[int] = None
        self.process: Optional[subprocess.Popen] = None
        self.stopped = False

    @property
    def pid(self) -> int:
        return self.process.pid if self.process is not None else 0

    def find_free_display(self) -> int:
        "Returns the lowest display number without lock file or socket"
        for display in range(0, 64):
            lock = os.path.join(self.lock_dir, f".X{display}-lock")
            socket = os.path.join(self.socket_dir, f"X{display}")
            if not os.path.exists(lock) and not os.path.exists(socket):
                return display
        raise StartupError("Could not find free X display")

    def xauthority_path(self) -> str:
        runtime_dir = self.identity.getenv("XDG_RUNTIME_DIR")
        if self.config.default_xauthority or not runtime_dir:
            return os.path.join(self.identity.homedir, ".Xauthority")
        return os.path.join(runtime_dir, ".vtlogin-xauth")

    def setup_xauthority(self) -> str:
        "Creates authority file with a fresh cookie for current display, returns path"
        xauthority = self.xauthority_path()
        self.identity.setenv("XAUTHORITY", xauthority)
        try:
            if not self.config.default_xauthority and os.path.exists(xauthority):
                os.remove(xauthority)
            with open(xauthority, "a", encoding="UTF-8"):
                pass
            os.chmod(xauthority, 0o600)
            os.chown(xauthority, self.identity.uid, self.identity.gid)
            sprc = cmd_as_user(
                self.identity,
                self.xauth_bin,
                "-q",
                "-f",
                xauthority,
                "add",
                f":{self.display}",
                ".",
                random_hex(32),
            ).run(text=True, capture_output=True, check=False)
        except OSError as caught_exception:
            raise StartupError(
                f"Could not prepare {xauthority}: {caught_exception}"
            ) from caught_exception
        if sprc.returncode != 0:
            raise StartupError(
                f'"{self.xauth_bin}" returned {sprc.returncode}: {sprc.stderr.strip()}'
            )
        print_debug(f"xauthority {xauthority} ready")
        return xauthority

    def start(self):
        self.display = self.find_free_display()
        self.identity.setenv("DISPLAY", f":{self.display}")
        xauthority = self.setup_xauthority()

        xorg_args = [self.xorg_bin, f":{self.display}"]
        if self.config.tty > 0:
            xorg_args.append(f"vt{self.config.tty}")
        xorg_args.extend(["-auth", xauthority, "-nolisten", "tcp"])
        xorg_args.extend(self.config.xorg_args)

        print_normal(f"Starting X server: {' '.join(xorg_args)}")
        try:
            self.process = subprocess.Popen(
                xorg_args, env=self.identity.environ(), stdin=subprocess.DEVNULL
            )
        except OSError as caught_exception:
            raise StartupError(
                f"Could not start X server: {caught_exception}"
            ) from caught_exception

        self.wait_ready()

    def wait_ready(self):
        "Waits for X socket to appear, raises StartupError on premature exit or timeout"
        socket = os.path.join(self.socket_dir, f"X{self.display}")
        timeout = self.config.carrier_timeout
        start_ts = time.time()
        while True:
            if os.path.exists(socket):
                print_ok(f"X server is ready on :{self.display}")
                return
            returncode = self.process.poll()
            if returncode is not None:
                raise StartupError(
                    f"X server exited prematurely with code {returncode}"
                )
            if time.time() - start_ts > timeout:
                raise StartupError(
                    f"Timed out waiting for X server on :{self.display} ({timeout}s)"
                )
            time.sleep(CARRIER_POLL_STEP)

    def stop(self) -> Optional[CarrierExitError]:
        if self.process is None or self.stopped:
            return None
        self.stopped = True

        if self.process.poll() is None:
            print_normal(f"Stopping X server on :{self.display}")
            try:
                self.process.send_signal(signal.SIGTERM)
                self.process.wait(timeout=self.config.carrier_timeout)
            except ProcessLookupError:
                print_debug("X server already gone")
            except subprocess.TimeoutExpired:
                print_warning(
                    f"X server did not stop in {self.config.carrier_timeout}s, killing"
                )
                self.process.kill()
                self.process.wait()

        returncode = self.process.returncode
        # terminated on our request
        if returncode in (0, -signal.SIGTERM):
            return None
        return CarrierExitError(f"X server exited with code {returncode}")


def select_carrier(
    identity: UserIdentity, desktop: DesktopSelection, config: SessionConfig
) -> Carrier:
    "Returns carrier for desktop family"
    if desktop.family is Family.XORG:
        return XorgCarrier(identity, config)
    if desktop.family is Family.WAYLAND:
        return WaylandCarrier(identity, config)
    raise ValueError(f"Unknown session family: {desktop.family}")
