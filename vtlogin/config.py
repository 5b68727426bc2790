import os
import shlex
from typing import List

from vtlogin.params import CONFIG_PATH, LOG_DIR, CARRIER_TIMEOUT
from vtlogin.misc import str2bool_plus, print_debug, print_warning


class SessionConfig:
    "Read-only session settings"

    # config file key: (attribute, converter)
    keys = {
        "TTY_NUMBER": ("tty", int),
        "SWITCH_TTY": ("switch_tty", str2bool_plus),
        "NO_XDG_FALLBACK": ("no_xdg_fallback", str2bool_plus),
        "DBUS_LAUNCH": ("dbus_launch", str2bool_plus),
        "ALWAYS_DBUS_LAUNCH": ("always_dbus_launch", str2bool_plus),
        "XINITRC_LAUNCH": ("xinitrc_launch", str2bool_plus),
        "DEFAULT_XAUTHORITY": ("default_xauthority", str2bool_plus),
        "LANG": ("lang", str),
        "XORG_ARGS": ("xorg_args", shlex.split),
        "CARRIER_TIMEOUT": ("carrier_timeout", float),
        "SESSION_ERROR_LOGGING": ("session_error_logging", str),
        "SESSION_ERROR_LOGFILE": ("session_error_logfile", str),
        "LOGGING_FILE": ("logging_file", str),
        "SYSLOG": ("syslog", str2bool_plus),
    }

    session_error_logging_modes = ("disabled", "default", "appending")

    def __init__(
        self,
        tty: int = 0,
        switch_tty: bool = True,
        no_xdg_fallback: bool = False,
        dbus_launch: bool = True,
        always_dbus_launch: bool = False,
        xinitrc_launch: bool = False,
        default_xauthority: bool = False,
        lang: str = "en_US.UTF-8",
        xorg_args: List[str] = None,
        carrier_timeout: float = CARRIER_TIMEOUT,
        session_error_logging: str = "disabled",
        session_error_logfile: str = "",
        logging_file: str = "",
        syslog: bool = False,
    ):
        if tty < 0:
            raise ValueError(f"TTY number can not be negative, got {tty}")
        if session_error_logging not in self.session_error_logging_modes:
            raise ValueError(
                f'SESSION_ERROR_LOGGING can be one of {", ".join(self.session_error_logging_modes)}, got "{session_error_logging}"'
            )
        self.tty = tty
        self.switch_tty = switch_tty
        self.no_xdg_fallback = no_xdg_fallback
        self.dbus_launch = dbus_launch
        self.always_dbus_launch = always_dbus_launch
        self.xinitrc_launch = xinitrc_launch
        self.default_xauthority = default_xauthority
        self.lang = lang
        self.xorg_args = list(xorg_args or [])
        self.carrier_timeout = carrier_timeout
        self.session_error_logging = session_error_logging
        self.session_error_logfile = session_error_logfile or os.path.join(
            LOG_DIR, f"session-errors.{self.tty_name}.log"
        )
        self.logging_file = logging_file
        self.syslog = syslog

    @property
    def tty_name(self) -> str:
        "Terminal identifier for accounting"
        return f"tty{self.tty}" if self.tty > 0 else "console"

    def replace(self, **changes) -> "SessionConfig":
        "Returns new config with given attributes changed"
        values = {attr: getattr(self, attr) for attr, _ in self.keys.values()}
        if "session_error_logfile" not in changes and "tty" in changes:
            # derived from tty, let it follow
            values["session_error_logfile"] = ""
        values.update(changes)
        return SessionConfig(**values)

    def __str__(self):
        return str({attr: getattr(self, attr) for attr, _ in self.keys.values()})


def parse_config(data: str, origin: str = "config") -> dict:
    "Takes KEY=VALUE text, returns dict of converted SessionConfig arguments"
    values = {}
    for lineno, line in enumerate(data.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise ValueError(f"{origin}:{lineno}: expected KEY=VALUE, got: {line}")
        key, value = line.split("=", maxsplit=1)
        key = key.strip()
        if key.startswith("export "):
            key = key.removeprefix("export ").strip()
        if key not in SessionConfig.keys:
            print_warning(f'{origin}:{lineno}: unknown key "{key}", ignoring')
            continue
        attr, converter = SessionConfig.keys[key]
        try:
            # unquote shell-style, drop trailing comments
            value = " ".join(shlex.split(value, comments=True))
            values[attr] = converter(value)
        except ValueError as caught_exception:
            raise ValueError(
                f"{origin}:{lineno}: invalid value for {key}: {caught_exception}"
            ) from caught_exception
    return values


def load_config(path: str = CONFIG_PATH) -> SessionConfig:
    "Reads config file, returns SessionConfig (defaults if file is absent)"
    if not os.path.isfile(path):
        print_debug(f"config {path} not found, using defaults")
        return SessionConfig()
    with open(path, "r", encoding="UTF-8") as config_file:
        values = parse_config(config_file.read(), origin=path)
    print_debug("config values", values)
    return SessionConfig(**values)
