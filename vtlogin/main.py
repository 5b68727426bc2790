"""
# vtlogin

Session core of a minimal VT login manager.

Takes an already authenticated user and a desktop choice, prepares session
environment, starts X server for X11 sessions, runs the session as the user,
keeps utmp/wtmp accounting, tears everything down when the session ends
or when interrupted.
"""

import argparse
import subprocess
import sys

from xdg.util import which

from vtlogin.params import BIN_NAME, CONFIG_PATH
from vtlogin.misc import (
    DebugFlag,
    LogFlag,
    dedent,
    print_debug,
    print_error,
    print_warning,
)
from vtlogin.config import SessionConfig, load_config
from vtlogin.session import start_session
from vtlogin.user import DesktopSelection, Family, UserIdentity

SEAT = "seat0"


class HelpFormatterNewlines(argparse.HelpFormatter):
    "Treats double newlines as line breaks, preserves indents after them"

    def _fill_text(self, text, width, indent):
        "For parser descriptions and epilogs"
        lines = []
        for line in text.split("\n\n"):
            p_indent = line[0 : len(line) - len(line.lstrip())]
            lines.append(
                argparse.HelpFormatter._fill_text(self, line, width, indent + p_indent)
            )
        return "\n".join(lines)


class Args:
    """
    Parses args. Stores attributes 'parser' and 'parsed'. Globally for main args, instanced for custom args.
    """

    parser = None
    parsed = argparse.Namespace()

    def __init__(self, custom_args=None, exit_on_error=True):
        "Parses sys.argv[1:] or custom_args"

        print_debug(
            f"parsing {'argv' if custom_args is None else 'custom args'}",
            sys.argv[1:] if custom_args is None else custom_args,
        )

        parser = argparse.ArgumentParser(
            prog=BIN_NAME,
            formatter_class=HelpFormatterNewlines,
            description=dedent(
                """
                Starts graphical session for an authenticated user.\n
                \n
                Session is given either as a desktop entry file
                or as a command line with explicit family.
                """
            ),
            epilog=dedent(
                f"""
                Configuration is read from "{CONFIG_PATH}" unless -c is given.\n
                Set DEBUG=1 in environment for debug output.
                """
            ),
            exit_on_error=exit_on_error,
        )
        parser.add_argument(
            "-c",
            dest="config",
            metavar="PATH",
            default=CONFIG_PATH,
            help="Configuration file.",
        )
        parser.add_argument(
            "-t",
            dest="tty",
            type=int,
            metavar="N",
            default=None,
            help="TTY number, overrides TTY_NUMBER.",
        )
        parser.add_argument(
            "-f",
            dest="family",
            type=Family.from_string,
            metavar="{wayland,x11}",
            default=None,
            help="Session family. Required with command line, guessed for entries.",
        )
        parser.add_argument(
            "-N",
            dest="name",
            default="",
            help="Session name for DESKTOP_SESSION.",
        )
        parser.add_argument(
            "-e",
            dest="entry",
            metavar="PATH",
            default=None,
            help="Session desktop entry file.",
        )
        parser.add_argument(
            "-s",
            dest="login_shell",
            metavar="SHELL",
            default="",
            help="Login shell for startup scripts.",
        )
        parser.add_argument(
            "--raw",
            action="store_true",
            help="Do not use startup wrappers, run command through login shell.",
        )
        parser.add_argument(
            "--no-switch",
            dest="no_switch",
            action="store_true",
            help="Do not switch to TTY before starting.",
        )
        parser.add_argument("user", metavar="USER", help="User name.")
        parser.add_argument(
            "cmdline",
            metavar="COMMAND",
            nargs=argparse.REMAINDER,
            help="Session command line.",
        )

        if custom_args is None:
            # store args globally
            parser.parse_args(namespace=self.parsed)
            Args.parser = parser
            parsed = self.parsed
        else:
            # store args in instance
            self.parsed = parser.parse_args(custom_args)
            self.parser = parser
            parsed = self.parsed

        if parsed.entry and parsed.cmdline:
            parser.error("Desktop entry and command line are mutually exclusive")
        if not parsed.entry and not parsed.cmdline:
            parser.error("Either desktop entry or command line is required")
        if parsed.cmdline and parsed.family is None:
            parser.error("Family (-f) is required with command line")

    def __str__(self):
        return str({"parsed": self.parsed})


def build_config(parsed: argparse.Namespace) -> SessionConfig:
    "Loads config, applies CLI overrides"
    config = load_config(parsed.config)
    overrides = {}
    if parsed.tty is not None:
        overrides["tty"] = parsed.tty
    if parsed.no_switch:
        overrides["switch_tty"] = False
    if overrides:
        config = config.replace(**overrides)
    print_debug("config", config)
    return config


def build_desktop(parsed: argparse.Namespace) -> DesktopSelection:
    "Builds desktop selection from entry or command line"
    if parsed.entry:
        desktop = DesktopSelection.from_entry(
            parsed.entry,
            family=parsed.family,
            login_shell=parsed.login_shell,
            raw=parsed.raw,
        )
        if parsed.name:
            desktop.name = parsed.name
        return desktop
    return DesktopSelection(
        family=parsed.family,
        exec=" ".join(parsed.cmdline),
        name=parsed.name,
        login_shell=parsed.login_shell,
        raw=parsed.raw,
    )


def switch_tty(config: SessionConfig) -> bool:
    "Switches to configured VT via logind, falls back to chvt. Returns True on success"
    if config.tty <= 0:
        return False
    try:
        from vtlogin.dbus import DbusInteractions

        DbusInteractions("system").switch_vt(SEAT, config.tty)
        print_debug(f"switched {SEAT} to VT {config.tty} via logind")
        return True
    except Exception as caught_exception:
        print_debug("logind VT switch failed", caught_exception)

    chvt = which("chvt")
    if not chvt:
        print_warning(f"Could not switch to VT {config.tty}: no logind and no chvt")
        return False
    sprc = subprocess.run(
        [chvt, str(config.tty)], text=True, capture_output=True, check=False
    )
    print_debug(sprc)
    if sprc.returncode != 0:
        print_warning(f'"{chvt} {config.tty}" returned {sprc.returncode}')
        return False
    return True


def main():
    "vtlogin main entrypoint"

    Args()
    print_debug("Args.parsed", Args.parsed)
    if DebugFlag.warning:
        print_warning(DebugFlag.warning)

    try:
        config = build_config(Args.parsed)
        LogFlag.log = config.syslog
        LogFlag.logfile = config.logging_file or None
        identity = UserIdentity.from_name(Args.parsed.user)
        desktop = build_desktop(Args.parsed)
    except Exception as caught_exception:
        print_error(caught_exception)
        sys.exit(1)

    if config.switch_tty:
        switch_tty(config)

    try:
        start_session(identity, desktop, config)
    except Exception as caught_exception:
        print_error(caught_exception)
        sys.exit(1)
    sys.exit(0)
