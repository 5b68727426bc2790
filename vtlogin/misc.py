import os
import sys
import textwrap
import random
import syslog
import time
from io import StringIO


def str2bool_plus(string: str, numeric: bool = False):
    "Takes boolean'ish or numeric string, converts to bool or int"
    string = string.strip()
    if string.isnumeric():
        number = int(string)
        if numeric:
            return number
        return number > 0
    elif not string or string.lower().capitalize() in (
        "No",
        "False",
        "N",
        "Off",
    ):
        if numeric:
            return 0
        return False
    elif string.lower().capitalize() in ("Yes", "True", "Y", "On"):
        if numeric:
            return 1
        return True
    else:
        raise ValueError(f'Expected boolean or numeric or empty value, got "{string}"')


class DebugFlag:
    "Checks for DEBUG env value and holds 'debug' boolean, 'warning' string"

    debug_raw = os.getenv("DEBUG", "0")
    warning = None
    try:
        debug = str2bool_plus(debug_raw)
    except ValueError:
        warning = f'Expected boolean or numeric or empty value for DEBUG, got "{debug_raw}", assuming False'
        debug = False
    del debug_raw


class LogFlag:
    "Holds global state of log sinks and loglevel prefix switches"

    # log using syslog module
    log = False
    # prefix lines with <N> codes for stdin/stderr journal parsing
    prefix = False
    # append every message to this file
    logfile = None


class Styles:
    "Terminal control characters for color and style"

    reset = "\033[0m"
    red = "\033[31m"
    green = "\033[32m"
    yellow = "\033[33m"
    grey = "\033[90m"
    bold = "\033[1m"


SYSLOG_LEVELS = [
    syslog.LOG_EMERG,
    syslog.LOG_ALERT,
    syslog.LOG_CRIT,
    syslog.LOG_ERR,
    syslog.LOG_WARNING,
    syslog.LOG_NOTICE,
    syslog.LOG_INFO,
    syslog.LOG_DEBUG,
]


def dedent(data: str) -> str:
    "Applies dedent, lstrips newlines, rstrips except single newline"
    data = textwrap.dedent(data).lstrip("\n")
    return data.rstrip() + "\n" if data.endswith("\n") else data.rstrip()


def random_hex(length: int = 16) -> str:
    "Returns random hex string of length"
    return "".join([random.choice(list("0123456789abcdef")) for _ in range(length)])


def _render(*what, **how) -> str:
    "Prints to fake file, returns stripped result"
    print_string = StringIO()
    print(*what, **how, file=print_string)
    return print_string.getvalue().strip()


def _write_logfile(message: str, loglevel: int):
    "Appends timestamped message to LogFlag.logfile, never fails"
    if not LogFlag.logfile:
        return
    stamp = time.strftime("%Y-%m-%d %H:%M:%S")
    try:
        with open(LogFlag.logfile, "a", encoding="UTF-8") as logfile:
            for line in message.splitlines():
                logfile.write(f"{stamp} <{loglevel}> {line}\n")
    except OSError as caught_exception:
        # log file is gone, stop trying
        LogFlag.logfile = None
        print(f"Could not write log file: {caught_exception}", file=sys.stderr, flush=True)


# all print_* functions force flush for synchronized output
def print_normal(*what, **how):
    """
    Normal print with flush.
    optional 'log': LogFlag.log
    """
    log = how.pop("log", LogFlag.log)

    print(*what, **how, flush=True)

    if log or LogFlag.logfile:
        message = _render(*what, **{k: v for k, v in how.items() if k != "file"})
        if log:
            syslog.syslog(syslog.LOG_INFO | syslog.LOG_USER, message)
        _write_logfile(message, 6)


def print_fancy(*what, **how):
    """
    Prints to 'file' (sys.stdout) with flush.
    In 'color' (Styles.green) if 'file' is a tty.
    'log': LogFlag.log (also log to syslog)
    'loglevel': 0-7 (EMERG-DEBUG), default 5 (NOTICE)
    'logprefix': LogFlag.prefix (prefix lines with 'loglevel' for journal)
    """
    file = how.pop("file", sys.stdout)
    color = how.pop("color", Styles.green)
    log = how.pop("log", LogFlag.log)
    loglevel = how.pop("loglevel", 5)
    logprefix = how.pop("logprefix", LogFlag.prefix)

    # print colored text for interactive output
    if file.isatty():
        print(color, end="", file=file, flush=True)
        print(*what, **how, file=file, flush=True)
        print(Styles.reset, end="", file=file, flush=True)
    # print lines prefixed with loglevel for journal
    elif logprefix:
        prefixed_lines = []
        for line in _render(*what, **how).splitlines():
            prefixed_lines.append(f"<{loglevel}>{line}")
        print("\n".join(prefixed_lines), file=file, flush=True)
    # simple print
    else:
        print(*what, **how, file=file, flush=True)

    if log or LogFlag.logfile:
        message = _render(*what, **how)
        if log:
            syslog.syslog(SYSLOG_LEVELS[loglevel] | syslog.LOG_USER, message)
        _write_logfile(message, loglevel)


def print_ok(*what, **how):
    "print_fancy to stdout in green, loglevel 5 (NOTICE)"
    how.setdefault("file", sys.stdout)
    how.setdefault("color", Styles.green)
    how.setdefault("loglevel", 5)
    print_fancy(*what, **how)


def print_warning(*what, **how):
    "print_fancy to stdout in yellow, loglevel 4 (WARNING)"
    how.setdefault("file", sys.stdout)
    how.setdefault("color", Styles.yellow)
    how.setdefault("loglevel", 4)
    print_fancy(*what, **how)


def print_error(*what, **how):
    "print_fancy to stderr in red, loglevel 3 (ERR)"
    how.setdefault("file", sys.stderr)
    how.setdefault("color", Styles.red)
    how.setdefault("loglevel", 3)
    print_fancy(*what, **how)


if DebugFlag.debug:
    from inspect import stack

    def print_debug(*what, **how):
        "Prints to stderr with DEBUG and END_DEBUG marks"
        dsep = "\n" if "sep" not in how or "\n" not in how["sep"] else ""
        how.setdefault("file", sys.stderr)
        how.setdefault("color", Styles.grey)
        how["loglevel"] = 7

        my_stack = stack()
        print_fancy(
            f"DEBUG {my_stack[1].filename}:{my_stack[1].lineno} {my_stack[1].function}{dsep}",
            *what,
            f"{dsep}END_DEBUG",
            **how,
        )

else:

    def print_debug(*what, **how):
        "Does nothing"
        pass
