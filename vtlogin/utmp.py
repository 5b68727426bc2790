import ctypes
import ctypes.util
import os
import time
from typing import Optional

from vtlogin.errors import AccountingError
from vtlogin.misc import print_debug, print_normal, print_warning

# ut_type values
USER_PROCESS = 7
DEAD_PROCESS = 8

WTMP_PATH = "/var/log/wtmp"


class ExitStatus(ctypes.Structure):
    _fields_ = [("e_termination", ctypes.c_short), ("e_exit", ctypes.c_short)]


class TimeVal32(ctypes.Structure):
    _fields_ = [("tv_sec", ctypes.c_int32), ("tv_usec", ctypes.c_int32)]


class Utmpx(ctypes.Structure):
    "glibc struct utmpx"

    _fields_ = [
        ("ut_type", ctypes.c_short),
        ("ut_pid", ctypes.c_int),
        ("ut_line", ctypes.c_char * 32),
        ("ut_id", ctypes.c_char * 4),
        ("ut_user", ctypes.c_char * 32),
        ("ut_host", ctypes.c_char * 256),
        ("ut_exit", ExitStatus),
        ("ut_session", ctypes.c_int32),
        ("ut_tv", TimeVal32),
        ("ut_addr_v6", ctypes.c_int32 * 4),
        ("glibc_reserved", ctypes.c_char * 20),
    ]


class AccountingEntry:
    "One active login record"

    def __init__(self, username: str, pid: int, terminal: str, display: str = ""):
        self.username = username
        self.pid = pid
        self.terminal = terminal
        self.display = display

    def line_id(self) -> str:
        "Last 4 chars of terminal name, as inittab-style id"
        return self.terminal.removeprefix("tty")[-4:]

    def record(self, ut_type: int = USER_PROCESS) -> Utmpx:
        "Builds utmpx struct for entry"
        now = time.time()
        record = Utmpx()
        record.ut_type = ut_type
        record.ut_pid = self.pid
        record.ut_line = self.terminal.encode()[:32]
        record.ut_id = self.line_id().encode()[:4]
        record.ut_user = self.username.encode()[:32]
        record.ut_host = self.display.encode()[:256]
        record.ut_session = os.getsid(0)
        record.ut_tv.tv_sec = int(now)
        record.ut_tv.tv_usec = int((now % 1) * 1000000)
        return record

    def __str__(self):
        return f"{self.username} pid {self.pid} on {self.terminal}" + (
            f" ({self.display})" if self.display else ""
        )


class UtmpxStore:
    "System utmp/wtmp via libc"

    def __init__(self, wtmp_path: str = WTMP_PATH):
        self.wtmp_path = wtmp_path
        self._libc = None

    @property
    def libc(self):
        if self._libc is None:
            libc_name = ctypes.util.find_library("c")
            if not libc_name:
                raise AccountingError("Could not find libc")
            libc = ctypes.CDLL(libc_name, use_errno=True)
            libc.pututxline.argtypes = [ctypes.POINTER(Utmpx)]
            libc.pututxline.restype = ctypes.POINTER(Utmpx)
            libc.updwtmpx.argtypes = [ctypes.c_char_p, ctypes.POINTER(Utmpx)]
            libc.updwtmpx.restype = None
            self._libc = libc
        return self._libc

    def write(self, record: Utmpx):
        "Puts record to utmp and appends it to wtmp"
        libc = self.libc
        libc.setutxent()
        try:
            if not libc.pututxline(ctypes.byref(record)):
                errno = ctypes.get_errno()
                raise AccountingError(f"pututxline failed: {os.strerror(errno)}")
        finally:
            libc.endutxent()
        libc.updwtmpx(self.wtmp_path.encode(), ctypes.byref(record))

    def add(self, entry: AccountingEntry):
        self.write(entry.record(USER_PROCESS))

    def remove(self, entry: AccountingEntry):
        record = entry.record(DEAD_PROCESS)
        # dead entries keep line and id only
        record.ut_user = b""
        record.ut_host = b""
        self.write(record)


class AccountingLedger:
    """
    Best-effort session accounting.
    Failures are logged and never raised.
    """

    def __init__(self, store=None):
        self.store = store if store is not None else UtmpxStore()
        self.added = 0
        self.removed = 0

    def add(
        self, username: str, pid: int, terminal: str, display: str = ""
    ) -> Optional[AccountingEntry]:
        "Records entry, returns it or None on failure"
        entry = AccountingEntry(username, pid, terminal, display)
        try:
            self.store.add(entry)
        except Exception as caught_exception:
            print_warning(
                AccountingError(f"Could not add accounting entry {entry}: {caught_exception}")
            )
            return None
        self.added += 1
        print_normal(f"Added accounting entry: {entry}")
        return entry

    def remove(self, entry: Optional[AccountingEntry]):
        "Ends entry, None is ignored"
        if entry is None:
            print_debug("no accounting entry to remove")
            return
        try:
            self.store.remove(entry)
        except Exception as caught_exception:
            print_warning(
                AccountingError(f"Could not end accounting entry {entry}: {caught_exception}")
            )
            return
        self.removed += 1
        print_normal(f"Ended accounting entry: {entry}")
