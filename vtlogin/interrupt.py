import signal
import subprocess
import threading
from typing import Optional

from vtlogin.params import WATCHER_JOIN_TIMEOUT
from vtlogin.misc import print_debug, print_normal, print_warning


class InterruptFlag:
    "Records that termination was requested. Set at most once, never reset."

    def __init__(self):
        self._lock = threading.Lock()
        self._event = threading.Event()

    def set(self) -> bool:
        "Sets flag, returns True only for the first call"
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def __bool__(self):
        return self._event.is_set()


# process-wide
INTERRUPTED = InterruptFlag()


class InterruptWatcher:
    """
    Turns an external interrupt into graceful termination of the session process.
    One interrupt is honored per session, the rest are ignored.
    """

    signals = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

    def __init__(self, flag: InterruptFlag = INTERRUPTED, stop_signal=signal.SIGTERM):
        self.flag = flag
        self.stop_signal = stop_signal
        # handler runs in main thread, which may be holding the lock already
        self._lock = threading.RLock()
        self._wake = threading.Event()
        self._requested = False
        self._finished = False
        self._thread: Optional[threading.Thread] = None
        self._saved_handlers = {}

    @property
    def requested(self) -> bool:
        return self._requested

    def arm(self):
        "Installs signal handlers (main thread only)"
        if threading.current_thread() is not threading.main_thread():
            print_debug("not in main thread, signals will not be trapped")
            return
        for signum in self.signals:
            self._saved_handlers[signum] = signal.signal(signum, self.trigger)

    def trigger(self, signum=None, stack_frame=None) -> bool:
        "Requests interrupt, returns False if one was already requested or watch is over"
        with self._lock:
            if self._requested or self._finished:
                print_debug(f"ignoring interrupt {signum}")
                return False
            self._requested = True
        print_debug(f"interrupt requested by {signum}", stack_frame)
        self._wake.set()
        return True

    def watch(self, process: subprocess.Popen):
        "Starts watcher thread for running process"
        if self._thread is not None:
            raise RuntimeError("Watcher is already running")
        self._thread = threading.Thread(
            target=self._run, args=(process,), name="interrupt-watcher", daemon=True
        )
        self._thread.start()

    def _run(self, process: subprocess.Popen):
        self._wake.wait()
        with self._lock:
            if not self._requested:
                return
        # flag goes first so the waiting side sees it once the process is gone
        self.flag.set()
        print_normal("Caught interrupt signal")
        try:
            process.send_signal(self.stop_signal)
        except ProcessLookupError:
            print_debug("session process already gone")
        process.wait()

    def disarm(self):
        """
        Stops watching, waits for watcher thread.
        Handlers stay installed and ignore further signals until restore().
        """
        with self._lock:
            self._finished = True
        self._wake.set()
        if self._thread is not None:
            self._thread.join(WATCHER_JOIN_TIMEOUT)
            if self._thread.is_alive():
                print_warning("Interrupt watcher did not finish in time")

    def restore(self):
        "Restores signal handlers saved by arm()"
        for signum, handler in self._saved_handlers.items():
            # None means handler was not installed from Python
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._saved_handlers = {}
