import os
import signal
import subprocess
import threading
import time

import pytest

from vtlogin.interrupt import InterruptFlag, InterruptWatcher


@pytest.fixture
def sleeper():
    process = subprocess.Popen(["sleep", "30"])
    yield process
    if process.poll() is None:
        process.kill()
        process.wait()


class TestInterruptFlag:
    def test_set_once(self):
        flag = InterruptFlag()
        assert not flag
        assert flag.set()
        assert not flag.set()
        assert flag
        assert flag.is_set()

    def test_concurrent_setters_single_winner(self):
        flag = InterruptFlag()
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(flag.set()))
            for _ in range(16)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert results.count(True) == 1


class TestInterruptWatcher:
    def test_trigger_terminates_process(self, flag, sleeper):
        watcher = InterruptWatcher(flag)
        watcher.watch(sleeper)
        assert watcher.trigger()
        assert sleeper.wait(timeout=5) == -signal.SIGTERM
        watcher.disarm()
        assert flag

    def test_trigger_before_watch(self, flag, sleeper):
        watcher = InterruptWatcher(flag)
        watcher.trigger()
        watcher.watch(sleeper)
        watcher.disarm()
        assert sleeper.returncode == -signal.SIGTERM
        assert flag

    def test_second_trigger_is_noop(self, flag, sleeper):
        watcher = InterruptWatcher(flag)
        watcher.watch(sleeper)
        assert watcher.trigger()
        assert not watcher.trigger()
        watcher.disarm()

    def test_disarm_without_interrupt(self, flag, sleeper):
        watcher = InterruptWatcher(flag)
        watcher.watch(sleeper)
        watcher.disarm()
        assert not flag
        assert sleeper.poll() is None
        # too late
        assert not watcher.trigger()
        assert not flag

    def test_process_already_finished(self, flag):
        process = subprocess.Popen(["true"])
        process.wait()
        watcher = InterruptWatcher(flag)
        watcher.watch(process)
        watcher.trigger()
        watcher.disarm()
        assert flag
        assert process.returncode == 0

    def test_watch_twice(self, flag, sleeper):
        watcher = InterruptWatcher(flag)
        watcher.watch(sleeper)
        with pytest.raises(RuntimeError):
            watcher.watch(sleeper)
        watcher.disarm()

    def test_signal_handlers(self, flag):
        original = signal.getsignal(signal.SIGHUP)
        watcher = InterruptWatcher(flag)
        watcher.arm()
        try:
            assert signal.getsignal(signal.SIGHUP) == watcher.trigger
            os.kill(os.getpid(), signal.SIGHUP)
            deadline = time.time() + 2
            while not watcher.requested and time.time() < deadline:
                time.sleep(0.01)
            assert watcher.requested
        finally:
            watcher.disarm()
            watcher.restore()
        assert signal.getsignal(signal.SIGHUP) == original

    def test_handlers_ignore_signals_until_restored(self, flag):
        original = signal.getsignal(signal.SIGINT)
        watcher = InterruptWatcher(flag)
        watcher.arm()
        try:
            watcher.disarm()
            # still trapped, no KeyboardInterrupt
            assert signal.getsignal(signal.SIGINT) == watcher.trigger
            os.kill(os.getpid(), signal.SIGINT)
            time.sleep(0.05)
            assert not watcher.requested
            assert not flag
        finally:
            watcher.restore()
        assert signal.getsignal(signal.SIGINT) == original
