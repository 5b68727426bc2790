import ctypes

from conftest import FakeStore
from vtlogin.utmp import (
    DEAD_PROCESS,
    USER_PROCESS,
    AccountingEntry,
    AccountingLedger,
    Utmpx,
)


class TestAccountingEntry:
    def test_record(self):
        entry = AccountingEntry("alice", 4321, "tty2", ":0")
        record = entry.record()
        assert record.ut_type == USER_PROCESS
        assert record.ut_pid == 4321
        assert record.ut_user == b"alice"
        assert record.ut_line == b"tty2"
        assert record.ut_id == b"2"
        assert record.ut_host == b":0"
        assert record.ut_tv.tv_sec > 0

    def test_dead_record(self):
        record = AccountingEntry("alice", 4321, "tty2").record(DEAD_PROCESS)
        assert record.ut_type == DEAD_PROCESS
        assert record.ut_host == b""

    def test_long_names_are_truncated(self):
        record = AccountingEntry("x" * 40, 1, "console").record()
        assert record.ut_user == b"x" * 32
        assert record.ut_id == b"sole"

    def test_struct_layout(self):
        # glibc struct utmpx
        assert ctypes.sizeof(Utmpx) == 384


class TestAccountingLedger:
    def test_add_remove(self):
        store = FakeStore()
        ledger = AccountingLedger(store)
        entry = ledger.add("alice", 4321, "tty2", "")
        assert store.active == [entry]
        ledger.remove(entry)
        assert store.active == []
        assert ledger.added == ledger.removed == 1

    def test_add_failure_is_logged(self, capsys):
        ledger = AccountingLedger(FakeStore(fail_add=True))
        assert ledger.add("alice", 4321, "tty2") is None
        assert ledger.added == 0
        assert "Could not add accounting entry" in capsys.readouterr().out

    def test_remove_none(self):
        store = FakeStore()
        ledger = AccountingLedger(store)
        ledger.remove(None)
        assert store.history == []
        assert ledger.removed == 0

    def test_remove_failure_is_logged(self, capsys):
        store = FakeStore()
        ledger = AccountingLedger(store)
        entry = ledger.add("alice", 4321, "tty2")
        store.fail_remove = True
        ledger.remove(entry)
        assert ledger.removed == 0
        assert "Could not end accounting entry" in capsys.readouterr().out
