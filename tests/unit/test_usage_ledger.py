import threading

import pytest
from sqlmodel import Session

from src.modules.usage.ledger import UsageLedger
from src.modules.usage.models import UsageRecord


CHAT_ID = 555


def _naive_increment(engine, chat_id, barrier):
    """Read-then-write increment, with every reader lined up before any writer."""
    with Session(engine) as session:
        current = session.get(UsageRecord, chat_id).count
    barrier.wait()
    with Session(engine) as session:
        record = session.get(UsageRecord, chat_id)
        record.count = current + 1
        session.add(record)
        session.commit()


def _run_threads(target, count):
    threads = [threading.Thread(target=target) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


def test_unknown_chat_has_zero_count(ledger):
    assert ledger.get_count(CHAT_ID) == 0


def test_increment_creates_then_adds(ledger):
    assert ledger.increment(CHAT_ID) == 1
    assert ledger.increment(CHAT_ID) == 2
    assert ledger.get_count(CHAT_ID) == 2


def test_counters_are_per_chat(ledger):
    ledger.increment(1)
    ledger.increment(1)
    ledger.increment(2)

    assert ledger.get_count(1) == 2
    assert ledger.get_count(2) == 1


def test_concurrent_increments_are_not_lost(ledger):
    n = 20
    barrier = threading.Barrier(n)

    def work():
        barrier.wait()
        ledger.increment(CHAT_ID)

    _run_threads(work, n)

    assert ledger.get_count(CHAT_ID) == n


def test_read_then_write_loses_updates(engine, ledger):
    n = 8
    with Session(engine) as session:
        session.add(UsageRecord(chat_id=CHAT_ID, count=0))
        session.commit()
    barrier = threading.Barrier(n)

    _run_threads(lambda: _naive_increment(engine, CHAT_ID, barrier), n)

    assert ledger.get_count(CHAT_ID) < n


def test_unsupported_dialect_is_rejected():
    class FakeDialect:
        name = "mysql"

    class FakeEngine:
        dialect = FakeDialect()

    with pytest.raises(ValueError, match="mysql"):
        UsageLedger(FakeEngine())
