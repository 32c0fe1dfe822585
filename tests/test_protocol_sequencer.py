"""
Tests: ProtocolSequencer — day-scoped request identifiers.

Covers:
    - format and parse of {PREFIX}-{YYYYMMDD}-{NNNN}
    - daily reset, including a call straddling midnight
    - the 9999 ceiling (raises, never wraps)
    - uniqueness under concurrent callers
    - resuming from the highest persisted sequence after a restart
    - giving back the latest number when its transaction rolls back
"""

import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import ProtocolExhaustedError
from app.services.protocol_sequencer import (
    MAX_DAILY_SEQUENCE,
    ProtocolSequencer,
    format_protocol,
    last_persisted_sequence,
    parse_protocol,
)

DAY = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value


def test_first_protocol_of_the_day():
    seq = ProtocolSequencer(clock=_Clock(DAY))

    assert seq.next() == "SOL-20260115-0001"
    assert seq.next() == "SOL-20260115-0002"


def test_custom_prefix():
    seq = ProtocolSequencer(prefix="REQ", clock=_Clock(DAY))
    assert seq.next() == "REQ-20260115-0001"


@pytest.mark.parametrize("prefix", ["", "SOL-X"])
def test_invalid_prefix_rejected(prefix):
    with pytest.raises(ValueError):
        ProtocolSequencer(prefix=prefix)


def test_sequence_restarts_each_day():
    clock = _Clock(DAY)
    seq = ProtocolSequencer(clock=clock)
    seq.next()
    seq.next()

    clock.value = DAY + timedelta(days=1)

    assert seq.next() == "SOL-20260116-0001"


def test_call_straddling_midnight_uses_new_day():
    clock = _Clock(datetime(2026, 1, 15, 23, 59, 59, 999999, tzinfo=timezone.utc))
    seq = ProtocolSequencer(clock=clock)

    assert seq.next() == "SOL-20260115-0001"
    clock.value = clock.value + timedelta(microseconds=1)
    assert seq.next() == "SOL-20260116-0001"


def test_day_is_taken_in_utc():
    minus_three = timezone(timedelta(hours=-3))
    seq = ProtocolSequencer(clock=_Clock(datetime(2026, 1, 15, 22, 30, tzinfo=minus_three)))

    assert seq.next() == "SOL-20260116-0001"


def test_ceiling_raises_instead_of_wrapping():
    seq = ProtocolSequencer(clock=_Clock(DAY), resume=lambda prefix, day: MAX_DAILY_SEQUENCE - 1)

    assert seq.next() == "SOL-20260115-9999"
    with pytest.raises(ProtocolExhaustedError):
        seq.next()
    # still exhausted, no wrap to 0000/0001
    with pytest.raises(ProtocolExhaustedError):
        seq.next()


def test_exhaustion_clears_on_next_day():
    clock = _Clock(DAY)
    seq = ProtocolSequencer(clock=clock, resume=lambda prefix, day: MAX_DAILY_SEQUENCE if day == DAY.date() else 0)

    with pytest.raises(ProtocolExhaustedError):
        seq.next()
    clock.value = DAY + timedelta(days=1)
    assert seq.next() == "SOL-20260116-0001"


def test_concurrent_callers_get_distinct_consecutive_sequences():
    seq = ProtocolSequencer(clock=_Clock(DAY))
    results = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        minted = [seq.next() for _ in range(50)]
        with results_lock:
            results.extend(minted)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sequences = sorted(parse_protocol(p)[2] for p in results)
    assert len(results) == 400
    assert sequences == list(range(1, 401))


def test_resume_continues_after_restart():
    calls = []

    def resume(prefix, day):
        calls.append((prefix, day))
        return 41

    seq = ProtocolSequencer(clock=_Clock(DAY), resume=resume)

    assert seq.next() == "SOL-20260115-0042"
    assert seq.next() == "SOL-20260115-0043"
    assert calls == [("SOL", date(2026, 1, 15))]


def test_reset_consults_resume_again():
    stored = {"value": 0}
    seq = ProtocolSequencer(clock=_Clock(DAY), resume=lambda prefix, day: stored["value"])
    seq.next()

    stored["value"] = 7
    seq.reset()

    assert seq.next() == "SOL-20260115-0008"


def test_release_returns_latest_protocol_only():
    seq = ProtocolSequencer(clock=_Clock(DAY))
    first = seq.next()
    second = seq.next()

    assert seq.release(first) is False
    assert seq.release(second) is True
    assert seq.release(second) is False
    assert seq.next() == "SOL-20260115-0002"


def test_release_ignores_other_prefix_and_day():
    clock = _Clock(DAY)
    seq = ProtocolSequencer(clock=clock)
    seq.next()

    assert seq.release("REQ-20260115-0001") is False
    assert seq.release("SOL-20260114-0001") is False
    assert seq.next() == "SOL-20260115-0002"


# ── Format / parse ───────────────────────────────────────────────────────────


def test_format_and_parse():
    protocol = format_protocol("SOL", date(2026, 3, 9), 12)

    assert protocol == "SOL-20260309-0012"
    assert parse_protocol(protocol) == ("SOL", date(2026, 3, 9), 12)


@pytest.mark.parametrize("bad", ["", "SOL", "SOL-2026-0001", "SOL-20260115-12", "SOL-20260115-ABCD"])
def test_parse_rejects_malformed(bad):
    with pytest.raises(ValueError):
        parse_protocol(bad)


# ── Persisted sequence ───────────────────────────────────────────────────────


def test_last_persisted_sequence_reads_database(service, modules, clock):
    service.create("u-1", "FINANCE", [modules["Financial Management"]],
                   "Need this to process month-end vendor payments")
    service.create("u-2", "FINANCE", [modules["Purchasing"]],
                   "Raising purchase orders for the Q1 office refit")

    assert last_persisted_sequence("SOL", clock().date()) == 2
    assert last_persisted_sequence("SOL", clock().date() + timedelta(days=1)) == 0
    assert last_persisted_sequence("REQ", clock().date()) == 0


def test_service_sequencer_resumes_from_database(service, modules):
    first = service.create("u-1", "FINANCE", [modules["Financial Management"]],
                           "Need this to process month-end vendor payments")

    # Simulate a process restart: the in-memory counter is forgotten.
    service.sequencer.reset()
    second = service.create("u-2", "FINANCE", [modules["Purchasing"]],
                            "Raising purchase orders for the Q1 office refit")

    assert first.protocol == "SOL-20260115-0001"
    assert second.protocol == "SOL-20260115-0002"
