from __future__ import annotations

from datetime import timedelta

import pytest

from src.timekeeping.timekeeping.attendance.materializer import EventMaterializer
from src.timekeeping.timekeeping.core.enums import DuplicatePolicy, ErrorReason
from src.timekeeping.timekeeping.core.exceptions import (
    CycleAlreadyRunningError,
    PersistenceError,
    StoreUnavailableError,
    ValidationError,
)
from src.timekeeping.timekeeping.ingestion.deduplicator import Deduplicator
from src.timekeeping.timekeeping.ingestion.lock import InProcessCycleLock
from src.timekeeping.timekeeping.ingestion.service import IngestionOrchestrator
from src.timekeeping.timekeeping.ledger.marker import ProcessedMarker
from src.timekeeping.timekeeping.ledger.validator import HashChainValidator
from tests.fakes import T0, DictDirectory, FakeClock, InMemoryAttendanceEvents, InMemoryLedger, make_chain, new_event_for


def build(entries, *, directory=None, events=None, materializer_clock=None, **kwargs):
    ledger = InMemoryLedger(entries)
    events = InMemoryAttendanceEvents() if events is None else events
    directory = DictDirectory({"RFID001": 1, "RFID002": 2}) if directory is None else directory
    materializer = (
        EventMaterializer(events, directory, clock=materializer_clock)
        if materializer_clock
        else EventMaterializer(events, directory)
    )
    orchestrator = IngestionOrchestrator(
        ledger,
        Deduplicator(events),
        HashChainValidator(),
        materializer,
        ProcessedMarker(ledger),
        **kwargs,
    )
    return orchestrator, ledger, events


def _processed(ledger, *sequence_ids):
    return [ledger.get(s).processed for s in sequence_ids]


def test_end_to_end_with_one_broken_link(fixed_now):
    entries = make_chain([{}, {"hash_chain": "0" * 64}, {}])
    orchestrator, ledger, events = build(entries)

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.polled == 3
    assert report.validation.invalid_hashes == 1
    assert report.validation.failed_at_sequence_id == 2
    assert report.created == 2
    assert [(e.sequence_id, e.reason) for e in report.errors] == [(2, ErrorReason.HASH_VERIFICATION_FAILED)]
    assert [e.ledger_sequence_id for e in events.all] == [1, 3]
    assert all(e.ledger_hash_verified for e in events.all)
    # hash failures are permanent; leaving them unprocessed would re-poll them forever
    assert _processed(ledger, 1, 2, 3) == [True, True, True]
    assert ledger.get(1).processed_at == fixed_now

    payload = report.as_dict()
    assert payload["created_attendance_events"] == 2
    assert payload["valid_hashes"] == 2
    assert [e["reason"] for e in payload["errors"]] == ["hash_mismatch", "hash_verification_failed"]


def test_permanent_failures_can_be_left_unprocessed(fixed_now):
    entries = make_chain([{}, {"hash_chain": "0" * 64}, {}])
    orchestrator, ledger, _ = build(entries, mark_permanent_failures=False)

    orchestrator.run_cycle(now=fixed_now)

    assert _processed(ledger, 1, 2, 3) == [True, False, True]


def test_second_run_is_a_no_op(fixed_now):
    orchestrator, ledger, events = build(make_chain([{}, {}, {}]))

    first = orchestrator.run_cycle(now=fixed_now)
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert first.created == 3
    assert second.polled == 0
    assert second.created == 0
    assert len(events.all) == 3


def test_crash_between_create_and_mark_does_not_duplicate_events(fixed_now):
    entries = make_chain([{}, {}, {}])
    events = InMemoryAttendanceEvents()
    events.create(new_event_for(entries[0], employee_id=1))
    orchestrator, ledger, _ = build(entries, events=events)

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.already_processed == 1
    assert report.created == 2
    assert [e.ledger_sequence_id for e in events.all] == [1, 2, 3]
    assert _processed(ledger, 1, 2, 3) == [True, True, True]


def _bounce_chain():
    return make_chain(
        [
            {"scan_timestamp": T0},
            {"scan_timestamp": T0 + timedelta(seconds=5)},
            {"scan_timestamp": T0 + timedelta(minutes=5)},
        ]
    )


def test_duplicates_are_marked_processed_by_default(fixed_now):
    orchestrator, ledger, events = build(_bounce_chain())

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.duplicates == 1
    assert report.candidates == 2
    assert report.created == 2
    assert report.marked_processed == 3
    assert _processed(ledger, 1, 2, 3) == [True, True, True]


def test_retained_duplicates_stay_unprocessed_and_are_never_materialized(fixed_now):
    orchestrator, ledger, events = build(_bounce_chain(), duplicate_policy=DuplicatePolicy.RETAIN_FOR_AUDIT)

    first = orchestrator.run_cycle(now=fixed_now)
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert first.marked_processed == 2
    assert _processed(ledger, 1, 2, 3) == [True, False, True]
    assert second.polled == 1
    assert second.duplicates == 1
    assert second.created == 0
    assert [e.ledger_sequence_id for e in events.all] == [1, 3]


def test_unresolvable_employee_is_retried_on_the_next_poll(fixed_now):
    entries = make_chain([{"employee_rfid": "RFID001"}, {"employee_rfid": "RFID009"}])
    mapping = {"RFID001": 1}
    directory = DictDirectory(mapping)
    orchestrator, ledger, events = build(entries, directory=directory)

    first = orchestrator.run_cycle(now=fixed_now)
    assert first.errors[0].reason == ErrorReason.CANNOT_RESOLVE_EMPLOYEE
    assert _processed(ledger, 1, 2) == [True, False]

    # card registered in the meantime
    mapping["RFID009"] = 9
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert second.polled == 1
    assert second.created == 1
    assert events.all[-1].employee_id == 9
    assert ledger.get(2).processed


def test_creation_failure_is_transient(fixed_now):
    events = InMemoryAttendanceEvents(failing_sequences={2: PersistenceError("Deadlock found")})
    orchestrator, ledger, _ = build(make_chain([{}, {}]), events=events)

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.errors[0].as_dict() == {"sequence_id": 2, "reason": "creation_failed", "error": "Deadlock found"}
    assert _processed(ledger, 1, 2) == [True, False]


def test_missing_timestamp_is_permanent(fixed_now):
    orchestrator, ledger, _ = build(make_chain([{"scan_timestamp": None}, {}]))

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.errors[0].reason == ErrorReason.MISSING_SCAN_TIMESTAMP
    assert _processed(ledger, 1, 2) == [True, True]


def test_hash_check_can_be_turned_off_per_cycle(fixed_now):
    entries = make_chain([{}, {"hash_chain": "0" * 64}])
    orchestrator, _, events = build(entries)

    report = orchestrator.run_cycle(now=fixed_now, validate_hash_chain=False)

    assert report.created == 2
    assert report.validation.invalid_hashes == 1
    assert [e.ledger_hash_verified for e in events.all] == [True, False]


def test_recovery_run_from_sequence_is_anchored_on_the_stored_predecessor(fixed_now):
    entries = make_chain([{}, {}, {}, {}, {}])
    orchestrator, ledger, events = build(entries)

    report = orchestrator.run_cycle(now=fixed_now, from_sequence_id=4)

    assert report.polled == 2
    assert report.validation.valid
    assert [e.ledger_sequence_id for e in events.all] == [4, 5]
    assert _processed(ledger, 1, 3, 4) == [False, False, True]


def test_batch_limit_bounds_the_poll(fixed_now):
    orchestrator, ledger, _ = build(make_chain([{}, {}, {}, {}, {}]), batch_limit=2)

    assert orchestrator.run_cycle(now=fixed_now).polled == 2
    assert orchestrator.run_cycle(now=fixed_now, batch_limit=3).polled == 3
    with pytest.raises(ValidationError):
        orchestrator.run_cycle(now=fixed_now, batch_limit=0)


def test_time_budget_leaves_the_rest_unprocessed(fixed_now):
    orchestrator, ledger, events = build(
        make_chain([{}, {}, {}, {}]),
        time_budget_seconds=2,
        clock=FakeClock(start=0.0),
        materializer_clock=FakeClock(start=0.0, step=1.0),
    )

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.created == 2
    assert report.skipped == 2
    assert report.failed == 0
    assert _processed(ledger, 1, 2, 3, 4) == [True, True, False, False]


def test_overlapping_cycle_is_refused(fixed_now):
    lock = InProcessCycleLock()
    orchestrator, ledger, events = build(make_chain([{}]), lock=lock)

    with lock.hold():
        with pytest.raises(CycleAlreadyRunningError):
            orchestrator.run_cycle(now=fixed_now)

    assert events.all == []
    assert orchestrator.run_cycle(now=fixed_now).created == 1


def test_store_unavailable_propagates(fixed_now):
    orchestrator, ledger, _ = build(make_chain([{}]))
    ledger.unavailable = True

    with pytest.raises(StoreUnavailableError):
        orchestrator.run_cycle(now=fixed_now)


def test_empty_ledger(fixed_now):
    orchestrator, ledger, _ = build([])

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.polled == 0
    assert report.validation.valid
    assert report.marked_processed == 0
    assert ledger.mark_calls == []


def _append(ledger, sequence_id, **row):
    ledger.put(make_chain([row], start_sequence=sequence_id, previous_hash=ledger.get(sequence_id - 1).hash_chain)[0])


@pytest.mark.parametrize("policy", [DuplicatePolicy.MARK_PROCESSED, DuplicatePolicy.RETAIN_FOR_AUDIT])
def test_entry_left_for_retry_does_not_break_the_chain_for_new_entries(fixed_now, policy):
    entries = make_chain([{}, {"employee_rfid": "RFID009"}, {}])
    mapping = {"RFID001": 1}
    orchestrator, ledger, events = build(entries, directory=DictDirectory(mapping), duplicate_policy=policy)

    orchestrator.run_cycle(now=fixed_now)
    assert _processed(ledger, 1, 2, 3) == [True, False, True]

    _append(ledger, 4)
    mapping["RFID009"] = 9
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert second.polled == 2
    assert second.validation.valid
    assert second.validation.sequence_gaps == 0
    assert second.validation.verified_sequence_ids == {2, 4}
    assert second.errors == ()
    assert [e.ledger_sequence_id for e in events.all] == [1, 2, 3, 4]
    assert all(e.ledger_hash_verified for e in events.all)


@pytest.mark.parametrize(
    "policy, expected_unprocessed",
    [(DuplicatePolicy.MARK_PROCESSED, []), (DuplicatePolicy.RETAIN_FOR_AUDIT, [2])],
)
def test_duplicate_then_new_entry(fixed_now, policy, expected_unprocessed):
    orchestrator, ledger, events = build(_bounce_chain(), duplicate_policy=policy)

    orchestrator.run_cycle(now=fixed_now)
    _append(ledger, 4, scan_timestamp=T0 + timedelta(minutes=10))
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert second.validation.valid
    assert second.validation.sequence_gaps == 0
    assert second.errors == ()
    assert [e.ledger_sequence_id for e in events.all] == [1, 3, 4]
    assert events.all[-1].ledger_hash_verified
    assert [s for s in (1, 2, 3, 4) if not ledger.get(s).processed] == expected_unprocessed


def test_entries_skipped_by_the_time_budget_chain_onto_new_entries(fixed_now):
    materializer_clock = FakeClock(start=0.0, step=1.0)
    orchestrator, ledger, events = build(
        make_chain([{}, {}, {}, {}]),
        time_budget_seconds=2,
        clock=FakeClock(start=0.0),
        materializer_clock=materializer_clock,
    )

    orchestrator.run_cycle(now=fixed_now)
    assert _processed(ledger, 3, 4) == [False, False]

    _append(ledger, 5)
    materializer_clock.now, materializer_clock.step = 0.0, 0.0
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert second.validation.valid
    assert second.created == 3
    assert [e.ledger_sequence_id for e in events.all] == [1, 2, 3, 4, 5]


def test_retained_duplicates_filling_a_page_do_not_starve_new_taps(fixed_now):
    entries = make_chain(
        [
            {"scan_timestamp": T0},
            {"scan_timestamp": T0 + timedelta(seconds=3)},
            {"scan_timestamp": T0 + timedelta(seconds=6)},
            {"scan_timestamp": T0 + timedelta(minutes=9)},
        ]
    )
    orchestrator, ledger, events = build(entries, batch_limit=2, duplicate_policy=DuplicatePolicy.RETAIN_FOR_AUDIT)

    first = orchestrator.run_cycle(now=fixed_now)
    second = orchestrator.run_cycle(now=fixed_now + timedelta(minutes=1))

    assert first.created == 1
    assert second.polled == 1
    assert second.created == 1
    assert second.validation.valid
    assert [e.ledger_sequence_id for e in events.all] == [1, 4]
    assert _processed(ledger, 1, 2, 3, 4) == [True, False, False, True]


def test_forged_genesis_is_not_materialized(fixed_now):
    orchestrator, ledger, events = build(make_chain([{}], previous_hash="x"))

    report = orchestrator.run_cycle(now=fixed_now)

    assert report.validation.failed_at_sequence_id == 1
    assert [e.reason for e in report.errors] == [ErrorReason.HASH_VERIFICATION_FAILED]
    assert events.all == []
