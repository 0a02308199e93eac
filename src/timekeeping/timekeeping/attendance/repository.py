from __future__ import annotations

from typing import Mapping, Protocol, Sequence

from .model import AttendanceEvent, NewAttendanceEvent


class AttendanceEventRepository(Protocol):
    def find_ids_by_ledger_sequences(self, sequence_ids: Sequence[int]) -> Mapping[int, int]:
        """Map ``ledger_sequence_id -> event_id`` for events that already exist."""

        raise NotImplementedError

    def create(self, event: NewAttendanceEvent) -> AttendanceEvent:
        raise NotImplementedError
