from __future__ import annotations

from typing import Optional, Protocol


class EmployeeDirectory(Protocol):
    """Resolve an RFID card identifier to the employee it is issued to."""

    def resolve(self, rfid: str) -> Optional[int]:
        """Return the employee id, or None when the card is unknown or inactive."""

        raise NotImplementedError
