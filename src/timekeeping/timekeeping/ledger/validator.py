from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from ..core.enums import FindingKind, GapPolicy
from .hashing import compute_chain_hash
from .model import ChainFinding, ChainValidationReport, LedgerEntry
from .repository import LedgerRepository

logger = logging.getLogger(__name__)


class HashChainValidator:
    """Recompute the tamper-evidence chain over entries in sequence order.

    The walk chains each entry's *stored* hash forward, as an auditor replaying
    the ledger would, so a corrupted entry is reported on its own and the
    entries after it are still judged against what the ledger says.
    Sequence gaps are always reported; whether they invalidate the report is
    decided by ``gap_policy``.
    """

    def __init__(self, *, gap_policy: GapPolicy = GapPolicy.INFORMATIONAL):
        self._gap_policy = GapPolicy(gap_policy)

    @property
    def gap_policy(self) -> GapPolicy:
        return self._gap_policy

    def validate(
        self,
        entries: Sequence[LedgerEntry],
        *,
        anchors: Optional[Mapping[int, Optional[str]]] = None,
    ) -> ChainValidationReport:
        """Validate ``entries`` (ascending ``sequence_id``).

        ``anchors`` maps a sequence id to the stored hash of its ledger
        predecessor, for entries whose predecessor is not the previous entry
        of the batch (see ``resolve_anchor_hashes``). ``""`` anchors the
        genesis entry; ``None`` means the predecessor is gone, which is
        reported as a gap and falls back to the entry's own
        ``hash_previous``. Without an anchor, an entry that does not follow
        its batch neighbour is treated the same way.
        """

        if not entries:
            return ChainValidationReport.empty()

        anchors = anchors or {}
        findings: list[ChainFinding] = []
        verified: set[int] = set()
        invalid_hashes = 0
        sequence_gaps = 0
        failed_at: Optional[int] = None

        previous: Optional[LedgerEntry] = None

        for entry in entries:
            contiguous = previous is not None and entry.sequence_id == previous.sequence_id + 1
            anchor = anchors.get(entry.sequence_id)

            if contiguous:
                previous_hash = previous.hash_chain
            elif anchor is not None:
                previous_hash = anchor
            else:
                previous_hash = entry.hash_previous
                if previous is not None or entry.sequence_id in anchors:
                    sequence_gaps += 1
                    details = (
                        f"Gap from sequence {previous.sequence_id} to {entry.sequence_id}"
                        if previous is not None
                        else f"Ledger entry before sequence {entry.sequence_id} is missing"
                    )
                    findings.append(
                        ChainFinding(sequence_id=entry.sequence_id, kind=FindingKind.GAP_DETECTED, details=details)
                    )

            expected = compute_chain_hash(previous_hash, entry.raw_payload)
            if expected == entry.hash_chain:
                verified.add(entry.sequence_id)
            else:
                invalid_hashes += 1
                if failed_at is None:
                    failed_at = entry.sequence_id
                findings.append(
                    ChainFinding(
                        sequence_id=entry.sequence_id,
                        kind=FindingKind.HASH_MISMATCH,
                        details=f"Expected hash {expected}, got {entry.hash_chain}",
                    )
                )

            previous = entry

        valid = invalid_hashes == 0
        if self._gap_policy == GapPolicy.STRICT:
            valid = valid and sequence_gaps == 0

        if invalid_hashes:
            logger.warning(
                "hash chain broken: %d mismatches, first at sequence %s",
                invalid_hashes,
                failed_at,
            )
        if sequence_gaps:
            logger.info("hash chain walk saw %d sequence gaps", sequence_gaps)

        return ChainValidationReport(
            valid=valid,
            total_validated=len(entries),
            invalid_hashes=invalid_hashes,
            sequence_gaps=sequence_gaps,
            failed_at_sequence_id=failed_at,
            findings=tuple(findings),
            verified_sequence_ids=frozenset(verified),
        )


def resolve_anchor_hashes(ledger: LedgerRepository, entries: Sequence[LedgerEntry]) -> dict[int, Optional[str]]:
    """Anchor every entry whose ledger predecessor is not its batch neighbour.

    A batch skips rows that are still unprocessed (or already processed, for
    the audit view), so the entry after such a hole is chained on the stored
    hash of the row really before it. No lower row at all means genesis.
    """

    anchors: dict[int, Optional[str]] = {}
    previous: Optional[LedgerEntry] = None
    for entry in entries:
        if previous is None or entry.sequence_id != previous.sequence_id + 1:
            predecessor = ledger.find_predecessor(entry.sequence_id)
            if predecessor is None:
                anchors[entry.sequence_id] = ""
            elif predecessor.sequence_id == entry.sequence_id - 1:
                anchors[entry.sequence_id] = predecessor.hash_chain
            else:
                anchors[entry.sequence_id] = None
        previous = entry
    return anchors
