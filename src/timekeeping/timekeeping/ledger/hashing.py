"""Hash chain primitives.

``hash_chain = sha256(hash_previous_or_empty + canonical_json(raw_payload))``,
hex encoded, lowercase.
"""

from __future__ import annotations

import hashlib
import json
from typing import Optional

from .model import RawPayload


def canonical_json(payload: RawPayload) -> str:
    # Text payloads are the exact serialization the device hashed.
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def compute_chain_hash(previous_hash: Optional[str], payload: RawPayload) -> str:
    hash_input = (previous_hash or "") + canonical_json(payload)
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()
