from __future__ import annotations

import hashlib

from src.timekeeping.timekeeping.ledger.hashing import canonical_json, compute_chain_hash


def test_canonical_json_is_compact_and_key_sorted():
    assert canonical_json({"type": "time_in", "device": "D1", "n": 1}) == '{"device":"D1","n":1,"type":"time_in"}'


def test_canonical_json_keeps_text_payload_verbatim():
    raw = '{"type": "time_in",  "device": "D1"}'
    assert canonical_json(raw) == raw


def test_genesis_hash_uses_empty_previous():
    payload = {"type": "time_in", "device": "DEVICE001"}
    expected = hashlib.sha256('{"device":"DEVICE001","type":"time_in"}'.encode("utf-8")).hexdigest()

    assert compute_chain_hash(None, payload) == expected
    assert compute_chain_hash("", payload) == expected


def test_hash_prefixes_previous_hash_and_is_lowercase_hex():
    previous = "ab" * 32
    digest = compute_chain_hash(previous, '{"a":1}')

    assert digest == hashlib.sha256((previous + '{"a":1}').encode("utf-8")).hexdigest()
    assert len(digest) == 64
    assert digest == digest.lower()
