from __future__ import annotations

import hmac
from hashlib import sha256
from typing import Dict, Any
import orjson


def sha256_bytes(b: bytes) -> str:
    """Return hex sha256 of bytes."""
    h = sha256()
    h.update(b)
    return h.hexdigest()


def canonical_json(payload: Dict[str, Any]) -> bytes:
    """Deterministic JSON bytes (sorted keys, no whitespace)."""
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)


def sign_body(secret: str, body: bytes) -> str:
    """Return the ``sha256=<hex>`` HMAC signature of exact body bytes."""
    digest = hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()
    return f"sha256={digest}"


def chain_next(prev_hash: str, payload: Dict[str, Any]) -> str:
    """Compute the next link in a hash chain.

    Serialize payload deterministically (sorted keys), then compute
    sha256(prev_hash_bytes + payload_json_bytes).
    """
    if prev_hash is None:
        prev_hash = ""
    if not isinstance(prev_hash, str):
        raise TypeError("prev_hash must be a string")
    h = sha256()
    h.update(prev_hash.encode("utf-8"))
    h.update(canonical_json(payload))
    return h.hexdigest()
