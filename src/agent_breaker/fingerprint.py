"""agent_breaker.fingerprint

Deterministic structural hash of tool-call arguments.

Fingerprints are only compared for equality between consecutive calls
(repetition detection). They are not a security primitive.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from hashlib import sha256
from typing import Any

logger = logging.getLogger("agent_breaker.fingerprint")

# Returned for non-structured input and on any hashing failure.
SENTINEL = 0


def _canonicalize(obj: Any) -> Any:
    """Convert `obj` into a JSON-serializable structure with deterministic ordering."""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, bytes):
        return {"__bytes__": sha256(obj).hexdigest()}
    if isinstance(obj, (list, tuple)):
        return [_canonicalize(x) for x in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted((_canonicalize(x) for x in obj), key=lambda x: str(x))
    if isinstance(obj, Mapping):
        items = [(str(k), _canonicalize(v)) for k, v in obj.items()]
        return {k: v for k, v in sorted(items, key=lambda kv: kv[0])}
    return str(obj)


def stable_json_dumps(obj: Any) -> str:
    """Compact JSON with sorted keys at every depth."""
    return json.dumps(_canonicalize(obj), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(args: Any) -> int:
    """Return a 64-bit fingerprint of `args`, or 0.

    Key insertion order does not affect the result. Anything other than a
    mapping or a list/tuple (including None) yields the sentinel 0, and so
    does any failure while serializing (e.g. a self-referencing structure).
    """
    if args is None or not isinstance(args, (Mapping, list, tuple)):
        return SENTINEL
    try:
        digest = sha256(stable_json_dumps(args).encode("utf-8")).digest()
    except Exception as exc:
        logger.debug("Could not fingerprint tool arguments: %s", exc)
        return SENTINEL
    return int.from_bytes(digest[:8], "big")
