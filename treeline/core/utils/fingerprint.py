"""Deterministic hashing for backend uniqueness policies.

Both backends import from this module so the same invocation always maps to
the same key.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def unique_fingerprint(worker_name: str, arguments: Any) -> str:
    """SHA-256 over the worker name and its canonical JSON arguments.

    Arguments that are not JSON-native are rendered with repr() so equal
    payloads still hash equal within one process.
    """
    canonical = json.dumps(
        [worker_name, arguments],
        sort_keys=True,
        separators=(',', ':'),
        default=repr,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()
