"""
hasher.py — Content fingerprints for cache keys.

Fingerprints are SHA-256 over raw bytes, so they are reproducible across
runs and machines. Modification times are never consulted.
"""

from __future__ import annotations
import hashlib
from typing import Iterable


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def combine_fingerprints(fingerprints: Iterable[str]) -> str:
    """Order-independent fingerprint over a set of per-file fingerprints."""
    joined = "\n".join(sorted(fingerprints))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()
