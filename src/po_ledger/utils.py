"""Shared helpers — hashing, timestamps, run ids."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone


def sha256_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def make_run_id(created_at: str, digest: str = "") -> str:
    """Build a run id from the ISO timestamp and (optionally) the input digest."""
    stamp = created_at.replace("-", "").replace(":", "").split(".")[0].split("+")[0]
    return f"{stamp}-{digest[:8]}" if digest else stamp
