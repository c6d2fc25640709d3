import time
import uuid


def new_id() -> str:
    """Return an opaque id: epoch milliseconds, a dash, then 12 random hex digits."""
    return f"{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:12]}"
