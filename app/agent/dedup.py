import json
from typing import Any


def invocation_hash(name: str, args: dict[str, Any]) -> str:
    """Canonical fingerprint of one invocation: ``name::<args as JSON, keys sorted>``."""
    canonical = json.dumps(
        args,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return f"{name}::{canonical}"
