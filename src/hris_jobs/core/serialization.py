"""JSON normalisation for step results.

Checkpointed results are stored as JSON. Results are normalised *before* they
are cached so that a step replayed from the in-memory run and a step replayed
after a restart (read back from the ledger) return identical values.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for the types jobs commonly return."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return asdict(value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=json_default)


def to_jsonable(value: Any) -> Any:
    """Round-trip ``value`` through JSON."""
    if value is None:
        return None
    return json.loads(dumps(value))
