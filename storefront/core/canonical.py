from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from storefront.core.timeutil import iso_z


class CanonicalError(ValueError):
    pass


def to_wire(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    if isinstance(value, Enum):
        return to_wire(value.value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, datetime):
        return iso_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, float):
        raise CanonicalError("float values are not allowed for money payloads; use Decimal")
    if value is None or isinstance(value, (str, int, bool)):
        return value
    if hasattr(value, "model_dump"):
        return to_wire(value.model_dump())
    raise CanonicalError(f"unsupported wire type: {type(value)!r}")


def canonical_json(value: Any) -> bytes:
    return json.dumps(
        to_wire(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
