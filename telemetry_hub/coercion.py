"""
SenML value coercion.

A record carries at most one of ``v`` (number), ``vs`` (string) or ``vb``
(boolean). Everything is folded to ``float | None`` so that a reported 0 stays
0 and a metric that was never reported stays None.
"""

import math
from typing import Optional

from .schemas import SenMLRecord


def parse_number(text: str) -> Optional[float]:
    """Lenient float parse; anything unparseable is dropped as None."""
    try:
        value = float(text.strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def coerce_value(record: SenMLRecord) -> Optional[float]:
    if record.v is not None:
        # json.loads accepts NaN and Infinity literals
        return record.v if math.isfinite(record.v) else None
    if record.vs is not None:
        return parse_number(record.vs)
    if record.vb is not None:
        return 1.0 if record.vb else 0.0
    return None
