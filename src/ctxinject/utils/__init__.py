"""ctxinject utility modules.

Provides centralized utilities for:
- datetime: UTC timestamps and ISO 8601 serialization
- numeric: clamping and score rounding
"""

from ctxinject.utils.datetime import serialize_datetime, utc_now
from ctxinject.utils.numeric import clamp, round_score

__all__ = ["clamp", "round_score", "serialize_datetime", "utc_now"]
