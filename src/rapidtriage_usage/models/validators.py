"""Shared Pydantic types and validators for reuse across models.

Centralises the camelCase wire configuration, the ``Limit`` tagged value,
non-negative counters and Literal enums so every model speaks the same
language.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from pydantic import ConfigDict, Field, PlainSerializer, PlainValidator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Wire configuration
# ---------------------------------------------------------------------------

WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
"""camelCase aliases on the wire, snake_case attributes in Python."""


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    ``round()`` uses banker's rounding (``round(2.5) == 2``); usage
    percentages must round 62.5 up to 63.
    """
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


# ---------------------------------------------------------------------------
# Limit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Limit:
    """A quota cap: either a finite number or unlimited (``value is None``)."""

    value: int | float | None = None

    @classmethod
    def finite(cls, value: int | float) -> Limit:
        if value < 0:
            raise ValueError(f"finite limit must be >= 0, got {value}")
        return cls(value)

    @property
    def unlimited(self) -> bool:
        return self.value is None

    def exhausted_by(self, usage: int | float) -> bool:
        """True when *usage* has reached a finite cap."""
        return self.value is not None and usage >= self.value

    def percentage_of(self, usage: int | float) -> int:
        """Percentage of the cap consumed by *usage*; ``-1`` when unlimited."""
        if self.value is None:
            return -1
        if self.value == 0:
            return 100
        return round_half_up(usage / self.value * 100)

    def __repr__(self) -> str:
        return "Limit(unlimited)" if self.value is None else f"Limit({self.value})"


UNLIMITED = Limit()


def coerce_limit(v: Any) -> Limit:
    """Accept ``Limit | int | float | None`` and return a ``Limit``.

    * ``None`` and ``-1`` → ``UNLIMITED`` (both sentinels appear on the wire)
    * ``100`` → ``Limit(100)``
    """
    if isinstance(v, Limit):
        return v
    if v is None or v == -1:
        return UNLIMITED
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValueError(f"invalid limit value: {v!r}")
    return Limit.finite(v)


LimitField = Annotated[
    Limit,
    PlainValidator(coerce_limit),
    PlainSerializer(lambda limit: limit.value, return_type=int | float | None),
]
"""Quota cap: validated from number/None/-1, serialised as number or ``null``."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer ≥ 0, for usage counters."""

NonNegativeFloat = Annotated[float, Field(ge=0.0)]
"""Float ≥ 0, for storage consumption."""

Percentage = Annotated[int, Field(ge=-1)]
"""Rounded percentage; ``-1`` marks an unlimited feature."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

AlertType = Literal["warning", "critical", "exceeded"]
