"""
AgriPilot Three-Valued Logic

A condition whose telemetry is missing is neither breached nor clear.
TriBool carries that third state through trigger combination so that
missing data can never fire an AND trigger.

Kleene rules:
    AND: FALSE dominates, otherwise UNKNOWN propagates
    OR:  TRUE dominates, otherwise UNKNOWN propagates
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class TriBool(Enum):
    """Kleene three-valued boolean: TRUE, FALSE, UNKNOWN."""
    TRUE = True
    FALSE = False
    UNKNOWN = None

    def __and__(self, other: TriBool) -> TriBool:
        if not isinstance(other, TriBool):
            return NotImplemented
        if TriBool.FALSE in (self, other):
            return TriBool.FALSE
        if TriBool.UNKNOWN in (self, other):
            return TriBool.UNKNOWN
        return TriBool.TRUE

    def __or__(self, other: TriBool) -> TriBool:
        if not isinstance(other, TriBool):
            return NotImplemented
        if TriBool.TRUE in (self, other):
            return TriBool.TRUE
        if TriBool.UNKNOWN in (self, other):
            return TriBool.UNKNOWN
        return TriBool.FALSE

    def __invert__(self) -> TriBool:
        if self is TriBool.UNKNOWN:
            return TriBool.UNKNOWN
        return TriBool.FALSE if self is TriBool.TRUE else TriBool.TRUE

    def __bool__(self) -> bool:
        """
        Convert to bool for Python if statements.

        Raises ValueError for UNKNOWN to force explicit handling.
        """
        if self is TriBool.UNKNOWN:
            raise ValueError(
                "Cannot convert TriBool.UNKNOWN to bool. "
                "Handle UNKNOWN explicitly in your logic."
            )
        return self is TriBool.TRUE

    @classmethod
    def from_bool(cls, value: Optional[bool]) -> TriBool:
        """Convert Python bool/None to TriBool."""
        if value is None:
            return cls.UNKNOWN
        return cls.TRUE if value else cls.FALSE

    def is_true(self) -> bool:
        return self is TriBool.TRUE

    def is_false(self) -> bool:
        return self is TriBool.FALSE

    def is_unknown(self) -> bool:
        return self is TriBool.UNKNOWN


def all_of(values: Iterable[TriBool]) -> TriBool:
    """Kleene AND over a sequence. Empty input is FALSE (nothing to satisfy)."""
    result: Optional[TriBool] = None
    for value in values:
        result = value if result is None else result & value
    return TriBool.FALSE if result is None else result


def any_of(values: Iterable[TriBool]) -> TriBool:
    """Kleene OR over a sequence. Empty input is FALSE."""
    result = TriBool.FALSE
    for value in values:
        result = result | value
    return result
