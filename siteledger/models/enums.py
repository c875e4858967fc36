"""Closed value sets shared by models, schemas and services."""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    """Ordinal grade of a material discrepancy (NONE < ... < CRITICAL)."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.NONE: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DiscrepancyStatus(str, Enum):
    """Lifecycle of a persisted discrepancy record.

    Only a human resolution action changes this; re-scans never do.
    """

    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"

    @property
    def is_terminal(self) -> bool:
        return self in (DiscrepancyStatus.RESOLVED, DiscrepancyStatus.FALSE_POSITIVE)
