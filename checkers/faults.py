"""Shared vocabulary for reporting data-quality problems.

Both checkers express their business rules as an ordered table of
:class:`Rule` entries. Every rule is a pure function returning the faults it
found (usually none), and :func:`run_rules` evaluates the whole table without
stopping at the first problem so callers always get the complete list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Severity(IntEnum):
    """How much a fault matters, ordered by impact."""

    TRIVIAL = 1
    MINOR = 2
    MAJOR = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: str) -> "Severity":
        """Look up a severity by its (case-insensitive) name."""

        try:
            return cls[value.strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown severity: {value!r}") from exc


@dataclass(frozen=True)
class Fault:
    """A single problem found while checking a resource."""

    description: str
    severity: Severity

    def __str__(self) -> str:
        return f"{self.severity.name} {self.description}"


@dataclass(frozen=True)
class Rule(Generic[T]):
    """A named business rule."""

    name: str
    check: Callable[[T], List[Fault]]


def run_rules(rules: Sequence[Rule[T]], resource: T) -> List[Fault]:
    faults: List[Fault] = []
    for rule in rules:
        found = rule.check(resource)
        if found:
            logger.debug("Rule %s reported %d fault(s)", rule.name, len(found))
        faults.extend(found)
    return faults


def highest_severity(faults: Iterable[Fault]) -> Optional[Severity]:
    severities = [fault.severity for fault in faults]
    return max(severities) if severities else None


def has_severity(faults: Iterable[Fault], minimum: Severity) -> bool:
    """Return True when any fault is at least as severe as ``minimum``."""

    return any(fault.severity >= minimum for fault in faults)


__all__ = ["Fault", "Rule", "Severity", "has_severity", "highest_severity", "run_rules"]
