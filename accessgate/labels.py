"""
Security label primitives shared by every access-control model.

Implements the Bell-LaPadula lattice:
- SecurityLevel: totally ordered classification levels
- SecurityLabel: (level, compartments) pair attached to resources and clearances
- Compartment set algebra for need-to-know checks
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable


class SecurityLevel(IntEnum):
    """
    Hierarchical classification levels forming a lattice.

    Higher values indicate higher classification:
    PUBLIC < INTERNAL < CONFIDENTIAL < RESTRICTED < TOP_SECRET
    """
    PUBLIC = 0
    INTERNAL = 1
    CONFIDENTIAL = 2
    RESTRICTED = 3
    TOP_SECRET = 4

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, value: "SecurityLevel | str | int") -> "SecurityLevel":
        """Coerce a name or rank into a SecurityLevel."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown security level: {value}") from None
        return cls(value)

    def dominates(self, other: "SecurityLevel") -> bool:
        """True if this level is at or above `other`."""
        return self >= other


def level_value(level: SecurityLevel | str | int) -> int:
    """Lattice rank of a level."""
    return int(SecurityLevel.parse(level))


def compare(a: SecurityLevel | str, b: SecurityLevel | str) -> int:
    """Three-way comparison of two levels: -1, 0 or 1."""
    av, bv = level_value(a), level_value(b)
    return (av > bv) - (av < bv)


def normalize_compartments(compartments: Iterable[str] | None) -> frozenset[str]:
    """Turn any iterable of compartment names into a deduplicated set."""
    if not compartments:
        return frozenset()
    if isinstance(compartments, str):
        compartments = [compartments]
    return frozenset(c.strip() for c in compartments if c and c.strip())


def is_subset_compartments(need: Iterable[str] | None, have: Iterable[str] | None) -> bool:
    """
    Need-to-know check.

    Every compartment in `need` must be present in `have`. An empty `need`
    imposes no requirement.
    """
    return normalize_compartments(need) <= normalize_compartments(have)


def minimum_required_level(levels: Iterable[SecurityLevel | str]) -> SecurityLevel:
    """Lowest clearance that can read every one of `levels`."""
    parsed = [SecurityLevel.parse(level) for level in levels]
    if not parsed:
        return SecurityLevel.PUBLIC
    return max(parsed)


@dataclass(frozen=True)
class SecurityLabel:
    """
    Immutable security label.

    Attributes:
        level: Classification of the labelled object
        compartments: Need-to-know tags, compared as a set
    """
    level: SecurityLevel = SecurityLevel.PUBLIC
    compartments: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", SecurityLevel.parse(self.level))
        object.__setattr__(self, "compartments", normalize_compartments(self.compartments))

    def dominates(self, other: "SecurityLabel") -> bool:
        """Lattice dominance: higher-or-equal level and a compartment superset."""
        return self.level >= other.level and other.compartments <= self.compartments

    def to_dict(self) -> dict:
        return {"level": self.level.name, "compartments": sorted(self.compartments)}

    @classmethod
    def from_dict(cls, data: dict) -> "SecurityLabel":
        return cls(
            level=SecurityLevel.parse(data.get("level", SecurityLevel.PUBLIC)),
            compartments=frozenset(data.get("compartments", [])),
        )

    def __str__(self) -> str:
        if not self.compartments:
            return self.level.name
        return f"{self.level.name}[{','.join(sorted(self.compartments))}]"
