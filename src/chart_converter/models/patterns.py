"""Pattern data models used by the remap transform."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Pattern:
    """A column-substitution template.

    Attributes:
        pattern_id: Unique identifier, also the last tie-breaker.
        target_columns: Column count the template is written for.
        min_intensity: Lowest intensity bucket covered (inclusive).
        max_intensity: Highest intensity bucket covered (inclusive).
        source_signature: Exact set of active source columns matched, as a
            sorted tuple; None matches any signature.
        group_size: Number of notes in the group matched; None matches any.
        template: Preferred target columns in assignment order; None is the
            identity template (each note keeps its own column).
        reuse_count: Historical usage count recorded in the library.
    """

    pattern_id: str
    target_columns: int
    min_intensity: int = 0
    max_intensity: int = 1_000
    source_signature: tuple[int, ...] | None = None
    group_size: int | None = None
    template: tuple[int, ...] | None = None
    reuse_count: int = 0

    @property
    def is_identity(self) -> bool:
        """Whether the pattern keeps source columns unchanged."""
        return self.template is None

    def covers(self, bucket: int) -> bool:
        """Check whether an intensity bucket lies in the pattern's range."""
        return self.min_intensity <= bucket <= self.max_intensity

    def specificity(self, signature: tuple[int, ...], group_size: int | None = None) -> int | None:
        """Rank how specifically the pattern matches a group.

        Args:
            signature: Sorted distinct source columns of the group.
            group_size: Number of notes in the group; defaults to the
                signature length. A window group may hold several notes in
                one column, so the two can differ.

        Returns:
            2 for an exact signature match, 1 for a group-size match, 0 for
            a wildcard, or None if the pattern does not apply.
        """
        if self.source_signature is not None:
            return 2 if self.source_signature == signature else None
        if self.group_size is not None:
            size = len(signature) if group_size is None else group_size
            return 1 if self.group_size == size else None
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON/YAML serialization."""
        return {
            "id": self.pattern_id,
            "targetColumns": self.target_columns,
            "intensity": [self.min_intensity, self.max_intensity],
            "signature": list(self.source_signature) if self.source_signature is not None else None,
            "groupSize": self.group_size,
            "template": list(self.template) if self.template is not None else None,
            "reuseCount": self.reuse_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        """Create a pattern from its dictionary form."""
        low, high = data.get("intensity", [0, 1_000])
        signature = data.get("signature")
        template = data.get("template")
        return cls(
            pattern_id=str(data["id"]),
            target_columns=int(data["targetColumns"]),
            min_intensity=int(low),
            max_intensity=int(high),
            source_signature=tuple(sorted(int(c) for c in signature)) if signature is not None else None,
            group_size=data.get("groupSize"),
            template=tuple(int(c) for c in template) if template is not None else None,
            reuse_count=int(data.get("reuseCount", 0)),
        )
