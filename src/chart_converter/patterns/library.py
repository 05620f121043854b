"""Read-only library of column-substitution patterns."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from chart_converter.config import read_document
from chart_converter.errors import ConfigError
from chart_converter.models.patterns import Pattern

logger = logging.getLogger(__name__)

BUILTIN_MAX_COLUMNS = 10


def center_out_order(column_count: int) -> tuple[int, ...]:
    """Columns ordered from the centre outwards, ties going left.

    >>> center_out_order(4)
    (1, 2, 0, 3)
    """
    center = (column_count - 1) / 2
    return tuple(sorted(range(column_count), key=lambda c: (abs(c - center), c)))


def default_pattern(target_columns: int, bucket: int) -> Pattern:
    """Fallback pattern used when a library has no match."""
    return Pattern(
        pattern_id=f"default-{target_columns}k-b{bucket}",
        target_columns=target_columns,
        min_intensity=bucket,
        max_intensity=bucket,
        template=center_out_order(target_columns),
    )


class PatternLibrary:
    """Immutable collection of patterns indexed by target column count.

    Selection is deterministic: among patterns whose intensity range covers
    the bucket and whose signature applies, the most specific match wins,
    then the least reused (library reuse count plus uses so far), then the
    smallest pattern id.
    """

    def __init__(self, patterns: Iterable[Pattern], defaults: Iterable[Pattern] = ()) -> None:
        """Initialize the library.

        Args:
            patterns: Selectable patterns.
            defaults: Fallback patterns, one per (target columns, bucket).
        """
        index: dict[int, list[Pattern]] = {}
        seen: set[str] = set()
        for pattern in patterns:
            if pattern.pattern_id in seen:
                raise ConfigError(f"duplicate pattern id '{pattern.pattern_id}'")
            seen.add(pattern.pattern_id)
            self._check(pattern)
            index.setdefault(pattern.target_columns, []).append(pattern)
        self._index: Mapping[int, tuple[Pattern, ...]] = MappingProxyType(
            {k: tuple(sorted(v, key=lambda p: p.pattern_id)) for k, v in index.items()}
        )
        default_index: dict[tuple[int, int], Pattern] = {}
        for pattern in defaults:
            self._check(pattern)
            for bucket in range(pattern.min_intensity, pattern.max_intensity + 1):
                default_index.setdefault((pattern.target_columns, bucket), pattern)
        self._defaults: Mapping[tuple[int, int], Pattern] = MappingProxyType(default_index)

    @staticmethod
    def _check(pattern: Pattern) -> None:
        if pattern.template is None:
            return
        invalid = [c for c in pattern.template if not 0 <= c < pattern.target_columns]
        if invalid or len(set(pattern.template)) != len(pattern.template):
            raise ConfigError(
                f"pattern '{pattern.pattern_id}' has an invalid template {list(pattern.template)} "
                f"for {pattern.target_columns} columns"
            )

    @classmethod
    def builtin(cls, max_columns: int = BUILTIN_MAX_COLUMNS) -> PatternLibrary:
        """Library shipped with the converter.

        For every column count it holds one wildcard pattern per rotation of
        the centre-out column order, so repeated selection cycles through
        starting columns instead of stacking jacks on the centre.
        """
        patterns = []
        for columns in range(1, max_columns + 1):
            order = center_out_order(columns)
            for shift in range(columns):
                patterns.append(
                    Pattern(
                        pattern_id=f"builtin-{columns}k-r{shift}",
                        target_columns=columns,
                        template=order[shift:] + order[:shift],
                    )
                )
        return cls(patterns)

    @classmethod
    def load(cls, path: Path | str) -> PatternLibrary:
        """Load a library from a JSON or YAML document.

        The document holds a ``patterns`` list and an optional ``defaults``
        list, each entry in the form produced by :meth:`Pattern.to_dict`.

        Raises:
            ConfigError: If the file cannot be read or is malformed.
        """
        path = Path(path)
        data = read_document(path)
        if not isinstance(data, dict):
            raise ConfigError(f"pattern library {path} must be a mapping")
        try:
            patterns = [Pattern.from_dict(p) for p in data.get("patterns", [])]
            defaults = [Pattern.from_dict(p) for p in data.get("defaults", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid pattern in {path}: {e}") from e
        logger.info(f"Loaded {len(patterns)} patterns from {path}")
        return cls(patterns, defaults)

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())

    def __iter__(self) -> Iterator[Pattern]:
        for columns in sorted(self._index):
            yield from self._index[columns]

    def for_columns(self, target_columns: int) -> tuple[Pattern, ...]:
        """All selectable patterns for a target column count."""
        return self._index.get(target_columns, ())

    def candidates(
        self,
        target_columns: int,
        bucket: int,
        signature: tuple[int, ...],
        group_size: int | None = None,
    ) -> list[tuple[int, Pattern]]:
        """Applicable patterns with their specificity."""
        result = []
        for pattern in self.for_columns(target_columns):
            if not pattern.covers(bucket):
                continue
            specificity = pattern.specificity(signature, group_size)
            if specificity is not None:
                result.append((specificity, pattern))
        return result

    def default_for(self, target_columns: int, bucket: int) -> Pattern:
        """Fallback pattern for a target column count and bucket."""
        pattern = self._defaults.get((target_columns, bucket))
        return pattern if pattern is not None else default_pattern(target_columns, bucket)

    def select(
        self,
        target_columns: int,
        bucket: int,
        signature: tuple[int, ...],
        usage: Mapping[str, int] | None = None,
        group_size: int | None = None,
    ) -> Pattern:
        """Select the pattern for a note group.

        Args:
            target_columns: Target column count.
            bucket: Intensity bucket of the group.
            signature: Sorted active source columns of the group.
            usage: Uses of each pattern id earlier in the current chart.
            group_size: Number of notes in the group (default: signature length).

        Returns:
            The selected pattern, or the default for (target, bucket).
        """
        candidates = self.candidates(target_columns, bucket, signature, group_size)
        if not candidates:
            return self.default_for(target_columns, bucket)
        usage = usage or {}

        def rank(item: tuple[int, Pattern]) -> tuple[int, int, str]:
            specificity, pattern = item
            reuse = pattern.reuse_count + usage.get(pattern.pattern_id, 0)
            return (-specificity, reuse, pattern.pattern_id)

        return min(candidates, key=rank)[1]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON/YAML serialization."""
        return {
            "patterns": [p.to_dict() for p in self],
            "defaults": [
                p.to_dict()
                for p in {p.pattern_id: p for _, p in sorted(self._defaults.items())}.values()
            ],
        }
