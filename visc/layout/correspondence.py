"""Position-based pairing of groups across snapshots.

When path identity is lost (reordering, restyling) groups are paired by a
blended score of center distance, type agreement and overlap. The
accessibility strategy first pairs groups sharing ARIA or landmark identity
and leaves the rest to position. Pairing is greedy; candidates consumed by
one group cannot be reused by another.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from .accessibility import (
    MIN_CONFIDENCE,
    AccessibilityMatch,
    extract_accessibility_attributes,
    generate_accessibility_selector,
    match_accessibility_attributes,
)
from .geometry import center_distance, normalized_center_distance, overlap_ratio
from .models import BoundingRect, VisualNodeGroup, VisualTreeAnalysis

logger = structlog.get_logger()

DISTANCE_WEIGHT = 0.6
TYPE_WEIGHT = 0.2
OVERLAP_WEIGHT = 0.2
MISMATCHED_TYPE_BONUS = 0.5


class MatchStrategy(str, Enum):
    """How candidate pairs are consumed."""

    SEQUENTIAL = "sequential"  # Each group in order takes its best free candidate
    BEST_FIRST = "best_first"  # Highest-scoring pairs across all groups go first
    ACCESSIBILITY = "accessibility"  # ARIA and landmark identity first, position for the rest


@dataclass
class CorrespondenceOptions:
    min_score: float = 0.5
    strategy: MatchStrategy = MatchStrategy.SEQUENTIAL
    reference_width: float = 1920.0
    reference_height: float = 1080.0

    @property
    def reference(self) -> BoundingRect:
        return BoundingRect(0, 0, self.reference_width, self.reference_height)

    @classmethod
    def from_settings(cls, settings: Any) -> "CorrespondenceOptions":
        return cls(
            min_score=settings.correspondence_min_score,
            strategy=MatchStrategy(settings.correspondence_strategy),
            reference_width=settings.viewport_width,
            reference_height=settings.viewport_height,
        )


@dataclass
class GroupCorrespondence:
    """An accepted pairing between a baseline group and a current group."""

    baseline: VisualNodeGroup
    current: VisualNodeGroup
    confidence: float
    position_shift: tuple[float, float]
    size_change: tuple[float, float]
    center_distance: float
    match_reasons: list[str] = field(default_factory=list)
    identifier: str | None = None
    selector: str | None = None

    @property
    def is_moved(self) -> bool:
        return self.position_shift != (0.0, 0.0)

    @property
    def is_resized(self) -> bool:
        return self.size_change != (0.0, 0.0)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "baseline": {"type": self.baseline.type, "label": self.baseline.label},
            "current": {"type": self.current.type, "label": self.current.label},
            "confidence": self.confidence,
            "positionShift": {"x": self.position_shift[0], "y": self.position_shift[1]},
            "sizeChange": {"width": self.size_change[0], "height": self.size_change[1]},
            "centerDistance": self.center_distance,
        }
        if self.match_reasons:
            result["matchReason"] = list(self.match_reasons)
            result["accessibilityIdentifier"] = self.identifier
            result["selector"] = self.selector
        return result


def correspondence_score(
    group1: VisualNodeGroup,
    group2: VisualNodeGroup,
    reference: BoundingRect,
) -> float:
    """Blend of center proximity, type agreement and overlap (0-1)."""
    distance = normalized_center_distance(group1.bounds, group2.bounds, reference)
    type_bonus = 1.0 if group1.type == group2.type else MISMATCHED_TYPE_BONUS
    return (
        DISTANCE_WEIGHT * (1 - min(distance, 1.0))
        + TYPE_WEIGHT * type_bonus
        + OVERLAP_WEIGHT * overlap_ratio(group1.bounds, group2.bounds)
    )


class CorrespondenceMatcher:
    """Pairs groups from two snapshots by position, type and overlap, or by accessibility identity."""

    def __init__(self, options: CorrespondenceOptions | None = None):
        self.options = options or CorrespondenceOptions()
        self.log = logger.bind(component="correspondence_matcher")

    def _build(
        self,
        baseline: VisualNodeGroup,
        current: VisualNodeGroup,
        score: float,
        accessibility: AccessibilityMatch | None = None,
    ) -> GroupCorrespondence:
        correspondence = GroupCorrespondence(
            baseline=baseline,
            current=current,
            confidence=score,
            position_shift=(current.bounds.x - baseline.bounds.x, current.bounds.y - baseline.bounds.y),
            size_change=(
                current.bounds.width - baseline.bounds.width,
                current.bounds.height - baseline.bounds.height,
            ),
            center_distance=center_distance(baseline.bounds, current.bounds),
        )
        if accessibility is not None:
            correspondence.match_reasons = list(accessibility.reasons)
            correspondence.identifier = accessibility.identifier
            correspondence.selector = generate_accessibility_selector(baseline)
        return correspondence

    def _sequential(self, groups_a, groups_b, reference) -> list[GroupCorrespondence]:
        consumed: set[int] = set()
        matches = []
        for group in groups_a:
            best_index = None
            best_score = self.options.min_score
            for j, candidate in enumerate(groups_b):
                if j in consumed:
                    continue
                score = correspondence_score(group, candidate, reference)
                # Strict comparison keeps the earliest candidate on ties.
                if score > best_score:
                    best_index = j
                    best_score = score
            if best_index is not None:
                consumed.add(best_index)
                matches.append(self._build(group, groups_b[best_index], best_score))
        return matches

    def _best_first(self, groups_a, groups_b, reference) -> list[GroupCorrespondence]:
        candidates = []
        for i, group in enumerate(groups_a):
            for j, candidate in enumerate(groups_b):
                score = correspondence_score(group, candidate, reference)
                if score > self.options.min_score:
                    candidates.append((-score, i, j))
        candidates.sort()

        used_a: set[int] = set()
        used_b: set[int] = set()
        accepted = []
        for negative_score, i, j in candidates:
            if i in used_a or j in used_b:
                continue
            used_a.add(i)
            used_b.add(j)
            accepted.append((i, self._build(groups_a[i], groups_b[j], -negative_score)))
        accepted.sort(key=lambda item: item[0])
        return [match for _, match in accepted]

    def _accessibility(self, groups_a, groups_b, reference) -> list[GroupCorrespondence]:
        attributes_b = [extract_accessibility_attributes(g) for g in groups_b]
        consumed: set[int] = set()
        matched_a: set[int] = set()
        matches = []
        for i, group in enumerate(groups_a):
            attributes = extract_accessibility_attributes(group)
            best_index = None
            best_match = None
            for j, candidate in enumerate(attributes_b):
                if j in consumed:
                    continue
                match = match_accessibility_attributes(attributes, candidate)
                if match is not None and (best_match is None or match.confidence > best_match.confidence):
                    best_index = j
                    best_match = match
            if best_match is not None and best_match.confidence > MIN_CONFIDENCE:
                consumed.add(best_index)
                matched_a.add(i)
                matches.append(
                    self._build(group, groups_b[best_index], best_match.confidence, best_match)
                )

        rest_a = [g for i, g in enumerate(groups_a) if i not in matched_a]
        rest_b = [g for j, g in enumerate(groups_b) if j not in consumed]
        if rest_a and rest_b:
            matches.extend(self._sequential(rest_a, rest_b, reference))

        order = {id(group): i for i, group in enumerate(groups_a)}
        matches.sort(key=lambda m: order[id(m.baseline)])
        self.log.debug(
            "Matched groups by accessibility",
            accessibility=len(matched_a),
            position=len(matches) - len(matched_a),
        )
        return matches

    def match(
        self,
        groups_a: Sequence[VisualNodeGroup],
        groups_b: Sequence[VisualNodeGroup],
        reference: BoundingRect | None = None,
    ) -> list[GroupCorrespondence]:
        """Pair groups of snapshot A with groups of snapshot B.

        Args:
            groups_a: Unmatched groups from the baseline
            groups_b: Candidate groups from the current snapshot
            reference: Rectangle whose diagonal normalizes center distance;
                defaults to the configured reference viewport

        Returns:
            Accepted correspondences, in ``groups_a`` order
        """
        if not groups_a or not groups_b:
            return []

        reference = reference or self.options.reference
        if self.options.strategy == MatchStrategy.BEST_FIRST:
            matches = self._best_first(groups_a, groups_b, reference)
        elif self.options.strategy == MatchStrategy.ACCESSIBILITY:
            matches = self._accessibility(groups_a, groups_b, reference)
        else:
            matches = self._sequential(groups_a, groups_b, reference)

        self.log.debug(
            "Matched groups by correspondence",
            baseline=len(groups_a),
            current=len(groups_b),
            matched=len(matches),
            strategy=self.options.strategy.value,
        )
        return matches


def reference_for(analysis: VisualTreeAnalysis, options: CorrespondenceOptions) -> BoundingRect:
    """Viewport of ``analysis`` when captured, else the configured reference."""
    if analysis.viewport.width > 0 and analysis.viewport.height > 0:
        return BoundingRect(0, 0, analysis.viewport.width, analysis.viewport.height)
    return options.reference


def find_correspondences(
    baseline: VisualTreeAnalysis,
    current: VisualTreeAnalysis,
    options: CorrespondenceOptions | None = None,
) -> list[GroupCorrespondence]:
    """Pair every group (at any depth) of two snapshots."""
    options = options or CorrespondenceOptions()
    return CorrespondenceMatcher(options).match(
        list(baseline.iter_groups()),
        list(current.iter_groups()),
        reference_for(baseline, options),
    )
