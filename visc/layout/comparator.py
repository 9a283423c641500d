"""Layout comparison between two snapshots.

This module diffs snapshots either element by element or group by group and
scores their similarity. Group mode is preferred whenever both snapshots
carry group data; raw element mode is the fallback.

Key Features:
- Raw element diffing keyed by tag, id, first class and rounded position
- Group diffing keyed by a digest of the ancestor ``type:label`` chain
- Moved / resized / modified sub-classification of matched items
- Root-selector and correspondence pairing of regrouped regions
- Validation of a snapshot against calibrated ``ComparisonSettings``
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from .correspondence import CorrespondenceMatcher, CorrespondenceOptions, reference_for
from .models import (
    BoundingRect,
    ComparisonMode,
    ComparisonResult,
    ComparisonSettings,
    ComparisonSummary,
    Difference,
    DifferenceType,
    PropertyChange,
    VisualNode,
    VisualNodeGroup,
    VisualTreeAnalysis,
)
from .selectors import IgnoreFilter
from .text_similarity import normalize_text, text_similarity

logger = structlog.get_logger()

MAX_PATH_LENGTH = 100
OPACITY_TOLERANCE = 0.1
POSITION_FIELDS = ("x", "y")
SIZE_FIELDS = ("width", "height")


@dataclass
class ElementComparisonOptions:
    """Options for raw element comparison."""

    tolerance: float = 2.0
    ignore_text: bool = False
    text_similarity_threshold: float = 0.8
    ignore_attributes: list[str] = field(default_factory=list)
    size_tolerance_percent: float | None = None

    @classmethod
    def from_settings(cls, settings: Any) -> "ElementComparisonOptions":
        return cls(
            tolerance=settings.element_tolerance,
            ignore_text=settings.ignore_text,
            text_similarity_threshold=settings.text_similarity_threshold,
        )


@dataclass
class GroupComparisonOptions:
    """Options for group comparison."""

    position_threshold: float = 5.0
    size_threshold: float = 5.0
    importance_threshold: float = 10.0
    size_tolerance_percent: float | None = None
    compare_labels: bool = True
    match_by_root_selector: bool = True
    match_unpaired: bool = False
    correspondence: CorrespondenceOptions = field(default_factory=CorrespondenceOptions)

    @property
    def bounds_threshold(self) -> float:
        return max(self.position_threshold, self.size_threshold)

    @classmethod
    def from_settings(cls, settings: Any) -> "GroupComparisonOptions":
        return cls(
            position_threshold=settings.position_threshold,
            size_threshold=settings.size_threshold,
            importance_threshold=settings.group_importance_threshold,
            compare_labels=not settings.ignore_text,
            match_by_root_selector=settings.match_by_root_selector,
            match_unpaired=settings.match_unpaired,
            correspondence=CorrespondenceOptions.from_settings(settings),
        )


def _bounds_changes(
    before: BoundingRect,
    after: BoundingRect,
    threshold: float,
    size_tolerance_percent: float | None = None,
) -> dict[str, PropertyChange]:
    changes = {}
    for name in POSITION_FIELDS + SIZE_FIELDS:
        old = getattr(before, name)
        new = getattr(after, name)
        delta = new - old
        if abs(delta) <= threshold:
            continue
        if name in SIZE_FIELDS and size_tolerance_percent is not None and old > 0:
            if abs(delta) / old * 100 <= size_tolerance_percent:
                continue
        changes[name] = PropertyChange(before=old, after=new, delta=delta)
    return changes


def classify_changes(changes: dict[str, PropertyChange]) -> DifferenceType | None:
    """Moved for position-only, resized for size-only, modified otherwise."""
    if not changes:
        return None
    names = set(changes)
    if names <= set(POSITION_FIELDS):
        return DifferenceType.MOVED
    if names <= set(SIZE_FIELDS):
        return DifferenceType.RESIZED
    return DifferenceType.MODIFIED


def similarity_score(changed: int, added: int, removed: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return 100.0 * max(0.0, 1 - (added + removed + changed) / total)


def element_key(node: VisualNode) -> str:
    """Raw-mode identity: ``tag#id.firstClass@x,y`` with rounded position."""
    key = node.tag
    if node.id:
        key += f"#{node.id}"
    if node.first_class:
        key += f".{node.first_class}"
    return f"{key}@{round(node.rect.x)},{round(node.rect.y)}"


@dataclass
class FlatGroup:
    """A group flattened out of its forest with its identity."""

    key: str
    path: str
    group: VisualNodeGroup
    depth: int


def flatten_groups(groups: Sequence[VisualNodeGroup]) -> dict[str, FlatGroup]:
    """Flatten a forest into ``key -> FlatGroup`` in depth-first order.

    ``path`` is the ``/``-joined ``type:label`` chain cut to 100 characters
    for display. ``key`` is a digest of the untruncated chain, with an
    ordinal suffix for siblings sharing type and label.
    """
    flat: dict[str, FlatGroup] = {}
    seen: dict[str, int] = {}
    stack: list[tuple[VisualNodeGroup, str, str, int]] = [
        (group, "", "", 1) for group in reversed(groups)
    ]
    while stack:
        group, parent_key, parent_path, depth = stack.pop()
        segment = f"{group.type}:{group.label}"
        full_path = f"{parent_path}/{segment}" if parent_path else segment
        digest = hashlib.sha1(f"{parent_key}/{segment}".encode("utf-8")).hexdigest()
        ordinal = seen.get(digest, 0)
        seen[digest] = ordinal + 1
        key = digest if ordinal == 0 else f"{digest}#{ordinal}"

        flat[key] = FlatGroup(key=key, path=full_path[:MAX_PATH_LENGTH], group=group, depth=depth)
        for child in reversed(group.child_groups()):
            stack.append((child, key, full_path, depth + 1))
    return flat


class LayoutComparator:
    """Diffs two snapshots at element or group granularity.

    The comparator never raises for well-formed snapshots; missing group
    data yields a vacuous 100% group result.
    """

    def __init__(
        self,
        element_options: ElementComparisonOptions | None = None,
        group_options: GroupComparisonOptions | None = None,
        ignore_selectors: Sequence[str] | None = None,
    ):
        self.element_options = element_options or ElementComparisonOptions()
        self.group_options = group_options or GroupComparisonOptions()
        self.ignore = IgnoreFilter(ignore_selectors)
        self.log = logger.bind(component="layout_comparator")

    @classmethod
    def from_settings(cls, settings: Any) -> "LayoutComparator":
        """Build a comparator from ``visc.config.Settings``."""
        return cls(
            element_options=ElementComparisonOptions.from_settings(settings),
            group_options=GroupComparisonOptions.from_settings(settings),
        )

    @classmethod
    def from_comparison_settings(
        cls,
        settings: ComparisonSettings,
        group_options: GroupComparisonOptions | None = None,
    ) -> "LayoutComparator":
        """Build a comparator from a calibrated tolerance profile.

        Position tolerance bounds both position and size deltas in pixels;
        size tolerance additionally allows relative size changes (percent).
        """
        base = group_options or GroupComparisonOptions()
        return cls(
            element_options=ElementComparisonOptions(
                tolerance=settings.position_tolerance,
                text_similarity_threshold=settings.text_similarity_threshold,
                size_tolerance_percent=settings.size_tolerance,
            ),
            group_options=GroupComparisonOptions(
                position_threshold=settings.position_tolerance,
                size_threshold=settings.position_tolerance,
                importance_threshold=settings.importance_threshold,
                size_tolerance_percent=settings.size_tolerance,
                compare_labels=base.compare_labels,
                match_by_root_selector=base.match_by_root_selector,
                match_unpaired=base.match_unpaired,
                correspondence=base.correspondence,
            ),
            ignore_selectors=settings.ignore_elements,
        )

    # ------------------------------------------------------------------
    # Raw element mode
    # ------------------------------------------------------------------

    def _element_changes(self, before: VisualNode, after: VisualNode) -> dict[str, PropertyChange]:
        options = self.element_options
        changes = _bounds_changes(
            before.rect, after.rect, options.tolerance, options.size_tolerance_percent
        )

        if not options.ignore_text:
            old_text = normalize_text(before.text)
            new_text = normalize_text(after.text)
            if old_text != new_text and text_similarity(old_text, new_text) < options.text_similarity_threshold:
                changes["text"] = PropertyChange(before=before.text, after=after.text)

        if (before.computed_style.visibility or "visible") != (after.computed_style.visibility or "visible"):
            changes["visibility"] = PropertyChange(
                before=before.computed_style.visibility,
                after=after.computed_style.visibility,
            )
        old_opacity = before.computed_style.opacity if before.computed_style.opacity is not None else 1.0
        new_opacity = after.computed_style.opacity if after.computed_style.opacity is not None else 1.0
        if abs(new_opacity - old_opacity) > OPACITY_TOLERANCE:
            changes["opacity"] = PropertyChange(
                before=old_opacity, after=new_opacity, delta=new_opacity - old_opacity
            )

        if before.class_name != after.class_name and "class" not in options.ignore_attributes:
            changes["className"] = PropertyChange(before=before.class_name, after=after.class_name)

        old_attributes = {**before.attributes, **before.aria_attributes}
        new_attributes = {**after.attributes, **after.aria_attributes}
        for name in sorted(set(old_attributes) | set(new_attributes)):
            if name in options.ignore_attributes:
                continue
            if old_attributes.get(name) != new_attributes.get(name):
                changes[f"attributes.{name}"] = PropertyChange(
                    before=old_attributes.get(name), after=new_attributes.get(name)
                )
        return changes

    def _index_elements(self, nodes: Sequence[VisualNode]) -> dict[str, list[VisualNode]]:
        index: dict[str, list[VisualNode]] = {}
        for node in nodes:
            index.setdefault(element_key(node), []).append(node)
        return index

    def compare_elements(
        self,
        baseline: VisualTreeAnalysis,
        current: VisualTreeAnalysis,
    ) -> ComparisonResult:
        """Diff the flat element lists of two snapshots."""
        baseline = self.ignore.apply(baseline)
        current = self.ignore.apply(current)
        base_index = self._index_elements(baseline.elements)
        current_index = self._index_elements(current.elements)

        differences: list[Difference] = []
        matched = changed = added = removed = 0

        for key, base_nodes in base_index.items():
            current_nodes = current_index.get(key, [])
            for ordinal, before in enumerate(base_nodes):
                path = key if ordinal == 0 else f"{key}[{ordinal}]"
                if ordinal >= len(current_nodes):
                    removed += 1
                    differences.append(Difference(DifferenceType.REMOVED, path, before=before))
                    continue
                matched += 1
                after = current_nodes[ordinal]
                changes = self._element_changes(before, after)
                difference_type = classify_changes(changes)
                if difference_type is not None:
                    changed += 1
                    differences.append(Difference(difference_type, path, before, after, changes))

        for key, current_nodes in current_index.items():
            already = len(base_index.get(key, []))
            for ordinal, after in enumerate(current_nodes[already:], start=already):
                path = key if ordinal == 0 else f"{key}[{ordinal}]"
                added += 1
                differences.append(Difference(DifferenceType.ADDED, path, after=after))

        total = matched + added + removed
        result = ComparisonResult(
            differences=differences,
            similarity=similarity_score(changed, added, removed, total),
            summary=ComparisonSummary(total, changed, added, removed),
            mode=ComparisonMode.ELEMENTS,
        )
        self.log.debug("Compared elements", total=total, differences=len(differences))
        return result

    # ------------------------------------------------------------------
    # Group mode
    # ------------------------------------------------------------------

    def _group_changes(self, before: VisualNodeGroup, after: VisualNodeGroup) -> dict[str, PropertyChange]:
        options = self.group_options
        changes = _bounds_changes(
            before.bounds, after.bounds, options.bounds_threshold, options.size_tolerance_percent
        )
        if len(before.children) != len(after.children):
            changes["childCount"] = PropertyChange(
                before=len(before.children),
                after=len(after.children),
                delta=len(after.children) - len(before.children),
            )
        importance_delta = after.importance - before.importance
        if abs(importance_delta) > options.importance_threshold:
            changes["importance"] = PropertyChange(
                before=before.importance, after=after.importance, delta=importance_delta
            )
        if options.compare_labels and before.label != after.label:
            changes["label"] = PropertyChange(before=before.label, after=after.label)
        return changes

    def _pair_leftovers(
        self,
        removed: list[FlatGroup],
        added: list[FlatGroup],
        baseline: VisualTreeAnalysis,
    ) -> list[tuple[FlatGroup, FlatGroup]]:
        """Pair unmatched groups by root selector, then by correspondence."""
        pairs: list[tuple[FlatGroup, FlatGroup]] = []
        options = self.group_options

        if options.match_by_root_selector:
            for old in list(removed):
                selector = old.group.root_selector
                if not selector:
                    continue
                new = next((a for a in added if a.group.root_selector == selector), None)
                if new is not None:
                    pairs.append((old, new))
                    removed.remove(old)
                    added.remove(new)

        if options.match_unpaired and removed and added:
            matcher = CorrespondenceMatcher(options.correspondence)
            by_group = {id(a.group): a for a in added}
            matches = matcher.match(
                [r.group for r in removed],
                [a.group for a in added],
                reference_for(baseline, options.correspondence),
            )
            by_baseline = {id(r.group): r for r in removed}
            for match in matches:
                old = by_baseline[id(match.baseline)]
                new = by_group[id(match.current)]
                pairs.append((old, new))
                removed.remove(old)
                added.remove(new)
        return pairs

    def compare_groups(
        self,
        baseline: VisualTreeAnalysis,
        current: VisualTreeAnalysis,
    ) -> ComparisonResult:
        """Diff the group forests of two snapshots."""
        if not baseline.has_groups or not current.has_groups:
            self.log.debug("Group data missing, returning vacuous result")
            return ComparisonResult(mode=ComparisonMode.GROUPS)

        baseline = self.ignore.apply(baseline)
        current = self.ignore.apply(current)
        base_flat = flatten_groups(baseline.visual_node_groups)
        current_flat = flatten_groups(current.visual_node_groups)

        pairs = [(base_flat[k], current_flat[k]) for k in base_flat if k in current_flat]
        removed = [g for k, g in base_flat.items() if k not in current_flat]
        added = [g for k, g in current_flat.items() if k not in base_flat]
        pairs.extend(self._pair_leftovers(removed, added, baseline))

        differences: list[Difference] = []
        changed = 0
        for old, new in pairs:
            changes = self._group_changes(old.group, new.group)
            difference_type = classify_changes(changes)
            if difference_type is not None:
                changed += 1
                differences.append(Difference(difference_type, old.path, old.group, new.group, changes))
        for old in removed:
            differences.append(Difference(DifferenceType.REMOVED, old.path, before=old.group))
        for new in added:
            differences.append(Difference(DifferenceType.ADDED, new.path, after=new.group))

        total = len(pairs) + len(removed) + len(added)
        result = ComparisonResult(
            differences=differences,
            similarity=similarity_score(changed, len(added), len(removed), total),
            summary=ComparisonSummary(total, changed, len(added), len(removed)),
            mode=ComparisonMode.GROUPS,
        )
        self.log.debug(
            "Compared groups",
            total=total,
            changed=changed,
            added=len(added),
            removed=len(removed),
        )
        return result

    def compare(
        self,
        baseline: VisualTreeAnalysis,
        current: VisualTreeAnalysis,
    ) -> ComparisonResult:
        """Compare in group mode when both snapshots carry groups, else raw mode."""
        if baseline.has_groups and current.has_groups:
            return self.compare_groups(baseline, current)
        return self.compare_elements(baseline, current)


def compare_layout_trees(
    baseline: VisualTreeAnalysis,
    current: VisualTreeAnalysis,
    options: ElementComparisonOptions | None = None,
) -> ComparisonResult:
    """Raw element comparison with the given options."""
    return LayoutComparator(element_options=options).compare_elements(baseline, current)


def compare_visual_node_groups(
    baseline: VisualTreeAnalysis,
    current: VisualTreeAnalysis,
    options: GroupComparisonOptions | None = None,
) -> ComparisonResult:
    """Group comparison with the given options."""
    return LayoutComparator(group_options=options).compare_groups(baseline, current)


# ----------------------------------------------------------------------
# Validation against calibrated settings
# ----------------------------------------------------------------------


class ViolationType(str, Enum):
    POSITION = "position"
    SIZE = "size"
    EXISTENCE = "existence"


class ViolationSeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Violation:
    """A tolerance breach found while validating a snapshot."""

    path: str
    type: ViolationType
    expected: float
    actual: float
    severity: ViolationSeverity

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type.value,
            "expected": self.expected,
            "actual": self.actual,
            "severity": self.severity.value,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    similarity: float
    violations: list[Violation] = field(default_factory=list)
    total_elements: int = 0
    changed_elements: int = 0

    @property
    def critical_violations(self) -> int:
        return sum(1 for v in self.violations if v.severity == ViolationSeverity.HIGH)

    @property
    def warnings(self) -> int:
        return sum(1 for v in self.violations if v.severity == ViolationSeverity.MEDIUM)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "similarity": self.similarity,
            "violations": [v.to_dict() for v in self.violations],
            "summary": {
                "totalElements": self.total_elements,
                "changedElements": self.changed_elements,
                "criticalViolations": self.critical_violations,
                "warnings": self.warnings,
            },
        }


def _severity(actual: float, expected: float) -> ViolationSeverity:
    return ViolationSeverity.HIGH if actual > expected * 2 else ViolationSeverity.MEDIUM


def validate_with_settings(
    baseline: VisualTreeAnalysis,
    layout: VisualTreeAnalysis,
    settings: ComparisonSettings,
) -> ValidationResult:
    """Check ``layout`` against ``baseline`` under a calibrated tolerance profile.

    Every reported difference is scored from 100, losing 25 per violation;
    the result is invalid when any violation is more than twice its tolerance.
    """
    comparison = LayoutComparator.from_comparison_settings(settings).compare(baseline, layout)

    violations: list[Violation] = []
    total_score = 0.0
    for difference in comparison.differences:
        score = 100.0
        if difference.type in (DifferenceType.ADDED, DifferenceType.REMOVED):
            violations.append(Violation(
                difference.path, ViolationType.EXISTENCE, 0, 1, ViolationSeverity.MEDIUM
            ))
            score -= 25
            total_score += score
            continue

        dx, dy = difference.position_delta
        drift = (dx ** 2 + dy ** 2) ** 0.5
        if drift > settings.position_tolerance:
            violations.append(Violation(
                difference.path,
                ViolationType.POSITION,
                settings.position_tolerance,
                drift,
                _severity(drift, settings.position_tolerance),
            ))
            score -= 25

        dw, dh = difference.size_delta
        if dw or dh:
            old = difference.before
            old_bounds = old.bounds if isinstance(old, VisualNodeGroup) else old.rect
            width_ratio = abs(dw) / (old_bounds.width or 1)
            height_ratio = abs(dh) / (old_bounds.height or 1)
            size_change = max(width_ratio, height_ratio) * 100
            if size_change > settings.size_tolerance:
                violations.append(Violation(
                    difference.path,
                    ViolationType.SIZE,
                    settings.size_tolerance,
                    size_change,
                    _severity(size_change, settings.size_tolerance),
                ))
                score -= 25
        total_score += score

    checked = len(comparison.differences)
    result = ValidationResult(
        is_valid=not any(v.severity == ViolationSeverity.HIGH for v in violations),
        similarity=total_score / checked if checked else 100.0,
        violations=violations,
        total_elements=comparison.summary.total_elements,
        changed_elements=comparison.summary.total_changed,
    )
    logger.debug(
        "Validated layout",
        violations=len(violations),
        critical=result.critical_violations,
    )
    return result
