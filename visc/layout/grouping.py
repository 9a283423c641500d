"""Semantic grouping of rendered nodes into visual regions.

This module turns the flat node list captured from a page into a forest of
``VisualNodeGroup`` regions that the comparator and flakiness detector work on.

Key Features:
- Importance-ordered proximity clustering anchored on each group's seed node
- Two-level containment hierarchy built from group bounds
- Dedicated scroll and fixed-dimension regions merged into the forest
- Stable root selectors for re-identifying regions across snapshots
- Repeated-pattern detection and forest statistics
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from .geometry import is_outside, overlap_ratio, union_rect
from .models import BoundingRect, VisualNode, VisualNodeGroup, VisualTreeAnalysis, Viewport
from .overflow import OverflowGrouper, OverflowOptions, type_specificity
from .selectors import generate_node_selector
from .text_similarity import truncate_text

logger = structlog.get_logger()

# Specialized regions replace a generic group above this overlap.
MERGE_OVERLAP = 0.8
# Repeated nodes must agree on width and height within this ratio.
PATTERN_SIZE_RATIO = 0.8


@dataclass
class GroupingOptions:
    """Options for the semantic grouping engine.

    Attributes:
        grouping_threshold: Proximity unit in pixels; nodes join a group whose
            anchor lies within five times this distance
        importance_threshold: Nodes below this importance never form groups
        viewport_only: Drop nodes lying entirely outside the viewport
        max_area_ratio: Nodes covering more than this share of the page are
            treated as generic containers
        label_max_length: Max characters of a group label
        detect_overflow: Run the scroll/fixed-dimension pass
        overflow: Options for that pass
    """

    grouping_threshold: float = 20.0
    importance_threshold: float = 10.0
    viewport_only: bool = False
    max_area_ratio: float = 0.8
    label_max_length: int = 50
    detect_overflow: bool = True
    overflow: OverflowOptions = field(default_factory=OverflowOptions)

    @property
    def attach_distance(self) -> float:
        return 5 * self.grouping_threshold

    @classmethod
    def from_settings(cls, settings: Any) -> "GroupingOptions":
        return cls(
            grouping_threshold=settings.grouping_threshold,
            importance_threshold=settings.importance_threshold,
            viewport_only=settings.viewport_only,
            max_area_ratio=settings.max_group_area_ratio,
            label_max_length=settings.label_max_length,
            detect_overflow=settings.detect_overflow,
            overflow=OverflowOptions.from_settings(settings),
        )


@dataclass
class _Cluster:
    seed: VisualNode
    anchor: tuple[float, float]
    bounds: BoundingRect
    members: list[int]


@dataclass
class LayoutPattern:
    """Nodes sharing tag, first class and roughly equal size."""

    tag_name: str
    class_name: str | None
    members: list[VisualNode]

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def average_size(self) -> tuple[float, float]:
        width = sum(n.rect.width for n in self.members) / self.count
        height = sum(n.rect.height for n in self.members) / self.count
        return (width, height)

    def to_dict(self) -> dict[str, Any]:
        width, height = self.average_size
        return {
            "tagName": self.tag_name,
            "className": self.class_name,
            "count": self.count,
            "averageSize": {"width": width, "height": height},
        }


class SemanticGroupingEngine:
    """Clusters a flat node list into a forest of semantic groups."""

    def __init__(self, options: GroupingOptions | None = None):
        """Initialize the engine.

        Args:
            options: Grouping options; defaults follow ``visc.config.Settings``
        """
        self.options = options or GroupingOptions()
        self.overflow = OverflowGrouper(self.options.overflow)
        self.log = logger.bind(component="semantic_grouping")

    def _visible_nodes(
        self,
        nodes: Sequence[VisualNode],
        viewport: Viewport | None,
    ) -> list[VisualNode]:
        if not self.options.viewport_only or viewport is None or viewport.area <= 0:
            return list(nodes)
        area = viewport.rect
        return [n for n in nodes if not is_outside(n.rect, area)]

    def _cluster(
        self,
        nodes: Sequence[VisualNode],
        reference_area: float,
    ) -> list[_Cluster]:
        order = sorted(range(len(nodes)), key=lambda i: (-nodes[i].importance, i))
        max_area = self.options.max_area_ratio * reference_area
        clusters: list[_Cluster] = []

        for index in order:
            node = nodes[index]
            if node.importance < self.options.importance_threshold:
                continue
            if reference_area > 0 and node.rect.area > max_area:
                continue

            nearest = None
            nearest_distance = self.options.attach_distance
            for cluster in clusters:
                distance = math.hypot(
                    node.rect.x - cluster.anchor[0], node.rect.y - cluster.anchor[1]
                )
                if distance < nearest_distance:
                    nearest = cluster
                    nearest_distance = distance

            if nearest is not None:
                nearest.members.append(index)
                nearest.bounds = nearest.bounds.union(node.rect)
            else:
                clusters.append(_Cluster(
                    seed=node,
                    anchor=(node.rect.x, node.rect.y),
                    bounds=node.rect,
                    members=[index],
                ))
        return clusters

    def _label(self, node: VisualNode) -> str:
        label = truncate_text(node.text, self.options.label_max_length)
        if not label:
            label = truncate_text(node.aria_label, self.options.label_max_length)
        return label or node.tag

    def _to_group(self, cluster: _Cluster, nodes: Sequence[VisualNode]) -> VisualNodeGroup:
        seed_index = cluster.members[0]
        rest = sorted(cluster.members[1:])
        return VisualNodeGroup(
            type=cluster.seed.semantic_type,
            label=self._label(cluster.seed),
            bounds=cluster.bounds,
            importance=cluster.seed.importance,
            children=[nodes[seed_index]] + [nodes[i] for i in rest],
            root_selector=generate_node_selector(cluster.seed, nodes),
        )

    def _build_hierarchy(self, groups: list[VisualNodeGroup]) -> list[VisualNodeGroup]:
        """Nest each group under the first larger top-level group containing it."""
        by_area = sorted(groups, key=lambda g: -g.bounds.area)
        top_level: list[VisualNodeGroup] = []
        for group in by_area:
            parent = next(
                (
                    candidate for candidate in top_level
                    if candidate.bounds.area > group.bounds.area
                    and candidate.bounds.contains(group.bounds)
                ),
                None,
            )
            if parent is None:
                top_level.append(group)
            else:
                parent.children.append(group)
        return top_level

    def _merge(
        self,
        forest: list[VisualNodeGroup],
        specialized: list[VisualNodeGroup],
    ) -> list[VisualNodeGroup]:
        """Merge specialized region groups into the general forest."""
        for region in specialized:
            replaced = False
            # (parent children list, index) of every group in the forest
            slots: list[tuple[list, int]] = []
            stack: list[list] = [forest]
            while stack:
                siblings = stack.pop()
                for i, child in enumerate(siblings):
                    if isinstance(child, VisualNodeGroup):
                        slots.append((siblings, i))
                        stack.append(child.children)

            for siblings, i in slots:
                generic = siblings[i]
                same_root = bool(region.root_selector) and region.root_selector == generic.root_selector
                overlapping = (
                    overlap_ratio(region.bounds, generic.bounds) > MERGE_OVERLAP
                    and type_specificity(region.type) > type_specificity(generic.type)
                )
                if not (same_root or overlapping):
                    continue

                siblings[i] = self._replace(generic, region)
                replaced = True
                self.log.debug(
                    "Specialized group replaced generic group",
                    generic_type=generic.type,
                    region_type=region.type,
                    by_selector=same_root,
                )
                break

            if not replaced:
                forest.append(region)
        return forest

    def _replace(self, generic: VisualNodeGroup, region: VisualNodeGroup) -> VisualNodeGroup:
        owned = {id(c) for c in region.iter_nodes()}
        extra = [
            c for c in generic.children
            if isinstance(c, VisualNodeGroup) or id(c) not in owned
        ]
        region.children = region.children + extra
        region.importance = max(region.importance, generic.importance)
        return region

    def _fit_bounds(self, forest: list[VisualNodeGroup]) -> None:
        """Grow every group's bounds to cover all of its descendants."""
        # Post-order: children are fitted before their parent.
        order: list[VisualNodeGroup] = []
        stack = list(forest)
        while stack:
            group = stack.pop()
            order.append(group)
            stack.extend(group.child_groups())

        for group in reversed(order):
            child_bounds = [
                c.bounds if isinstance(c, VisualNodeGroup) else c.rect
                for c in group.children
            ]
            covered = union_rect(child_bounds)
            if covered is not None:
                group.bounds = group.bounds.union(covered)

    def group(
        self,
        nodes: Sequence[VisualNode] | None,
        viewport: Viewport | None = None,
    ) -> list[VisualNodeGroup]:
        """Cluster ``nodes`` into a forest of semantic groups.

        Args:
            nodes: Captured nodes in document order
            viewport: Optional viewport for visibility filtering and the
                large-container cutoff

        Returns:
            Top-level groups; empty for empty input
        """
        candidates = self._visible_nodes(nodes or [], viewport)
        if not candidates:
            return []

        root = union_rect(n.rect for n in candidates)
        reference_area = viewport.area if viewport is not None and viewport.area > 0 else root.area

        clusters = self._cluster(candidates, reference_area)
        groups = [self._to_group(c, candidates) for c in clusters]
        forest = self._build_hierarchy(groups)

        if self.options.detect_overflow:
            specialized = self.overflow.detect(candidates)
            forest = self._merge(forest, specialized)

        self._fit_bounds(forest)
        forest.sort(key=lambda g: (g.bounds.y, g.bounds.x))

        self.log.debug(
            "Grouped nodes",
            nodes=len(candidates),
            clusters=len(clusters),
            top_level=len(forest),
        )
        return forest


def organize_into_semantic_groups(
    nodes: Sequence[VisualNode] | None,
    viewport: Viewport | None = None,
    options: GroupingOptions | None = None,
) -> list[VisualNodeGroup]:
    """Convenience wrapper around ``SemanticGroupingEngine.group``."""
    return SemanticGroupingEngine(options).group(nodes, viewport)


def detect_patterns(nodes: Sequence[VisualNode]) -> list[LayoutPattern]:
    """Find repeated nodes (same tag and first class, similar size)."""
    buckets: dict[tuple[str, str | None], list[VisualNode]] = {}
    for node in nodes:
        buckets.setdefault((node.tag, node.first_class), []).append(node)

    def similar(a: VisualNode, b: VisualNode) -> bool:
        for x, y in ((a.rect.width, b.rect.width), (a.rect.height, b.rect.height)):
            largest = max(x, y)
            if largest <= 0:
                continue
            if min(x, y) / largest <= PATTERN_SIZE_RATIO:
                return False
        return True

    patterns = []
    for (tag, class_name), members in buckets.items():
        remaining = list(members)
        while len(remaining) >= 2:
            reference = remaining[0]
            matched = [n for n in remaining if similar(reference, n)]
            if len(matched) >= 2:
                patterns.append(LayoutPattern(tag, class_name, matched))
            matched_ids = {id(n) for n in matched}
            remaining = [n for n in remaining if id(n) not in matched_ids]
    return patterns


def get_group_statistics(groups: Sequence[VisualNodeGroup]) -> dict[str, Any]:
    """Summarize a group forest."""
    all_groups = [g for top in groups for g in top.iter_groups()]
    by_type: dict[str, int] = {}
    for group in all_groups:
        by_type[group.type] = by_type.get(group.type, 0) + 1

    return {
        "groupCount": len(all_groups),
        "topLevelGroups": len(groups),
        "groupsByType": by_type,
        "maxDepth": max((g.depth() for g in groups), default=0),
        "averageChildrenPerGroup": (
            sum(len(g.children) for g in all_groups) / len(all_groups) if all_groups else 0.0
        ),
    }


def build_visual_tree_analysis(
    nodes: Sequence[VisualNode],
    url: str = "",
    timestamp: str = "",
    viewport: Viewport | None = None,
    options: GroupingOptions | None = None,
) -> VisualTreeAnalysis:
    """Group ``nodes`` and assemble a snapshot with statistics."""
    groups = organize_into_semantic_groups(nodes, viewport, options)
    statistics = {
        "totalElements": len(nodes),
        "patternCount": len(detect_patterns(nodes)),
        **get_group_statistics(groups),
    }
    return VisualTreeAnalysis(
        url=url,
        timestamp=timestamp,
        viewport=viewport or Viewport(),
        elements=list(nodes),
        visual_node_groups=groups,
        statistics=statistics,
    )
