"""Dedicated groups for scrollable and fixed-dimension regions.

Scroll containers hide part of their content, so their rendered rectangle
understates the region they own. This module turns such containers into
groups whose bounds cover the full scroll content, classifies them
(tables, code blocks, carousels, modals, dropdowns or plain scroll
directions) and nests scroll regions inside each other up to a depth limit.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from .geometry import containment_ratio
from .models import BoundingRect, VisualNode, VisualNodeGroup
from .selectors import generate_node_selector
from .text_similarity import truncate_text

logger = structlog.get_logger()

# Share of a node's area that must fall inside a region to count as its child.
CHILD_CONTAINMENT = 0.8


class OverflowType(str, Enum):
    """Semantic subtypes of scroll regions, most specific first."""

    DATA_TABLE = "data-table"
    CODE_BLOCK = "code-block"
    CAROUSEL = "carousel"
    MODAL = "modal"
    DROPDOWN = "dropdown"
    HORIZONTAL_SCROLL = "horizontal-scroll"
    VERTICAL_SCROLL = "vertical-scroll"
    BOTH_SCROLL = "both-scroll"
    FIXED_DIMENSION = "fixed-dimension"


class Flexibility(str, Enum):
    FIXED = "fixed"  # Width and height pinned
    SEMI_FIXED = "semi-fixed"  # One axis pinned
    FLEXIBLE = "flexible"


SCROLL_DIRECTION_TYPES = {
    OverflowType.HORIZONTAL_SCROLL.value,
    OverflowType.VERTICAL_SCROLL.value,
    OverflowType.BOTH_SCROLL.value,
    OverflowType.FIXED_DIMENSION.value,
}

SPECIFIC_OVERFLOW_TYPES = {
    OverflowType.DATA_TABLE.value,
    OverflowType.CODE_BLOCK.value,
    OverflowType.CAROUSEL.value,
    OverflowType.MODAL.value,
    OverflowType.DROPDOWN.value,
}


def type_specificity(group_type: str) -> int:
    """Rank group types: generic semantic < scroll/fixed < classified overflow."""
    if group_type in SPECIFIC_OVERFLOW_TYPES:
        return 2
    if group_type in SCROLL_DIRECTION_TYPES:
        return 1
    return 0


@dataclass
class OverflowOptions:
    """Options for overflow and fixed-dimension detection."""

    min_scroll_ratio: float = 0.1
    nesting_depth: int = 3
    detect_fixed_dimensions: bool = True
    semi_fixed_min_importance: float = 50.0

    @classmethod
    def from_settings(cls, settings: Any) -> "OverflowOptions":
        return cls(
            min_scroll_ratio=settings.min_scroll_ratio,
            nesting_depth=settings.overflow_nesting_depth,
        )


def _has_keyword(node: VisualNode, keywords: Sequence[str]) -> bool:
    class_name = (node.class_name or "").lower()
    return any(keyword in class_name for keyword in keywords)


def classify_overflow(
    node: VisualNode,
    horizontal: bool,
    vertical: bool,
    descendants: Sequence[VisualNode] = (),
) -> OverflowType:
    """Pick the semantic subtype of a scroll container."""
    role = (node.role or "").lower()
    tags = {d.tag for d in descendants}

    if node.tag == "table" or "table" in node.classes or role in ("table", "grid") or "table" in tags:
        return OverflowType.DATA_TABLE
    if node.tag in ("pre", "code") or _has_keyword(node, ("code", "highlight")) or "pre" in tags:
        return OverflowType.CODE_BLOCK
    if _has_keyword(node, ("carousel", "slider", "swiper")) or role == "slider":
        return OverflowType.CAROUSEL
    if node.tag == "dialog" or _has_keyword(node, ("modal", "dialog")) or role == "dialog":
        return OverflowType.MODAL
    if node.tag == "select" or _has_keyword(node, ("dropdown", "select", "menu")) or role in ("listbox", "menu"):
        return OverflowType.DROPDOWN

    if horizontal and vertical:
        return OverflowType.BOTH_SCROLL
    if horizontal:
        return OverflowType.HORIZONTAL_SCROLL
    return OverflowType.VERTICAL_SCROLL


def flexibility_of(node: VisualNode) -> Flexibility:
    if node.has_fixed_dimensions.both:
        return Flexibility.FIXED
    if node.has_fixed_dimensions.any:
        return Flexibility.SEMI_FIXED
    return Flexibility.FLEXIBLE


def expanded_bounds(node: VisualNode) -> BoundingRect:
    """Rendered rectangle grown to the full scroll content size."""
    rect = node.rect
    scroll = node.scroll_dimensions
    if scroll is None:
        return rect
    return BoundingRect(
        rect.x,
        rect.y,
        max(rect.width, scroll.scroll_width),
        max(rect.height, scroll.scroll_height),
    )


def region_importance(
    node: VisualNode,
    group_type: OverflowType,
    visible_ratio: float,
    child_count: int,
    bounds: BoundingRect,
) -> float:
    importance = node.importance
    if node.is_scrollable:
        importance += 10
    if group_type in (OverflowType.DATA_TABLE, OverflowType.MODAL):
        importance += 15
    elif group_type == OverflowType.CAROUSEL:
        importance += 10
    importance += (1 - visible_ratio) * 20
    if child_count > 10:
        importance += 10
    elif child_count > 5:
        importance += 5
    if bounds.area > 100000:
        importance += 10
    return min(100.0, importance)


class OverflowGrouper:
    """Builds groups for scroll containers and fixed-size containers."""

    def __init__(self, options: OverflowOptions | None = None):
        self.options = options or OverflowOptions()
        self.log = logger.bind(component="overflow_grouper")

    def _contained(
        self,
        index: int,
        bounds: BoundingRect,
        nodes: Sequence[VisualNode],
    ) -> list[int]:
        return [
            i for i, other in enumerate(nodes)
            if i != index and containment_ratio(other.rect, bounds) >= CHILD_CONTAINMENT
        ]

    def _scroll_region(
        self,
        index: int,
        nodes: Sequence[VisualNode],
        context: Sequence[VisualNode],
    ) -> tuple[VisualNodeGroup, list[int]] | None:
        node = nodes[index]
        scroll = node.scroll_dimensions
        if not node.is_scrollable or scroll is None:
            return None

        horizontal_ratio = scroll.horizontal_ratio
        vertical_ratio = scroll.vertical_ratio
        # Too little content is hidden for the region to matter.
        if min(horizontal_ratio, vertical_ratio) > 1 - self.options.min_scroll_ratio:
            return None

        bounds = expanded_bounds(node)
        members = self._contained(index, bounds, nodes)
        group_type = classify_overflow(
            node,
            horizontal=horizontal_ratio < 1,
            vertical=vertical_ratio < 1,
            descendants=[nodes[i] for i in members],
        )
        visible_ratio = min(horizontal_ratio, vertical_ratio)
        group = VisualNodeGroup(
            type=group_type.value,
            label=truncate_text(node.aria_label or node.text, 50) or node.tag,
            bounds=bounds,
            importance=region_importance(node, group_type, visible_ratio, len(members), bounds),
            children=[node] + [nodes[i] for i in members],
            root_selector=generate_node_selector(node, context),
            metadata={
                "overflow": {
                    "horizontal": horizontal_ratio < 1,
                    "vertical": vertical_ratio < 1,
                    "visibleRatio": {
                        "horizontal": round(horizontal_ratio, 4),
                        "vertical": round(vertical_ratio, 4),
                    },
                    "scrollWidth": scroll.scroll_width,
                    "scrollHeight": scroll.scroll_height,
                },
            },
        )
        return group, members

    def _fixed_region(
        self,
        index: int,
        nodes: Sequence[VisualNode],
        context: Sequence[VisualNode],
    ) -> VisualNodeGroup | None:
        node = nodes[index]
        flexibility = flexibility_of(node)
        if flexibility == Flexibility.FLEXIBLE or node.rect.area <= 0:
            return None
        if (
            flexibility == Flexibility.SEMI_FIXED
            and node.importance < self.options.semi_fixed_min_importance
        ):
            return None

        members = self._contained(index, node.rect, nodes)
        if not members:
            return None

        return VisualNodeGroup(
            type=OverflowType.FIXED_DIMENSION.value,
            label=truncate_text(node.aria_label or node.text, 50) or node.tag,
            bounds=node.rect,
            importance=node.importance,
            children=[node] + [nodes[i] for i in members],
            root_selector=generate_node_selector(node, context),
            metadata={
                "fixedDimensions": {
                    "flexibility": flexibility.value,
                    "width": node.has_fixed_dimensions.width,
                    "height": node.has_fixed_dimensions.height,
                    "declaredWidth": node.computed_style.width,
                    "declaredHeight": node.computed_style.height,
                },
            },
        )

    def _nest(self, regions: list[tuple[VisualNodeGroup, set[int], int]]) -> list[VisualNodeGroup]:
        """Nest scroll regions inside enclosing regions up to the depth limit."""
        ordered = sorted(
            range(len(regions)),
            key=lambda i: (-regions[i][0].bounds.area, regions[i][2]),
        )
        placed: list[tuple[VisualNodeGroup, set[int], int]] = []  # group, members, level
        top_level = []
        for position in ordered:
            group, members, container = regions[position]
            parent = None
            for candidate in reversed(placed):
                candidate_group, candidate_members, level = candidate
                if container in candidate_members and candidate_group.bounds.area > group.bounds.area:
                    parent = candidate
                    break

            if parent is None:
                top_level.append(group)
                placed.append((group, members | {container}, 1))
                continue

            parent_group, parent_members, level = parent
            if level >= self.options.nesting_depth:
                self.log.debug(
                    "Scroll region below nesting limit folded into parent",
                    parent=parent_group.type,
                    depth=level + 1,
                )
                continue

            owned = members | {container}
            # Nodes owned by the nested region leave the parent's direct children.
            owned_nodes = {id(c) for c in group.children}
            parent_group.children = [
                c for c in parent_group.children
                if isinstance(c, VisualNodeGroup) or id(c) not in owned_nodes
            ]
            parent_group.children.append(group)
            placed.append((group, owned, level + 1))
        return top_level

    def detect(
        self,
        nodes: Sequence[VisualNode],
        context: Sequence[VisualNode] | None = None,
    ) -> list[VisualNodeGroup]:
        """Find scroll and fixed-dimension regions among ``nodes``.

        Args:
            nodes: Candidate nodes in document order
            context: Nodes used to disambiguate root selectors (defaults to ``nodes``)

        Returns:
            Region groups, scroll regions nested up to ``nesting_depth``
        """
        context = nodes if context is None else context
        scroll_regions = []
        fixed_regions = []
        for index, node in enumerate(nodes):
            region = self._scroll_region(index, nodes, context)
            if region is not None:
                group, members = region
                scroll_regions.append((group, set(members), index))
            elif self.options.detect_fixed_dimensions:
                fixed = self._fixed_region(index, nodes, context)
                if fixed is not None:
                    fixed_regions.append(fixed)

        groups = self._nest(scroll_regions) + fixed_regions
        if groups:
            self.log.debug(
                "Detected overflow regions",
                scroll=len(scroll_regions),
                fixed=len(fixed_regions),
            )
        return groups
