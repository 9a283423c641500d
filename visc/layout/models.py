"""Layout data models for visual regression testing.

This module contains the dataclasses and enums exchanged between the
grouping engine, comparator, flakiness detector and calibration engine:
rendered nodes, semantic groups, snapshots, differences and comparison
settings. Every model serialises to the camelCase JSON shape produced by
the capture layer and accepts partial input when deserialising.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Union

import structlog

logger = structlog.get_logger()


class DifferenceType(str, Enum):
    """Kinds of differences reported by the comparator."""

    ADDED = "added"  # Present only in the current snapshot
    REMOVED = "removed"  # Present only in the baseline
    MODIFIED = "modified"  # Content, style or mixed bounds change
    MOVED = "moved"  # Only position changed
    RESIZED = "resized"  # Only size changed


class ComparisonMode(str, Enum):
    """Granularity a comparison ran at."""

    ELEMENTS = "elements"
    GROUPS = "groups"


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class BoundingRect:
    """Axis-aligned rectangle in page pixels.

    Negative coordinates and dimensions are clamped to zero, so
    ``right == x + width`` and ``bottom == y + height`` always hold.
    """

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def __post_init__(self) -> None:
        self.x = max(0.0, float(self.x))
        self.y = max(0.0, float(self.y))
        self.width = max(0.0, float(self.width))
        self.height = max(0.0, float(self.height))

    @property
    def top(self) -> float:
        return self.y

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        """Get center point."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        """Get area in pixels."""
        return self.width * self.height

    def union(self, other: "BoundingRect") -> "BoundingRect":
        """Smallest rectangle covering both rectangles."""
        left = min(self.left, other.left)
        top = min(self.top, other.top)
        right = max(self.right, other.right)
        bottom = max(self.bottom, other.bottom)
        return BoundingRect(left, top, right - left, bottom - top)

    def contains(self, other: "BoundingRect") -> bool:
        """Check whether ``other`` lies fully inside this rectangle."""
        return (
            other.left >= self.left
            and other.top >= self.top
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "top": self.top,
            "right": self.right,
            "bottom": self.bottom,
            "left": self.left,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BoundingRect":
        data = data or {}
        x = _number(data.get("x", data.get("left", 0)))
        y = _number(data.get("y", data.get("top", 0)))
        width = data.get("width")
        height = data.get("height")
        if width is None and "right" in data:
            width = _number(data["right"]) - x
        if height is None and "bottom" in data:
            height = _number(data["bottom"]) - y
        return cls(x=x, y=y, width=_number(width), height=_number(height))


@dataclass
class ComputedStyle:
    """Subset of computed CSS captured for each node."""

    display: str | None = None
    position: str | None = None
    overflow: str | None = None
    overflow_x: str | None = None
    overflow_y: str | None = None
    width: str | None = None
    height: str | None = None
    visibility: str | None = None
    opacity: float | None = None
    font_size: str | None = None

    _KEYS = {
        "display": "display",
        "position": "position",
        "overflow": "overflow",
        "overflow_x": "overflowX",
        "overflow_y": "overflowY",
        "width": "width",
        "height": "height",
        "visibility": "visibility",
        "opacity": "opacity",
        "font_size": "fontSize",
    }

    def to_dict(self) -> dict[str, Any]:
        return {
            wire: getattr(self, attr)
            for attr, wire in self._KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ComputedStyle":
        data = data or {}
        values = {attr: data.get(wire) for attr, wire in cls._KEYS.items()}
        if values["opacity"] is not None:
            values["opacity"] = _number(values["opacity"])
        return cls(**values)


@dataclass
class ScrollDimensions:
    """Full content size versus visible client size of a scroll container."""

    scroll_width: float = 0.0
    scroll_height: float = 0.0
    client_width: float = 0.0
    client_height: float = 0.0

    @property
    def horizontal_ratio(self) -> float:
        """Visible share of the content width (1.0 when nothing is hidden)."""
        if self.scroll_width <= 0:
            return 1.0
        return min(1.0, self.client_width / self.scroll_width)

    @property
    def vertical_ratio(self) -> float:
        """Visible share of the content height (1.0 when nothing is hidden)."""
        if self.scroll_height <= 0:
            return 1.0
        return min(1.0, self.client_height / self.scroll_height)

    def to_dict(self) -> dict[str, float]:
        return {
            "scrollWidth": self.scroll_width,
            "scrollHeight": self.scroll_height,
            "clientWidth": self.client_width,
            "clientHeight": self.client_height,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScrollDimensions":
        return cls(
            scroll_width=_number(data.get("scrollWidth", 0)),
            scroll_height=_number(data.get("scrollHeight", 0)),
            client_width=_number(data.get("clientWidth", 0)),
            client_height=_number(data.get("clientHeight", 0)),
        )


@dataclass
class FixedDimensions:
    """Whether width/height are pinned by CSS rather than by content."""

    width: bool = False
    height: bool = False

    @property
    def any(self) -> bool:
        return self.width or self.height

    @property
    def both(self) -> bool:
        return self.width and self.height

    def to_dict(self) -> dict[str, bool]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FixedDimensions":
        data = data or {}
        return cls(width=bool(data.get("width")), height=bool(data.get("height")))


# Tag / role / class keyword tables used to derive a node's semantic type.
_SEMANTIC_TAGS = {
    "nav": "navigation",
    "header": "navigation",
    "footer": "navigation",
    "main": "content",
    "article": "content",
    "section": "section",
    "aside": "section",
    "form": "interactive",
    "button": "interactive",
    "input": "interactive",
    "select": "interactive",
    "textarea": "interactive",
    "dialog": "interactive",
    "details": "interactive",
    "summary": "interactive",
}

_SEMANTIC_ROLES = {
    "navigation": "navigation",
    "search": "navigation",
    "banner": "navigation",
    "main": "content",
    "article": "content",
    "contentinfo": "content",
    "form": "interactive",
    "button": "interactive",
    "link": "interactive",
    "region": "section",
    "complementary": "section",
}

_SEMANTIC_CLASS_KEYWORDS = (
    (("nav", "menu"), "navigation"),
    (("content", "article"), "content"),
    (("sidebar", "aside"), "section"),
    (("container", "wrapper"), "container"),
)


@dataclass(frozen=True)
class VisualNode:
    """A rendered element as captured from the page.

    Nodes are produced by the capture layer and never mutated by the engines.
    """

    tag_name: str
    rect: BoundingRect = field(default_factory=BoundingRect)
    id: str | None = None
    class_name: str = ""
    role: str | None = None
    aria_label: str | None = None
    aria_attributes: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""
    computed_style: ComputedStyle = field(default_factory=ComputedStyle)
    is_interactive: bool = False
    is_scrollable: bool = False
    has_fixed_dimensions: FixedDimensions = field(default_factory=FixedDimensions)
    scroll_dimensions: ScrollDimensions | None = None
    importance: float = 0.0
    declared_semantic_type: str | None = None

    @property
    def tag(self) -> str:
        return (self.tag_name or "").lower()

    @property
    def classes(self) -> list[str]:
        return [c for c in (self.class_name or "").split() if c]

    @property
    def first_class(self) -> str | None:
        classes = self.classes
        return classes[0] if classes else None

    @property
    def semantic_type(self) -> str:
        """Semantic category used when this node seeds a group."""
        if self.declared_semantic_type:
            return self.declared_semantic_type
        if self.tag in _SEMANTIC_TAGS:
            return _SEMANTIC_TAGS[self.tag]
        if self.role and self.role in _SEMANTIC_ROLES:
            return _SEMANTIC_ROLES[self.role]
        class_name = (self.class_name or "").lower()
        for keywords, semantic_type in _SEMANTIC_CLASS_KEYWORDS:
            if any(keyword in class_name for keyword in keywords):
                return semantic_type
        if self.is_interactive:
            return "interactive"
        return "group"

    def get_attribute(self, name: str) -> str | None:
        """Look up a DOM attribute, including id, class and ARIA attributes."""
        if name == "id":
            return self.id
        if name == "class":
            return self.class_name or None
        if name == "role":
            return self.role
        if name == "aria-label":
            return self.aria_label or self.aria_attributes.get(name)
        if name in self.aria_attributes:
            return self.aria_attributes[name]
        return self.attributes.get(name)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "tagName": self.tag_name,
            "id": self.id,
            "className": self.class_name,
            "role": self.role,
            "ariaLabel": self.aria_label,
            "ariaAttributes": dict(self.aria_attributes),
            "attributes": dict(self.attributes),
            "textContent": self.text,
            "rect": self.rect.to_dict(),
            "computedStyle": self.computed_style.to_dict(),
            "isInteractive": self.is_interactive,
            "isScrollable": self.is_scrollable,
            "hasFixedDimensions": self.has_fixed_dimensions.to_dict(),
            "importance": self.importance,
        }
        if self.scroll_dimensions is not None:
            result["scrollDimensions"] = self.scroll_dimensions.to_dict()
        if self.declared_semantic_type:
            result["semanticType"] = self.declared_semantic_type
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisualNode":
        scroll = data.get("scrollDimensions")
        return cls(
            tag_name=data.get("tagName") or "div",
            rect=BoundingRect.from_dict(data.get("rect") or data.get("bounds")),
            id=data.get("id") or None,
            class_name=data.get("className") or "",
            role=data.get("role") or None,
            aria_label=data.get("ariaLabel") or None,
            aria_attributes=dict(data.get("ariaAttributes") or {}),
            attributes=dict(data.get("attributes") or {}),
            text=data.get("textContent", data.get("text")) or "",
            computed_style=ComputedStyle.from_dict(data.get("computedStyle")),
            is_interactive=bool(data.get("isInteractive", False)),
            is_scrollable=bool(data.get("isScrollable", False)),
            has_fixed_dimensions=FixedDimensions.from_dict(data.get("hasFixedDimensions")),
            scroll_dimensions=ScrollDimensions.from_dict(scroll) if scroll else None,
            importance=_number(data.get("importance", 0)),
            declared_semantic_type=data.get("semanticType") or None,
        )


GroupChild = Union[VisualNode, "VisualNodeGroup"]


@dataclass
class VisualNodeGroup:
    """A semantically labelled visual region.

    ``children`` is an ordered mix of nodes and nested groups. Callers tell
    them apart with ``isinstance`` or the ``child_groups``/``child_nodes``
    helpers.
    """

    type: str
    label: str
    bounds: BoundingRect = field(default_factory=BoundingRect)
    importance: float = 0.0
    children: list[GroupChild] = field(default_factory=list)
    root_selector: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def child_groups(self) -> list["VisualNodeGroup"]:
        return [c for c in self.children if isinstance(c, VisualNodeGroup)]

    def child_nodes(self) -> list[VisualNode]:
        return [c for c in self.children if isinstance(c, VisualNode)]

    def iter_nodes(self) -> Iterator[VisualNode]:
        """Yield every descendant node, depth first in child order."""
        stack: list[GroupChild] = list(reversed(self.children))
        while stack:
            child = stack.pop()
            if isinstance(child, VisualNodeGroup):
                stack.extend(reversed(child.children))
            else:
                yield child

    def iter_groups(self) -> Iterator["VisualNodeGroup"]:
        """Yield this group and every nested group, depth first."""
        stack: list[VisualNodeGroup] = [self]
        while stack:
            group = stack.pop()
            yield group
            stack.extend(reversed(group.child_groups()))

    def depth(self) -> int:
        """Number of group levels from this group down to its deepest subgroup."""
        deepest = 1
        stack: list[tuple[VisualNodeGroup, int]] = [(self, 1)]
        while stack:
            group, level = stack.pop()
            deepest = max(deepest, level)
            stack.extend((child, level + 1) for child in group.child_groups())
        return deepest

    def to_dict(self) -> dict[str, Any]:
        result = {
            "type": self.type,
            "label": self.label,
            "bounds": self.bounds.to_dict(),
            "importance": self.importance,
            "children": [child.to_dict() for child in self.children],
        }
        if self.root_selector:
            result["rootSelector"] = self.root_selector
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisualNodeGroup":
        children: list[GroupChild] = []
        for child in data.get("children") or []:
            # A child carrying its own children list is a nested group.
            if isinstance(child, dict) and "children" in child:
                children.append(VisualNodeGroup.from_dict(child))
            elif isinstance(child, dict):
                children.append(VisualNode.from_dict(child))
        return cls(
            type=data.get("type") or "group",
            label=data.get("label") or "",
            bounds=BoundingRect.from_dict(data.get("bounds")),
            importance=_number(data.get("importance", 0)),
            children=children,
            root_selector=data.get("rootSelector") or None,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Viewport:
    """Viewport dimensions and scroll offset at capture time."""

    width: float = 0.0
    height: float = 0.0
    scroll_x: float = 0.0
    scroll_y: float = 0.0

    @property
    def rect(self) -> BoundingRect:
        return BoundingRect(self.scroll_x, self.scroll_y, self.width, self.height)

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_dict(self) -> dict[str, float]:
        return {
            "width": self.width,
            "height": self.height,
            "scrollX": self.scroll_x,
            "scrollY": self.scroll_y,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Viewport":
        data = data or {}
        return cls(
            width=_number(data.get("width", 0)),
            height=_number(data.get("height", 0)),
            scroll_x=_number(data.get("scrollX", 0)),
            scroll_y=_number(data.get("scrollY", 0)),
        )


@dataclass
class VisualTreeAnalysis:
    """One captured snapshot of a page layout.

    ``has_groups`` records whether group data was captured at all, so an
    empty forest can be told apart from a snapshot without grouping.
    """

    url: str = ""
    timestamp: str = ""
    viewport: Viewport = field(default_factory=Viewport)
    elements: list[VisualNode] = field(default_factory=list)
    visual_node_groups: list[VisualNodeGroup] = field(default_factory=list)
    statistics: dict[str, Any] = field(default_factory=dict)
    has_groups: bool = True

    def iter_groups(self) -> Iterator[VisualNodeGroup]:
        for group in self.visual_node_groups:
            yield from group.iter_groups()

    def to_dict(self) -> dict[str, Any]:
        result = {
            "url": self.url,
            "timestamp": self.timestamp,
            "viewport": self.viewport.to_dict(),
            "elements": [e.to_dict() for e in self.elements],
            "statistics": dict(self.statistics),
        }
        if self.has_groups:
            result["visualNodeGroups"] = [g.to_dict() for g in self.visual_node_groups]
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisualTreeAnalysis":
        elements = data.get("elements")
        groups = data.get("visualNodeGroups")
        if elements is None:
            logger.warning("Snapshot has no elements, treating as empty", url=data.get("url"))
        return cls(
            url=data.get("url") or "",
            timestamp=str(data.get("timestamp") or ""),
            viewport=Viewport.from_dict(data.get("viewport")),
            elements=[VisualNode.from_dict(e) for e in elements or [] if isinstance(e, dict)],
            visual_node_groups=[
                VisualNodeGroup.from_dict(g) for g in groups or [] if isinstance(g, dict)
            ],
            statistics=dict(data.get("statistics") or {}),
            has_groups=groups is not None,
        )

    @classmethod
    def from_json(cls, payload: str) -> "VisualTreeAnalysis":
        return cls.from_dict(json.loads(payload))


@dataclass
class PropertyChange:
    """Before/after pair for one changed property."""

    before: Any
    after: Any
    delta: float | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {"before": self.before, "after": self.after}
        if self.delta is not None:
            result["delta"] = self.delta
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PropertyChange":
        return cls(before=data.get("before"), after=data.get("after"), delta=data.get("delta"))


def _payload_to_dict(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, VisualNodeGroup):
        # Nested children are left out of difference payloads.
        data = payload.to_dict()
        data["children"] = len(payload.children)
        return data
    return payload.to_dict()


@dataclass
class Difference:
    """A single difference between baseline and current snapshot."""

    type: DifferenceType
    path: str
    before: VisualNode | VisualNodeGroup | None = None
    after: VisualNode | VisualNodeGroup | None = None
    changes: dict[str, PropertyChange] = field(default_factory=dict)

    @property
    def position_delta(self) -> tuple[float, float]:
        dx = self.changes.get("x")
        dy = self.changes.get("y")
        return (
            dx.delta if dx is not None and dx.delta is not None else 0.0,
            dy.delta if dy is not None and dy.delta is not None else 0.0,
        )

    @property
    def size_delta(self) -> tuple[float, float]:
        dw = self.changes.get("width")
        dh = self.changes.get("height")
        return (
            dw.delta if dw is not None and dw.delta is not None else 0.0,
            dh.delta if dh is not None and dh.delta is not None else 0.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "path": self.path,
            "before": _payload_to_dict(self.before),
            "after": _payload_to_dict(self.after),
            "changes": {k: v.to_dict() for k, v in self.changes.items()},
        }


@dataclass
class ComparisonSummary:
    total_elements: int = 0
    total_changed: int = 0
    total_added: int = 0
    total_removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalElements": self.total_elements,
            "totalChanged": self.total_changed,
            "totalAdded": self.total_added,
            "totalRemoved": self.total_removed,
        }


@dataclass
class ComparisonResult:
    """Outcome of comparing two snapshots."""

    differences: list[Difference] = field(default_factory=list)
    similarity: float = 100.0
    summary: ComparisonSummary = field(default_factory=ComparisonSummary)
    mode: ComparisonMode = ComparisonMode.GROUPS

    @property
    def has_changes(self) -> bool:
        return bool(self.differences)

    def get_differences_by_type(self, difference_type: DifferenceType) -> list[Difference]:
        """Get all differences of a specific type."""
        return [d for d in self.differences if d.type == difference_type]

    def get_summary(self) -> str:
        """Get a human-readable summary of the comparison."""
        counts: dict[DifferenceType, int] = {}
        for difference in self.differences:
            counts[difference.type] = counts.get(difference.type, 0) + 1

        parts = [
            f"{counts[t]} {t.value}" for t in DifferenceType if counts.get(t)
        ]
        if not parts:
            return f"No layout changes detected ({self.summary.total_elements} {self.mode.value})"

        return f"{', '.join(parts)} ({self.similarity:.1f}% similar)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "differences": [d.to_dict() for d in self.differences],
            "similarity": self.similarity,
            "summary": self.summary.to_dict(),
            "mode": self.mode.value,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class ComparisonSettings:
    """Tolerance profile produced by calibration and consumed by comparison."""

    position_tolerance: float = 2.0
    size_tolerance: float = 5.0  # percent
    text_similarity_threshold: float = 0.8
    importance_threshold: float = 10.0
    ignore_elements: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "positionTolerance": self.position_tolerance,
            "sizeTolerance": self.size_tolerance,
            "textSimilarityThreshold": self.text_similarity_threshold,
            "importanceThreshold": self.importance_threshold,
        }
        if self.ignore_elements:
            result["ignoreElements"] = list(self.ignore_elements)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComparisonSettings":
        ignore = data.get("ignoreElements")
        return cls(
            position_tolerance=_number(data.get("positionTolerance", 2)),
            size_tolerance=_number(data.get("sizeTolerance", 5)),
            text_similarity_threshold=_number(data.get("textSimilarityThreshold", 0.8)),
            importance_threshold=_number(data.get("importanceThreshold", 10)),
            ignore_elements=list(ignore) if ignore else None,
        )
