"""CSS-like selectors for re-identifying regions across snapshots.

Key Features:
- Root selector generation for groups (id > data-* > aria-label > tag/role > tag.class)
- ``:nth-of-type`` disambiguation only when several nodes share tag and class
- Matching of the simple selector subset emitted by calibration
- Removal of ignored elements and groups from a snapshot before diffing
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import structlog

from .geometry import union_rect
from .models import VisualNode, VisualNodeGroup, VisualTreeAnalysis

logger = structlog.get_logger()

SEMANTIC_TAGS = ("main", "header", "footer", "nav", "aside", "article", "section")
PREFERRED_DATA_ATTRIBUTES = ("data-testid", "data-test-id", "data-id")
GROUP_LABEL_ATTRIBUTE = "data-visual-label"

_IDENTIFIER = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")
_SELECTOR_TOKEN = re.compile(
    r"""
    (?P<tag>^[A-Za-z][A-Za-z0-9-]*)
    |\#(?P<id>[A-Za-z0-9_-]+)
    |\.(?P<cls>[A-Za-z0-9_-]+)
    |\[(?P<attr>[A-Za-z0-9_:-]+)(?:="(?P<value>(?:[^"\\]|\\.)*)")?\]
    |:nth-of-type\((?P<nth>\d+)\)
    """,
    re.VERBOSE,
)


def is_identifier(value: str | None) -> bool:
    """Check whether ``value`` can be written bare after ``#`` or ``.``."""
    return bool(value) and _IDENTIFIER.match(value) is not None


def quote_attribute_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _unquote(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def _data_attribute(node: VisualNode) -> tuple[str, str] | None:
    attributes = {**node.attributes, **node.aria_attributes}
    for key in PREFERRED_DATA_ATTRIBUTES:
        if attributes.get(key):
            return key, attributes[key]
    for key in sorted(attributes):
        if key.startswith("data-") and attributes[key]:
            return key, attributes[key]
    return None


def generate_node_selector(
    node: VisualNode,
    context: Sequence[VisualNode] | None = None,
) -> str:
    """Build a selector identifying ``node``.

    Args:
        node: Node to identify
        context: Nodes the selector must disambiguate against; an
            ``:nth-of-type`` suffix is added only when more than one of them
            shares the node's tag and first class.

    Returns:
        Selector string, never empty
    """
    if node.id:
        if is_identifier(node.id):
            return f"#{node.id}"
        return f'[id="{quote_attribute_value(node.id)}"]'

    data_attribute = _data_attribute(node)
    if data_attribute:
        key, value = data_attribute
        return f'[{key}="{quote_attribute_value(value)}"]'

    if node.aria_label:
        return f'[aria-label="{quote_attribute_value(node.aria_label)}"]'

    tag = node.tag or "div"
    if tag in SEMANTIC_TAGS and node.role and node.role not in ("none", "presentation"):
        return f'{tag}[role="{node.role}"]'

    selector = tag
    first_class = node.first_class
    if is_identifier(first_class):
        selector += f".{first_class}"

    if context:
        siblings = [
            n for n in context
            if n.tag == node.tag and n.first_class == node.first_class
        ]
        if len(siblings) > 1:
            index = next(
                (i for i, n in enumerate(siblings) if n is node),
                next((i for i, n in enumerate(siblings) if n == node), 0),
            )
            selector += f":nth-of-type({index + 1})"

    return selector


def find_root_node(group: VisualNodeGroup) -> VisualNode | None:
    """First node in depth-first child order."""
    return next(group.iter_nodes(), None)


def generate_root_selector(
    group: VisualNodeGroup,
    context: Sequence[VisualNode] | None = None,
) -> str | None:
    root = find_root_node(group)
    if root is None:
        return None
    return generate_node_selector(root, context)


@dataclass
class SimpleSelector:
    """Parsed compound selector (``tag#id.class[attr="v"]:nth-of-type(n)``)."""

    tag: str | None = None
    id: str | None = None
    classes: list[str] = field(default_factory=list)
    attributes: list[tuple[str, str | None]] = field(default_factory=list)
    nth_of_type: int | None = None

    @classmethod
    def parse(cls, selector: str) -> "SimpleSelector | None":
        """Parse ``selector``; None when it uses unsupported syntax."""
        text = selector.strip()
        if not text:
            return None

        parsed = cls()
        position = 0
        while position < len(text):
            match = _SELECTOR_TOKEN.match(text, position)
            if not match or match.end() == position:
                return None
            if match.group("tag") and position == 0:
                parsed.tag = match.group("tag").lower()
            elif match.group("id"):
                parsed.id = match.group("id")
            elif match.group("cls"):
                parsed.classes.append(match.group("cls"))
            elif match.group("attr"):
                value = match.group("value")
                parsed.attributes.append(
                    (match.group("attr"), _unquote(value) if value is not None else None)
                )
            elif match.group("nth"):
                parsed.nth_of_type = int(match.group("nth"))
            else:
                return None
            position = match.end()
        return parsed

    def matches_node(self, node: VisualNode, position: int | None = None) -> bool:
        """Check ``node`` against this selector.

        ``position`` is the node's 1-based index among same-tag nodes; the
        ``:nth-of-type`` part is only checked when it is known.
        """
        if self.tag and node.tag != self.tag:
            return False
        if self.id and node.id != self.id:
            return False
        classes = node.classes
        if any(c not in classes for c in self.classes):
            return False
        for name, value in self.attributes:
            actual = node.get_attribute(name)
            if actual is None or (value is not None and actual != value):
                return False
        if self.nth_of_type is not None and position is not None:
            return self.nth_of_type == position
        return True

    def matches_group(self, group: VisualNodeGroup) -> bool:
        """Groups are matched by their rendered label marker."""
        if self.tag or self.id or self.classes or not self.attributes:
            return False
        return all(
            name == GROUP_LABEL_ATTRIBUTE and value == group.label
            for name, value in self.attributes
        )


def matches_selector(node: VisualNode, selector: str, position: int | None = None) -> bool:
    parsed = SimpleSelector.parse(selector)
    return parsed is not None and parsed.matches_node(node, position)


class IgnoreFilter:
    """Removes elements and groups matching a list of ignore selectors."""

    def __init__(self, selectors: Sequence[str] | None):
        self.selectors = list(selectors or [])
        self.parsed = []
        for selector in self.selectors:
            parsed = SimpleSelector.parse(selector)
            if parsed is None:
                logger.warning("Unsupported ignore selector skipped", selector=selector)
                continue
            self.parsed.append((selector, parsed))

    def _positions(self, nodes: Sequence[VisualNode]) -> list[int]:
        counts: dict[str, int] = {}
        positions = []
        for node in nodes:
            counts[node.tag] = counts.get(node.tag, 0) + 1
            positions.append(counts[node.tag])
        return positions

    def node_ignored(self, node: VisualNode, position: int | None = None) -> bool:
        return any(p.matches_node(node, position) for _, p in self.parsed)

    def group_ignored(self, group: VisualNodeGroup) -> bool:
        return any(
            p.matches_group(group) or (group.root_selector and group.root_selector == s)
            for s, p in self.parsed
        )

    def filter_nodes(self, nodes: Sequence[VisualNode]) -> list[VisualNode]:
        if not self.parsed:
            return list(nodes)
        positions = self._positions(nodes)
        return [
            node for node, position in zip(nodes, positions)
            if not self.node_ignored(node, position)
        ]

    def filter_groups(self, groups: Sequence[VisualNodeGroup]) -> list[VisualNodeGroup]:
        """Drop ignored groups and nodes; groups left without children go too.

        A group that lost members has its bounds refitted to what remains, so
        an ignored element cannot move or resize the region it belonged to.
        """
        if not self.parsed:
            return list(groups)

        result = []
        for group in groups:
            if self.group_ignored(group):
                continue
            children = []
            pruned = False
            for child in group.children:
                if isinstance(child, VisualNodeGroup):
                    kept = self.filter_groups([child])
                    if not kept or kept[0].bounds != child.bounds:
                        pruned = True
                    children.extend(kept)
                elif self.node_ignored(child):
                    pruned = True
                else:
                    children.append(child)
            if group.children and not children:
                continue
            bounds = group.bounds
            if pruned:
                covered = union_rect(
                    c.bounds if isinstance(c, VisualNodeGroup) else c.rect
                    for c in children
                )
                if covered is not None:
                    bounds = replace(covered)
            result.append(replace(group, children=children, bounds=bounds))
        return result

    def apply(self, analysis: VisualTreeAnalysis) -> VisualTreeAnalysis:
        if not self.parsed:
            return analysis
        elements = self.filter_nodes(analysis.elements)
        groups = self.filter_groups(analysis.visual_node_groups)
        logger.debug(
            "Applied ignore selectors",
            selectors=len(self.parsed),
            elements_removed=len(analysis.elements) - len(elements),
        )
        return replace(analysis, elements=elements, visual_node_groups=groups)


def apply_ignore_selectors(
    analysis: VisualTreeAnalysis,
    selectors: Sequence[str] | None,
) -> VisualTreeAnalysis:
    """Return a copy of ``analysis`` without elements matching ``selectors``."""
    return IgnoreFilter(selectors).apply(analysis)
