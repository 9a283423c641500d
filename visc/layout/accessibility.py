"""Accessibility identity of groups.

Restyled or regrouped regions often lose their path identity and move far
enough to defeat position matching, while their ARIA attributes and
landmark tags survive. This module matches groups on those attributes:

- aria-label (0.95), aria-labelledby (0.92), aria-describedby (0.90)
- id (0.93)
- Landmark tags: main/header/footer/nav/aside (0.90),
  article/section/form/dialog/figure (0.80), other semantic tags (0.70)
- Roles: main/banner/contentinfo/search/form (0.88), other roles (0.75)

A shared tag and role raises confidence by 10% (capped at 0.98). When the
structural signatures of both groups overlap by more than 0.8, a tenth of
the confidence is replaced by that overlap.
"""

from dataclasses import dataclass, field
from typing import Any

from .models import VisualNode, VisualNodeGroup
from .selectors import is_identifier, quote_attribute_value
from .text_similarity import jaccard_similarity

SEMANTIC_TAGS = frozenset({
    "nav", "main", "header", "footer", "article", "section", "aside",
    "figure", "figcaption", "details", "summary", "dialog", "menu",
    "form", "fieldset", "legend", "label", "output", "progress", "meter",
    "time", "mark", "address", "blockquote", "cite", "code", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6",
})
LANDMARK_TAGS = ("main", "header", "footer", "nav", "aside")
SECTIONING_TAGS = ("article", "section", "form", "dialog", "figure")
LANDMARK_ROLES = ("main", "banner", "contentinfo", "search", "form")

# Correspondences must be strictly more confident than this.
MIN_CONFIDENCE = 0.7
STRUCTURE_DEPTH = 3
STRUCTURE_MATCH = 0.8
MAX_BOOSTED_CONFIDENCE = 0.98


@dataclass
class AccessibilityAttributes:
    """First occurrence of each accessibility attribute within a group.

    Attributes:
        structure: ``tag[role=...]`` signatures of nodes in the top levels of
            the group, semantic tags wrapped in ``<>``
    """

    aria_label: str | None = None
    aria_labelledby: str | None = None
    aria_describedby: str | None = None
    role: str | None = None
    id: str | None = None
    semantic_tag: str | None = None
    structure: list[str] = field(default_factory=list)


@dataclass
class AccessibilityMatch:
    """Outcome of comparing two groups' accessibility attributes."""

    confidence: float
    reasons: list[str] = field(default_factory=list)
    identifier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence": self.confidence,
            "matchReason": list(self.reasons),
            "accessibilityIdentifier": self.identifier,
        }


def _record(attrs: AccessibilityAttributes, node: VisualNode, depth: int) -> None:
    tag = node.tag
    semantic = tag in SEMANTIC_TAGS
    if semantic and attrs.semantic_tag is None:
        attrs.semantic_tag = tag
    if attrs.aria_label is None:
        attrs.aria_label = node.aria_label or node.aria_attributes.get("aria-label") or None
    if attrs.aria_labelledby is None:
        attrs.aria_labelledby = node.aria_attributes.get("aria-labelledby") or None
    if attrs.aria_describedby is None:
        attrs.aria_describedby = node.aria_attributes.get("aria-describedby") or None
    if attrs.role is None and node.role:
        attrs.role = node.role
    if attrs.id is None and node.id:
        attrs.id = node.id
    if depth < STRUCTURE_DEPTH:
        signature = f"{tag}[role={node.role}]" if node.role else tag
        attrs.structure.append(f"<{signature}>" if semantic else signature)


def extract_accessibility_attributes(group: VisualNodeGroup) -> AccessibilityAttributes:
    """Collect accessibility attributes from the nodes of ``group`` in document order."""
    attrs = AccessibilityAttributes()
    stack: list[tuple[Any, int]] = [(child, 1) for child in reversed(group.children)]
    while stack:
        item, depth = stack.pop()
        if isinstance(item, VisualNodeGroup):
            stack.extend((child, depth + 1) for child in reversed(item.children))
        else:
            _record(attrs, item, depth)
    return attrs


def structure_similarity(structure1: list[str], structure2: list[str]) -> float:
    """Jaccard overlap of two structural signatures; 0 when either is empty."""
    if not structure1 or not structure2:
        return 0.0
    return jaccard_similarity(structure1, structure2)


def match_accessibility_attributes(
    attrs1: AccessibilityAttributes,
    attrs2: AccessibilityAttributes,
) -> AccessibilityMatch | None:
    """Score two attribute sets; None when they share no accessibility signal."""
    reasons: list[str] = []
    confidence = 0.0
    identifier = None

    if attrs1.aria_label and attrs1.aria_label == attrs2.aria_label:
        reasons.append(f'aria-label="{attrs1.aria_label}"')
        confidence = 0.95
        identifier = f'aria-label="{attrs1.aria_label}"'

    if attrs1.aria_labelledby and attrs1.aria_labelledby == attrs2.aria_labelledby:
        reasons.append(f'aria-labelledby="{attrs1.aria_labelledby}"')
        confidence = max(confidence, 0.92)
        identifier = identifier or f'aria-labelledby="{attrs1.aria_labelledby}"'

    if attrs1.aria_describedby and attrs1.aria_describedby == attrs2.aria_describedby:
        reasons.append(f'aria-describedby="{attrs1.aria_describedby}"')
        confidence = max(confidence, 0.90)
        identifier = identifier or f'aria-describedby="{attrs1.aria_describedby}"'

    same_tag = bool(attrs1.semantic_tag) and attrs1.semantic_tag == attrs2.semantic_tag
    if same_tag:
        reasons.append(f'semantic-tag="{attrs1.semantic_tag}"')
        if attrs1.semantic_tag in LANDMARK_TAGS:
            tag_confidence = 0.90
        elif attrs1.semantic_tag in SECTIONING_TAGS:
            tag_confidence = 0.80
        else:
            tag_confidence = 0.70
        confidence = max(confidence, tag_confidence)
        identifier = identifier or attrs1.semantic_tag

    same_role = bool(attrs1.role) and attrs1.role == attrs2.role
    if same_role:
        reasons.append(f'role="{attrs1.role}"')
        confidence = max(confidence, 0.88 if attrs1.role in LANDMARK_ROLES else 0.75)
        identifier = identifier or f'role="{attrs1.role}"'

    if attrs1.id and attrs1.id == attrs2.id:
        reasons.append(f'id="{attrs1.id}"')
        confidence = max(confidence, 0.93)
        identifier = identifier or f"#{attrs1.id}"

    if same_tag and same_role:
        confidence = min(confidence * 1.1, MAX_BOOSTED_CONFIDENCE)
        reasons.append("semantic+role-match")

    if confidence > 0:
        similarity = structure_similarity(attrs1.structure, attrs2.structure)
        if similarity > STRUCTURE_MATCH:
            reasons.append(f"structural-similarity={similarity:.2f}")
            confidence = confidence * 0.9 + similarity * 0.1

    if confidence == 0:
        return None
    return AccessibilityMatch(confidence=confidence, reasons=reasons, identifier=identifier)


def match_groups_by_accessibility(
    group1: VisualNodeGroup,
    group2: VisualNodeGroup,
) -> AccessibilityMatch | None:
    return match_accessibility_attributes(
        extract_accessibility_attributes(group1),
        extract_accessibility_attributes(group2),
    )


def generate_accessibility_selector(group: VisualNodeGroup) -> str | None:
    """CSS selector for ``group`` built from its accessibility attributes.

    Priority: id, aria-label, aria-labelledby, semantic tag with role,
    landmark tag, role, semantic tag with a child class, then the first
    child's class or tag.
    """
    attrs = extract_accessibility_attributes(group)

    if attrs.id:
        if is_identifier(attrs.id):
            return f"#{attrs.id}"
        return f'[id="{quote_attribute_value(attrs.id)}"]'
    if attrs.aria_label:
        return f'[aria-label="{quote_attribute_value(attrs.aria_label)}"]'
    if attrs.aria_labelledby:
        return f'[aria-labelledby="{quote_attribute_value(attrs.aria_labelledby)}"]'
    if attrs.semantic_tag and attrs.role:
        return f'{attrs.semantic_tag}[role="{quote_attribute_value(attrs.role)}"]'
    if attrs.semantic_tag in LANDMARK_TAGS:
        return attrs.semantic_tag
    if attrs.role:
        return f'[role="{quote_attribute_value(attrs.role)}"]'
    nodes = group.child_nodes()
    if attrs.semantic_tag:
        for node in nodes:
            if node.first_class:
                return f"{attrs.semantic_tag}.{node.first_class}"
        return attrs.semantic_tag
    if not nodes:
        return None
    if nodes[0].first_class:
        return f".{nodes[0].first_class}"
    return nodes[0].tag
