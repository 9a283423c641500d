"""Shared fixtures for layout tests.

The sample page is a small storefront: a header with one link, a main
content area holding a heading and a buy button, and a footer. With default
grouping options it produces four groups: header, main (with the button
nested inside it) and footer at the top level.
"""

import pytest

from visc.layout.grouping import build_visual_tree_analysis
from visc.layout.models import (
    BoundingRect,
    ComputedStyle,
    FixedDimensions,
    ScrollDimensions,
    VisualNode,
    VisualNodeGroup,
    VisualTreeAnalysis,
    Viewport,
)


def _node(tag, x, y, width, height, importance=50.0, **kwargs):
    return VisualNode(
        tag_name=tag,
        rect=BoundingRect(x, y, width, height),
        importance=importance,
        **kwargs,
    )


def _page_nodes(dx=0.0, dy=0.0, footer_text="Copyright"):
    return [
        _node("header", dx, dy, 1280, 80, importance=90, text="Acme Store"),
        _node("a", 20 + dx, 20 + dy, 80, 30, importance=40, class_name="nav-link", text="Home", is_interactive=True),
        _node("main", dx, 120 + dy, 1280, 600, importance=80, class_name="content"),
        _node("h1", 40 + dx, 140 + dy, 600, 40, importance=60, text="Welcome"),
        _node("button", 40 + dx, 400 + dy, 120, 40, importance=50, id="buy", text="Buy now", is_interactive=True),
        _node("footer", dx, 740 + dy, 1280, 60, importance=70, text=footer_text),
    ]


@pytest.fixture
def make_node():
    """Factory for VisualNode instances: make_node(tag, x, y, w, h, importance=50, **fields)."""
    return _node


@pytest.fixture
def page_viewport():
    """Viewport the sample page was captured in."""
    return Viewport(width=1280, height=800)


@pytest.fixture
def page_nodes():
    """Captured nodes of the sample page in document order."""
    return _page_nodes()


@pytest.fixture
def make_page(page_viewport):
    """Factory building a grouped snapshot of the sample page.

    Accepts ``dx``/``dy`` to shift every node and ``footer_text`` to vary
    the footer content.
    """
    def build(dx=0.0, dy=0.0, footer_text="Copyright"):
        return build_visual_tree_analysis(
            _page_nodes(dx, dy, footer_text),
            url="https://shop.example.com",
            timestamp="2026-10-17T12:00:00Z",
            viewport=page_viewport,
        )

    return build


@pytest.fixture
def page_snapshot(make_page):
    """Grouped snapshot of the sample page."""
    return make_page()


@pytest.fixture
def static_samples(make_page):
    """Three identical captures of the sample page."""
    return [make_page() for _ in range(3)]


@pytest.fixture
def make_group_snapshot():
    """Factory for snapshots holding a single top-level group."""
    def build(bounds, group_type="content", label="Hero", root_selector=None, children=None):
        group = VisualNodeGroup(
            type=group_type,
            label=label,
            bounds=BoundingRect(**bounds),
            importance=50,
            children=list(children or []),
            root_selector=root_selector,
        )
        return VisualTreeAnalysis(
            url="https://example.com",
            viewport=Viewport(width=1920, height=1080),
            visual_node_groups=[group],
        )

    return build


@pytest.fixture
def table_scroller():
    """A horizontally scrolling wrapper and the wide table inside it."""
    wrapper = _node(
        "div", 0, 0, 400, 300,
        importance=30,
        class_name="table-wrapper",
        is_scrollable=True,
        computed_style=ComputedStyle(overflow_x="auto"),
        scroll_dimensions=ScrollDimensions(
            scroll_width=1200, scroll_height=300, client_width=400, client_height=300
        ),
    )
    table = _node("table", 0, 0, 1200, 300, importance=20)
    return [wrapper, table]


@pytest.fixture
def fixed_card():
    """A card pinned to 300x200 by CSS with a label inside it."""
    card = _node(
        "div", 0, 0, 300, 200,
        importance=40,
        class_name="card",
        has_fixed_dimensions=FixedDimensions(width=True, height=True),
        computed_style=ComputedStyle(width="300px", height="200px"),
    )
    caption = _node("span", 20, 20, 100, 20, importance=15, text="Card title")
    return [card, caption]
