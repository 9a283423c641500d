"""Tests for scroll and fixed-dimension region detection."""

from dataclasses import replace

import pytest

from visc.layout.models import FixedDimensions, ScrollDimensions
from visc.layout.overflow import (
    Flexibility,
    OverflowGrouper,
    OverflowOptions,
    OverflowType,
    classify_overflow,
    expanded_bounds,
    flexibility_of,
    type_specificity,
)


def _scroller(make_node, x, y, width, height, scroll_width=0, scroll_height=0, **kwargs):
    return make_node(
        "div", x, y, width, height,
        is_scrollable=True,
        scroll_dimensions=ScrollDimensions(
            scroll_width=scroll_width or width,
            scroll_height=scroll_height or height,
            client_width=width,
            client_height=height,
        ),
        **kwargs,
    )


class TestClassification:
    """Tests for overflow classification helpers."""

    @pytest.mark.parametrize(
        "fields,expected",
        [
            ({"tag_name": "table"}, OverflowType.DATA_TABLE),
            ({"tag_name": "pre"}, OverflowType.CODE_BLOCK),
            ({"class_name": "hero-carousel"}, OverflowType.CAROUSEL),
            ({"role": "dialog"}, OverflowType.MODAL),
            ({"class_name": "dropdown-list"}, OverflowType.DROPDOWN),
        ],
    )
    def test_specific_types(self, make_node, fields, expected):
        """Test semantic subtypes from tag, class and role."""
        fields = dict(fields)
        tag = fields.pop("tag_name", "div")
        node = make_node(tag, 0, 0, 100, 100, **fields)

        assert classify_overflow(node, horizontal=True, vertical=False) == expected

    def test_scroll_directions(self, make_node):
        """Test plain containers classify by scroll direction."""
        node = make_node("div", 0, 0, 100, 100)

        assert classify_overflow(node, True, True) == OverflowType.BOTH_SCROLL
        assert classify_overflow(node, True, False) == OverflowType.HORIZONTAL_SCROLL
        assert classify_overflow(node, False, True) == OverflowType.VERTICAL_SCROLL

    def test_descendant_table(self, make_node):
        """Test a table inside a plain wrapper makes it a data table."""
        wrapper = make_node("div", 0, 0, 100, 100)
        table = make_node("table", 0, 0, 300, 100)

        assert classify_overflow(wrapper, True, False, [table]) == OverflowType.DATA_TABLE

    def test_type_specificity(self):
        """Test classified overflow types outrank scroll types and generic groups."""
        assert type_specificity("data-table") == 2
        assert type_specificity("vertical-scroll") == 1
        assert type_specificity("content") == 0

    def test_flexibility(self, make_node):
        """Test flexibility from pinned dimensions."""
        fixed = make_node("div", 0, 0, 10, 10, has_fixed_dimensions=FixedDimensions(True, True))
        semi = make_node("div", 0, 0, 10, 10, has_fixed_dimensions=FixedDimensions(width=True))

        assert flexibility_of(fixed) == Flexibility.FIXED
        assert flexibility_of(semi) == Flexibility.SEMI_FIXED
        assert flexibility_of(make_node("div", 0, 0, 10, 10)) == Flexibility.FLEXIBLE

    def test_expanded_bounds(self, table_scroller):
        """Test bounds grow to the scroll content size."""
        wrapper, _ = table_scroller

        bounds = expanded_bounds(wrapper)

        assert (bounds.width, bounds.height) == (1200, 300)


class TestOverflowGrouper:
    """Tests for OverflowGrouper."""

    def test_data_table_region(self, table_scroller):
        """Test a scrolling table wrapper becomes a data-table region."""
        groups = OverflowGrouper().detect(table_scroller)

        assert len(groups) == 1
        region = groups[0]
        assert region.type == "data-table"
        assert region.children[0] is table_scroller[0]
        assert region.children[1] is table_scroller[1]
        assert region.metadata["overflow"]["horizontal"] is True
        assert region.metadata["overflow"]["vertical"] is False
        assert region.metadata["overflow"]["visibleRatio"]["horizontal"] == pytest.approx(0.3333)
        assert region.importance == pytest.approx(30 + 10 + 15 + (1 - 400 / 1200) * 20 + 10)

    def test_small_overflow_ignored(self, make_node):
        """Test containers hiding less than the minimum ratio are skipped."""
        node = _scroller(make_node, 0, 0, 100, 100, scroll_height=105)

        assert OverflowGrouper().detect([node]) == []

    def test_non_scrollable_ignored(self, make_node):
        """Test scroll dimensions alone do not make a region."""
        node = make_node(
            "div", 0, 0, 100, 100,
            scroll_dimensions=ScrollDimensions(scroll_height=500, client_width=100, client_height=100),
        )

        assert OverflowGrouper().detect([node]) == []

    def test_nested_scroll_regions(self, make_node):
        """Test an inner scroller nests inside the outer region."""
        outer = _scroller(make_node, 0, 0, 500, 500, scroll_height=2000)
        inner = _scroller(make_node, 10, 10, 200, 200, scroll_height=800, class_name="inner")

        groups = OverflowGrouper().detect([outer, inner])

        assert len(groups) == 1
        assert groups[0].type == "vertical-scroll"
        nested = groups[0].child_groups()
        assert len(nested) == 1
        assert nested[0].children[0] is inner
        assert inner not in groups[0].child_nodes()

    def test_nesting_depth_limit(self, make_node):
        """Test regions below the nesting limit are folded into their parent."""
        outer = _scroller(make_node, 0, 0, 500, 500, scroll_height=2000)
        inner = _scroller(make_node, 10, 10, 200, 200, scroll_height=800, class_name="inner")

        groups = OverflowGrouper(OverflowOptions(nesting_depth=1)).detect([outer, inner])

        assert len(groups) == 1
        assert groups[0].child_groups() == []
        assert inner in groups[0].child_nodes()

    def test_fixed_dimension_region(self, fixed_card):
        """Test a fixed-size card with content becomes a region."""
        groups = OverflowGrouper().detect(fixed_card)

        assert len(groups) == 1
        assert groups[0].type == "fixed-dimension"
        assert groups[0].root_selector == "div.card"
        assert groups[0].metadata["fixedDimensions"]["flexibility"] == "fixed"
        assert groups[0].metadata["fixedDimensions"]["declaredWidth"] == "300px"

    def test_semi_fixed_needs_importance(self, make_node):
        """Test semi-fixed containers must be important to form a region."""
        card = make_node("div", 0, 0, 300, 200, importance=20, has_fixed_dimensions=FixedDimensions(height=True))
        caption = make_node("span", 10, 10, 50, 20)

        assert OverflowGrouper().detect([card, caption]) == []

        important = replace(card, importance=60)
        assert len(OverflowGrouper().detect([important, caption])) == 1

    def test_fixed_without_children_ignored(self, make_node):
        """Test an empty fixed-size box is not a region."""
        card = make_node("div", 0, 0, 300, 200, has_fixed_dimensions=FixedDimensions(True, True))

        assert OverflowGrouper().detect([card]) == []

    def test_fixed_detection_disabled(self, fixed_card):
        """Test fixed-dimension detection can be switched off."""
        options = OverflowOptions(detect_fixed_dimensions=False)

        assert OverflowGrouper(options).detect(fixed_card) == []
