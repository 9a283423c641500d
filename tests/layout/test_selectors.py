"""Tests for root selectors and ignore filtering."""

from visc.layout.models import BoundingRect, VisualNode, VisualNodeGroup
from visc.layout.selectors import (
    IgnoreFilter,
    SimpleSelector,
    apply_ignore_selectors,
    generate_node_selector,
    generate_root_selector,
    matches_selector,
)


class TestGenerateNodeSelector:
    """Tests for generate_node_selector."""

    def test_id_preferred(self):
        """Test an id wins over everything else."""
        node = VisualNode(tag_name="button", id="buy", class_name="btn", aria_label="Buy")

        assert generate_node_selector(node) == "#buy"

    def test_id_not_an_identifier(self):
        """Test ids that cannot follow '#' are quoted as attributes."""
        node = VisualNode(tag_name="div", id="1st item")

        assert generate_node_selector(node) == '[id="1st item"]'

    def test_data_attribute(self):
        """Test preferred data attributes come before aria-label."""
        node = VisualNode(
            tag_name="div",
            attributes={"data-testid": "cart", "data-other": "x"},
            aria_label="Cart",
        )

        assert generate_node_selector(node) == '[data-testid="cart"]'

    def test_aria_label(self):
        """Test aria-label selector with quotes escaped."""
        node = VisualNode(tag_name="div", aria_label='Say "hi"')

        assert generate_node_selector(node) == '[aria-label="Say \\"hi\\""]'

    def test_semantic_tag_with_role(self):
        """Test landmark tags with a role use tag[role]."""
        node = VisualNode(tag_name="NAV", role="navigation")

        assert generate_node_selector(node) == 'nav[role="navigation"]'

    def test_tag_and_class(self):
        """Test fallback to tag and first class."""
        node = VisualNode(tag_name="div", class_name="card shadow")

        assert generate_node_selector(node) == "div.card"

    def test_nth_of_type_only_when_ambiguous(self):
        """Test nth-of-type is added only when siblings share tag and class."""
        first = VisualNode(tag_name="li", class_name="item", text="one")
        second = VisualNode(tag_name="li", class_name="item", text="two")
        other = VisualNode(tag_name="li", class_name="special")

        assert generate_node_selector(second, [first, second, other]) == "li.item:nth-of-type(2)"
        assert generate_node_selector(other, [first, second, other]) == "li.special"

    def test_root_selector_from_first_node(self):
        """Test group root selector comes from the first descendant node."""
        group = VisualNodeGroup(
            type="content",
            label="Main",
            children=[VisualNode(tag_name="main", class_name="content"), VisualNode(tag_name="h1")],
        )

        assert generate_root_selector(group) == "main.content"
        assert generate_root_selector(VisualNodeGroup(type="group", label="Empty")) is None


class TestSimpleSelector:
    """Tests for SimpleSelector parsing and matching."""

    def test_parse_compound(self):
        """Test parsing of a compound selector."""
        parsed = SimpleSelector.parse('div#main.card.wide[data-id="7"]:nth-of-type(2)')

        assert parsed.tag == "div"
        assert parsed.id == "main"
        assert parsed.classes == ["card", "wide"]
        assert parsed.attributes == [("data-id", "7")]
        assert parsed.nth_of_type == 2

    def test_parse_unsupported(self):
        """Test combinators are rejected."""
        assert SimpleSelector.parse("div > span") is None
        assert SimpleSelector.parse("") is None

    def test_matches_node(self):
        """Test matching against node fields."""
        node = VisualNode(tag_name="span", id="clock", class_name="time live", attributes={"data-live": "1"})

        assert matches_selector(node, "#clock")
        assert matches_selector(node, "span.live")
        assert matches_selector(node, "[data-live]")
        assert matches_selector(node, '[data-live="1"]')
        assert not matches_selector(node, "div.live")
        assert not matches_selector(node, '[data-live="2"]')

    def test_nth_of_type_checked_when_position_known(self):
        """Test position is honoured only when supplied."""
        node = VisualNode(tag_name="li", class_name="item")

        assert matches_selector(node, "li.item:nth-of-type(2)")
        assert matches_selector(node, "li.item:nth-of-type(2)", position=2)
        assert not matches_selector(node, "li.item:nth-of-type(2)", position=1)

    def test_matches_group_label_marker(self):
        """Test groups match by label marker only."""
        group = VisualNodeGroup(type="navigation", label="Copyright")

        assert SimpleSelector.parse('[data-visual-label="Copyright"]').matches_group(group)
        assert not SimpleSelector.parse('[data-visual-label="Other"]').matches_group(group)
        assert not SimpleSelector.parse("footer").matches_group(group)


class TestIgnoreFilter:
    """Tests for ignore selector filtering."""

    def test_unsupported_selectors_skipped(self):
        """Test unsupported selectors are dropped instead of raising."""
        ignore = IgnoreFilter(["div > span", "#ok"])

        assert [s for s, _ in ignore.parsed] == ["#ok"]

    def test_filter_nodes_by_position(self):
        """Test nth-of-type uses document order among same-tag nodes."""
        items = [VisualNode(tag_name="li", text=str(i)) for i in range(3)]

        kept = IgnoreFilter(["li:nth-of-type(2)"]).filter_nodes(items)

        assert [n.text for n in kept] == ["0", "2"]

    def test_apply_drops_emptied_groups(self, page_snapshot):
        """Test ignoring a group's only node removes the group too."""
        filtered = apply_ignore_selectors(page_snapshot, ["#buy"])

        assert all(n.id != "buy" for n in filtered.elements)
        assert "Buy now" not in [g.label for g in filtered.iter_groups()]
        assert len(page_snapshot.elements) == 6

    def test_apply_by_root_selector(self, page_snapshot):
        """Test a group is dropped when its root selector is ignored."""
        filtered = apply_ignore_selectors(page_snapshot, ["footer"])

        assert "Copyright" not in [g.label for g in filtered.iter_groups()]
        assert len(filtered.visual_node_groups) == 2

    def test_apply_label_marker(self, page_snapshot):
        """Test the group label marker removes the labelled group."""
        filtered = apply_ignore_selectors(page_snapshot, ['[data-visual-label="Acme Store"]'])

        assert [g.label for g in filtered.visual_node_groups] == ["main", "Copyright"]

    def test_no_selectors_is_identity(self, page_snapshot):
        """Test an empty selector list returns the snapshot untouched."""
        assert apply_ignore_selectors(page_snapshot, None) is page_snapshot

    def test_filter_groups_refits_pruned_bounds(self):
        """Test a group that lost a member shrinks to its remaining members."""
        heading = VisualNode(tag_name="h2", rect=BoundingRect(0, 0, 200, 30), text="News")
        ticker = VisualNode(tag_name="span", id="ticker", rect=BoundingRect(20, 30, 1200, 20))
        group = VisualNodeGroup(
            type="section",
            label="News",
            bounds=BoundingRect(0, 0, 1220, 50),
            children=[heading, ticker],
        )

        filtered = IgnoreFilter(["#ticker"]).filter_groups([group])

        assert filtered[0].children == [heading]
        assert filtered[0].bounds == BoundingRect(0, 0, 200, 30)
        assert group.bounds == BoundingRect(0, 0, 1220, 50)

    def test_filter_groups_keeps_untouched_bounds(self):
        """Test groups without ignored members keep their captured bounds."""
        table = VisualNode(tag_name="table", rect=BoundingRect(0, 0, 400, 300))
        region = VisualNodeGroup(
            type="data-table",
            label="table",
            bounds=BoundingRect(0, 0, 1200, 300),
            children=[table],
        )

        filtered = IgnoreFilter(["#ticker"]).filter_groups([region])

        assert filtered[0].bounds == BoundingRect(0, 0, 1200, 300)
