"""Tests for position-based group correspondence."""

import pytest

from visc.config import Settings
from visc.layout.correspondence import (
    CorrespondenceMatcher,
    CorrespondenceOptions,
    MatchStrategy,
    correspondence_score,
    find_correspondences,
    reference_for,
)
from visc.layout.models import BoundingRect, VisualNode, VisualNodeGroup, VisualTreeAnalysis

REFERENCE = BoundingRect(0, 0, 1920, 1080)


def _group(x, y, width, height, group_type="content", label="Region"):
    return VisualNodeGroup(type=group_type, label=label, bounds=BoundingRect(x, y, width, height))


class TestCorrespondenceScore:
    """Tests for correspondence_score."""

    def test_identical_groups(self):
        """Test identical groups score 1."""
        group = _group(100, 100, 200, 100)

        assert correspondence_score(group, group, REFERENCE) == pytest.approx(1.0)

    def test_type_mismatch_halves_type_term(self):
        """Test a type mismatch costs half the type weight."""
        a = _group(100, 100, 200, 100, group_type="content")
        b = _group(100, 100, 200, 100, group_type="navigation")

        assert correspondence_score(a, b, REFERENCE) == pytest.approx(0.9)

    def test_distance_capped(self):
        """Test distances beyond the reference diagonal contribute nothing."""
        a = _group(0, 0, 10, 10)
        b = _group(5000, 5000, 10, 10)

        assert correspondence_score(a, b, REFERENCE) == pytest.approx(0.2)


class TestCorrespondenceMatcher:
    """Tests for CorrespondenceMatcher."""

    def test_overlapping_groups_far_apart_match(self):
        """Test same-type groups overlapping heavily still match with centers 1000px apart."""
        a = _group(0, 0, 3000, 100)
        b = _group(1000, 0, 3000, 100)

        matches = CorrespondenceMatcher().match([a], [b], REFERENCE)

        assert len(matches) == 1
        assert matches[0].center_distance == pytest.approx(1000)
        assert matches[0].confidence > 0.5

    def test_distant_groups_without_overlap_do_not_match(self):
        """Test groups with no overlap and a large normalized distance stay unpaired."""
        a = _group(0, 0, 100, 100)
        b = _group(1500, 900, 100, 100)

        assert CorrespondenceMatcher().match([a], [b], REFERENCE) == []

    def test_candidates_consumed_once(self):
        """Test a candidate paired with one group is unavailable to the next."""
        a1 = _group(100, 100, 200, 100, label="first")
        a2 = _group(104, 100, 200, 100, label="second")
        b = _group(102, 100, 200, 100)

        matches = CorrespondenceMatcher().match([a1, a2], [b], REFERENCE)

        assert len(matches) == 1
        assert matches[0].baseline is a1

    def test_ties_resolve_to_earliest_candidate(self):
        """Test equally scored candidates resolve to the first one."""
        a = _group(100, 100, 200, 100)
        left = _group(90, 100, 200, 100, label="left")
        right = _group(110, 100, 200, 100, label="right")

        matches = CorrespondenceMatcher().match([a], [left, right], REFERENCE)

        assert matches[0].current is left

    def test_best_first_strategy(self):
        """Test best-first pairing lets the strongest pair win globally."""
        a1 = _group(100, 100, 200, 100, label="first")
        a2 = _group(150, 100, 200, 100, label="second")
        b = _group(150, 100, 200, 100)

        sequential = CorrespondenceMatcher().match([a1, a2], [b], REFERENCE)
        best_first = CorrespondenceMatcher(
            CorrespondenceOptions(strategy=MatchStrategy.BEST_FIRST)
        ).match([a1, a2], [b], REFERENCE)

        assert sequential[0].baseline is a1
        assert best_first[0].baseline is a2

    def test_shift_and_size_change(self):
        """Test correspondences report position shift and size change."""
        a = _group(100, 100, 200, 100)
        b = _group(110, 95, 220, 100)

        match = CorrespondenceMatcher().match([a], [b], REFERENCE)[0]

        assert match.position_shift == (10, -5)
        assert match.size_change == (20, 0)
        assert match.is_moved and match.is_resized
        assert match.to_dict()["positionShift"] == {"x": 10, "y": -5}

    def test_empty_inputs(self):
        """Test empty inputs produce no matches."""
        assert CorrespondenceMatcher().match([], [_group(0, 0, 10, 10)]) == []
        assert CorrespondenceMatcher().match([_group(0, 0, 10, 10)], []) == []

    def test_min_score(self):
        """Test the acceptance threshold is configurable."""
        a = _group(0, 0, 100, 100)
        b = _group(300, 0, 100, 100)
        strict = CorrespondenceMatcher(CorrespondenceOptions(min_score=0.9))

        assert CorrespondenceMatcher().match([a], [b], REFERENCE)
        assert strict.match([a], [b], REFERENCE) == []


class TestFindCorrespondences:
    """Tests for snapshot-level correspondence."""

    def test_shifted_page(self, page_snapshot, make_page):
        """Test every group of a shifted capture finds its counterpart."""
        matches = find_correspondences(page_snapshot, make_page(dy=3))

        assert len(matches) == 4
        assert all(m.position_shift == (0, 3) for m in matches)
        assert [m.baseline.label for m in matches] == [m.current.label for m in matches]

    def test_reference_from_viewport(self, page_snapshot):
        """Test the captured viewport is preferred as reference."""
        options = CorrespondenceOptions()

        assert reference_for(page_snapshot, options) == BoundingRect(0, 0, 1280, 800)
        assert reference_for(VisualTreeAnalysis(), options) == BoundingRect(0, 0, 1920, 1080)

    def test_options_from_settings(self, clean_env):
        """Test options built from settings."""
        options = CorrespondenceOptions.from_settings(
            Settings(correspondence_min_score=0.7, viewport_width=1280, viewport_height=720)
        )

        assert options.min_score == 0.7
        assert options.reference == BoundingRect(0, 0, 1280, 720)


def _labelled(x, y, *nodes, group_type="navigation", label="Menu"):
    group = _group(x, y, 100, 100, group_type=group_type, label=label)
    group.children = list(nodes)
    return group


class TestAccessibilityStrategy:
    """Tests for accessibility-first pairing."""

    ACCESSIBLE = CorrespondenceOptions(strategy=MatchStrategy.ACCESSIBILITY)

    def test_far_moved_group_paired_by_aria_label(self):
        """Test a group moved across the page still pairs through its aria-label."""
        a = _labelled(0, 0, VisualNode(tag_name="nav", aria_label="Primary"))
        b = _labelled(1500, 900, VisualNode(tag_name="nav", aria_label="Primary"), label="Navigation")

        assert CorrespondenceMatcher().match([a], [b], REFERENCE) == []

        matches = CorrespondenceMatcher(self.ACCESSIBLE).match([a], [b], REFERENCE)

        assert len(matches) == 1
        assert matches[0].identifier == 'aria-label="Primary"'
        assert matches[0].match_reasons[0] == 'aria-label="Primary"'
        assert matches[0].selector == '[aria-label="Primary"]'
        assert matches[0].position_shift == (1500, 900)
        assert matches[0].to_dict()["matchReason"] == matches[0].match_reasons

    def test_landmark_tag_pairing(self):
        """Test landmark tags pair regions whose labels changed."""
        a = _labelled(0, 0, VisualNode(tag_name="footer"), VisualNode(tag_name="p"), label="Copyright")
        b = _labelled(0, 2000, VisualNode(tag_name="footer"), VisualNode(tag_name="ul"), label="Updated")

        match = CorrespondenceMatcher(self.ACCESSIBLE).match([a], [b], REFERENCE)[0]

        assert match.confidence == pytest.approx(0.90)
        assert match.identifier == "footer"

    def test_weak_signal_rejected(self):
        """Test matches at or below the 0.7 threshold are not accepted."""
        a = _labelled(0, 0, VisualNode(tag_name="h2"), VisualNode(tag_name="p"))
        b = _labelled(1500, 900, VisualNode(tag_name="h2"), VisualNode(tag_name="ul"))

        assert CorrespondenceMatcher(self.ACCESSIBLE).match([a], [b], REFERENCE) == []

    def test_position_fallback(self):
        """Test groups without accessibility identity fall back to position."""
        nav_a = _labelled(0, 0, VisualNode(tag_name="nav", aria_label="Primary"))
        card_a = _group(100, 100, 200, 100, label="card")
        card_b = _group(104, 100, 200, 100, label="card")
        nav_b = _labelled(1500, 900, VisualNode(tag_name="nav", aria_label="Primary"))

        matches = CorrespondenceMatcher(self.ACCESSIBLE).match(
            [card_a, nav_a], [nav_b, card_b], REFERENCE
        )

        assert [(m.baseline, m.current) for m in matches] == [(card_a, card_b), (nav_a, nav_b)]
        assert matches[0].match_reasons == []
        assert "matchReason" not in matches[0].to_dict()

    def test_strategy_from_settings(self, clean_env):
        """Test the strategy is configurable through settings."""
        options = CorrespondenceOptions.from_settings(Settings(correspondence_strategy="accessibility"))

        assert options.strategy == MatchStrategy.ACCESSIBILITY
