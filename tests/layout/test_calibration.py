"""Tests for comparison tolerance calibration."""

import pytest

from visc.config import Settings, StrictnessLevel
from visc.layout.calibration import (
    CalibrationEngine,
    CalibrationOptions,
    calibrate_comparison_settings,
    generate_ignore_selector,
)
from visc.layout.comparator import LayoutComparator
from visc.layout.flakiness import (
    ElementIdentifier,
    FlakinessType,
    FlakyElement,
    InsufficientSamplesError,
)
from visc.layout.models import VisualTreeAnalysis


def _sample(*nodes):
    return VisualTreeAnalysis(url="https://example.com", elements=list(nodes))


def _flaky(path, **identifier):
    return FlakyElement(
        path=path,
        identifier=ElementIdentifier(**identifier),
        flakiness_type=FlakinessType.CONTENT,
        score=80.0,
        variations=[],
        occurrence_count=3,
        occurrence_rate=1.0,
    )


class TestCalibrationEngine:
    """Tests for CalibrationEngine."""

    @pytest.mark.smoke
    def test_static_page_converges_to_floors(self, static_samples):
        """Test identical captures of a multi-group page yield floor tolerances with high confidence."""
        result = CalibrationEngine().calibrate(static_samples)

        assert result.settings.position_tolerance == 2
        assert result.settings.size_tolerance == 5
        assert result.settings.ignore_elements is None
        assert result.confidence >= 90
        assert result.dynamic_elements == []
        assert result.sample_stats.stable_element_ratio == 1.0

    def test_single_sample_rejected(self, page_snapshot):
        """Test calibration needs at least two samples."""
        with pytest.raises(InsufficientSamplesError) as exc_info:
            CalibrationEngine().calibrate([page_snapshot])

        assert exc_info.value.operation == "calibration"
        assert "at least 2" in str(exc_info.value)

    def test_two_samples_accepted(self, page_snapshot, make_page):
        """Test two samples are enough to calibrate."""
        result = CalibrationEngine().calibrate([page_snapshot, make_page()])

        assert result.settings.position_tolerance == 2

    @pytest.mark.parametrize("strictness", list(StrictnessLevel))
    def test_floors_hold_for_every_strictness(self, make_page, strictness):
        """Test tolerances never drop below their floors."""
        samples = [make_page(), make_page(dy=1), make_page()]

        result = calibrate_comparison_settings(samples, strictness=strictness)

        assert result.settings.position_tolerance >= 2
        assert result.settings.size_tolerance >= 5
        assert result.settings.text_similarity_threshold >= 0.8

    @pytest.mark.parametrize(
        "strictness,expected",
        [
            (StrictnessLevel.LOW, 5),
            (StrictnessLevel.MEDIUM, 3),
            (StrictnessLevel.HIGH, 3),
        ],
    )
    def test_position_drift_scaled_by_strictness(self, make_page, strictness, expected):
        """Test observed drift is scaled by the strictness multiplier and rounded up."""
        samples = [make_page(), make_page(dy=3), make_page()]

        result = calibrate_comparison_settings(samples, strictness=strictness)

        assert result.settings.position_tolerance == expected
        assert result.variances.group_level is True
        assert result.variances.max_position_drift == pytest.approx(3)

    def test_drift_lowers_confidence(self, make_page, static_samples):
        """Test drifting samples are less trusted than static ones."""
        drifting = [make_page(), make_page(dy=3), make_page()]

        static = CalibrationEngine().calibrate(static_samples)
        moving = CalibrationEngine().calibrate(drifting)

        assert moving.confidence < static.confidence
        assert moving.sample_stats.avg_position_variance == pytest.approx(2.0)

    def test_size_variance(self, make_node):
        """Test size changes between samples widen the size tolerance."""
        samples = [
            _sample(make_node("div", 0, 0, 100, 50, class_name="panel")),
            _sample(make_node("div", 0, 0, 110, 50, class_name="panel")),
        ]

        result = CalibrationEngine().calibrate(samples)

        assert result.variances.group_level is False
        assert result.settings.size_tolerance == 10

    def test_dynamic_element_ignored(self, make_node):
        """Test a ticking clock becomes an ignore selector."""
        samples = [
            _sample(
                make_node("main", 0, 0, 800, 600),
                make_node("span", 10, 10, 80, 20, id="clock", text=f"10:00:0{i}"),
            )
            for i in range(3)
        ]

        result = CalibrationEngine().calibrate(samples)

        assert result.settings.ignore_elements == ["#clock"]
        dynamic = result.dynamic_elements[0]
        assert dynamic.path == "element:span#clock[0]"
        assert dynamic.reason == FlakinessType.CONTENT
        assert dynamic.flakiness_score >= 50
        assert result.to_dict()["dynamicElements"][0]["selector"] == "#clock"

    def test_dynamic_detection_disabled(self, make_node):
        """Test dynamic detection can be switched off."""
        samples = [
            _sample(make_node("span", 10, 10, 80, 20, id="clock", text=f"10:00:0{i}"))
            for i in range(3)
        ]

        result = calibrate_comparison_settings(samples, detect_dynamic_elements=False)

        assert result.settings.ignore_elements is None
        assert "dynamicElements" not in result.to_dict()

    def test_calibrated_settings_suppress_dynamic_footer(self, make_page):
        """Test settings from samples with a changing footer hide it from comparison."""
        samples = [make_page(footer_text=f"Updated {i} minutes ago") for i in range(3)]

        result = CalibrationEngine().calibrate(samples)
        comparator = LayoutComparator.from_comparison_settings(result.settings)
        comparison = comparator.compare(samples[0], make_page(footer_text="Updated 9 minutes ago"))

        assert "footer" in result.settings.ignore_elements
        assert comparison.differences == []

    def test_text_threshold_floor(self, make_node):
        """Test completely changing text cannot push the text threshold below its floor."""
        samples = [
            _sample(make_node("p", 0, 0, 100, 20, text="alpha")),
            _sample(make_node("p", 0, 0, 100, 20, text="zzzzz")),
        ]

        result = calibrate_comparison_settings(samples, strictness="low")

        assert result.settings.text_similarity_threshold == 0.8

    def test_result_serialization(self, static_samples):
        """Test the calibration result serializes to camelCase."""
        data = CalibrationEngine().calibrate(static_samples).to_dict()

        assert data["settings"]["positionTolerance"] == 2
        assert "avgPositionVariance" in data["sampleStats"]
        assert "dynamicElements" not in data


class TestGenerateIgnoreSelector:
    """Tests for generate_ignore_selector."""

    def test_id_first(self):
        """Test ids are preferred."""
        element = _flaky("element:span#clock[0]", tag_name="span", id="clock", class_name="time")

        assert generate_ignore_selector(element) == "#clock"

    def test_class_fallback(self):
        """Test tag and first class when there is no id."""
        element = _flaky("element:div.ad.banner[0]", tag_name="div", class_name="ad banner")

        assert generate_ignore_selector(element) == "div.ad"

    def test_tag_fallback(self):
        """Test bare tag as last resort."""
        assert generate_ignore_selector(_flaky("element:footer[0]", tag_name="footer")) == "footer"

    def test_group_label_marker(self):
        """Test groups are ignored through their label marker."""
        element = _flaky("group:navigation:Updated", type="navigation", label='Say "hi"')

        assert generate_ignore_selector(element) == '[data-visual-label="Say \\"hi\\""]'

    def test_group_without_label(self):
        """Test unlabelled groups get no selector."""
        assert generate_ignore_selector(_flaky("group:section:", type="section", label="")) is None


class TestCalibrationOptions:
    """Tests for CalibrationOptions."""

    def test_from_settings(self, mock_env_vars):
        """Test options follow environment-driven settings."""
        options = CalibrationOptions.from_settings(Settings())

        assert options.strictness == StrictnessLevel.HIGH
        assert options.dynamic_threshold == 50.0
        assert options.correspondence.reference_width == 1920
