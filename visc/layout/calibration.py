"""Calibration of comparison tolerances from repeated samples.

Calibration runs the flakiness detector over N samples of one page, measures
how far matched regions drift between every pair of samples and turns both
into a ``ComparisonSettings`` profile the comparator accepts verbatim.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from visc.config import StrictnessLevel
from visc.utils.logging import log_operation

from .correspondence import CorrespondenceMatcher, CorrespondenceOptions, reference_for
from .flakiness import (
    MIN_SAMPLES,
    FlakinessDetector,
    FlakinessOptions,
    FlakinessType,
    FlakyElement,
    InsufficientSamplesError,
    element_paths,
)
from .geometry import center_distance
from .models import BoundingRect, ComparisonSettings, VisualTreeAnalysis
from .selectors import GROUP_LABEL_ATTRIBUTE, is_identifier
from .text_similarity import normalize_text, text_similarity

logger = structlog.get_logger()

MIN_POSITION_TOLERANCE = 2
MIN_SIZE_TOLERANCE = 5
MIN_TEXT_SIMILARITY = 0.8
# Text dissimilarity assumed when no matched pair exposes any text.
GROUP_TEXT_PRIOR = 0.05
ELEMENT_TEXT_PRIOR = 0.1
# Matched pairs closer than this count as stable.
STABLE_DRIFT = 1.0
STABLE_SIZE_VARIANCE = 0.01


@dataclass
class CalibrationOptions:
    """Options for calibration.

    Attributes:
        strictness: Scales observed drift into tolerances
        detect_dynamic_elements: Emit ignore selectors for dynamic paths
        dynamic_threshold: Flakiness score at which a path counts as dynamic
        importance_threshold: Copied into the produced settings
        flakiness: Options for the flakiness pass
        correspondence: Options for pairing groups between samples
    """

    strictness: StrictnessLevel = StrictnessLevel.MEDIUM
    detect_dynamic_elements: bool = True
    dynamic_threshold: float = 50.0
    importance_threshold: float = 10.0
    flakiness: FlakinessOptions = field(default_factory=FlakinessOptions)
    correspondence: CorrespondenceOptions = field(default_factory=CorrespondenceOptions)

    @classmethod
    def from_settings(cls, settings: Any) -> "CalibrationOptions":
        return cls(
            strictness=settings.strictness,
            detect_dynamic_elements=settings.detect_dynamic_elements,
            dynamic_threshold=settings.dynamic_threshold,
            importance_threshold=settings.group_importance_threshold,
            flakiness=FlakinessOptions.from_settings(settings),
            correspondence=CorrespondenceOptions.from_settings(settings),
        )


@dataclass
class DynamicElementInfo:
    """A path whose flakiness marks it as dynamic content."""

    path: str
    selector: str | None
    flakiness_score: float
    change_frequency: float
    reason: FlakinessType

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "selector": self.selector,
            "flakinessScore": self.flakiness_score,
            "changeFrequency": self.change_frequency,
            "reason": self.reason.value,
        }


@dataclass
class SampleVariances:
    """Drift statistics over all sample pairs."""

    max_position_drift: float = 0.0
    avg_position_drift: float = 0.0
    max_size_variance: float = 0.0
    avg_size_variance: float = 0.0
    avg_text_dissimilarity: float = 0.0
    stable_element_ratio: float = 1.0
    observations: int = 0
    group_level: bool = False


@dataclass
class SampleStats:
    avg_position_variance: float
    avg_size_variance: float  # percent
    avg_text_similarity: float
    stable_element_ratio: float

    def to_dict(self) -> dict[str, float]:
        return {
            "avgPositionVariance": self.avg_position_variance,
            "avgSizeVariance": self.avg_size_variance,
            "avgTextSimilarity": self.avg_text_similarity,
            "stableElementRatio": self.stable_element_ratio,
        }


@dataclass
class CalibrationResult:
    settings: ComparisonSettings
    confidence: float
    sample_stats: SampleStats
    dynamic_elements: list[DynamicElementInfo] = field(default_factory=list)
    variances: SampleVariances = field(default_factory=SampleVariances)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "settings": self.settings.to_dict(),
            "confidence": self.confidence,
            "sampleStats": self.sample_stats.to_dict(),
        }
        if self.dynamic_elements:
            result["dynamicElements"] = [e.to_dict() for e in self.dynamic_elements]
        return result


class _DriftAccumulator:
    def __init__(self):
        self.drifts: list[float] = []
        self.size_variances: list[float] = []
        self.text_dissimilarities: list[float] = []
        self.stable = 0
        self.candidates = 0

    def add(self, old: BoundingRect, new: BoundingRect, old_text: str, new_text: str) -> None:
        drift = center_distance(old, new)
        size_variance = max(
            abs(new.width - old.width) / (old.width or 1),
            abs(new.height - old.height) / (old.height or 1),
        )
        self.drifts.append(drift)
        self.size_variances.append(size_variance)
        if old_text or new_text:
            self.text_dissimilarities.append(1 - text_similarity(old_text, new_text))
        if drift < STABLE_DRIFT and size_variance < STABLE_SIZE_VARIANCE:
            self.stable += 1

    def result(self, text_prior: float, group_level: bool) -> SampleVariances:
        count = len(self.drifts)
        return SampleVariances(
            max_position_drift=max(self.drifts, default=0.0),
            avg_position_drift=sum(self.drifts) / count if count else 0.0,
            max_size_variance=max(self.size_variances, default=0.0),
            avg_size_variance=sum(self.size_variances) / count if count else 0.0,
            avg_text_dissimilarity=(
                sum(self.text_dissimilarities) / len(self.text_dissimilarities)
                if self.text_dissimilarities else text_prior
            ),
            stable_element_ratio=self.stable / self.candidates if self.candidates else 1.0,
            observations=count,
            group_level=group_level,
        )


def _has_group_data(sample: VisualTreeAnalysis) -> bool:
    return sample.has_groups and bool(sample.visual_node_groups)


def generate_ignore_selector(element: FlakyElement) -> str | None:
    """Best-effort selector for a dynamic path (id > class > tag).

    Group paths emit the label marker rendered on each region instead.
    """
    identifier = element.identifier
    if element.is_group:
        if not identifier.label:
            return None
        label = identifier.label.replace("\\", "\\\\").replace('"', '\\"')
        return f'[{GROUP_LABEL_ATTRIBUTE}="{label}"]'

    if is_identifier(identifier.id):
        return f"#{identifier.id}"
    tag = (identifier.tag_name or "").lower()
    classes = [c for c in (identifier.class_name or "").split() if c]
    if classes and is_identifier(classes[0]):
        return f"{tag}.{classes[0]}"
    return tag or None


class CalibrationEngine:
    """Derives a comparison tolerance profile from repeated samples."""

    def __init__(self, options: CalibrationOptions | None = None):
        self.options = options or CalibrationOptions()
        self.detector = FlakinessDetector(self.options.flakiness)
        self.matcher = CorrespondenceMatcher(self.options.correspondence)
        self.log = logger.bind(component="calibration_engine")

    def _group_drift(self, samples: Sequence[VisualTreeAnalysis]) -> SampleVariances:
        accumulator = _DriftAccumulator()
        for i in range(len(samples) - 1):
            groups_a = list(samples[i].iter_groups())
            reference = reference_for(samples[i], self.options.correspondence)
            for j in range(i + 1, len(samples)):
                groups_b = list(samples[j].iter_groups())
                accumulator.candidates += max(len(groups_a), len(groups_b))
                for match in self.matcher.match(groups_a, groups_b, reference):
                    accumulator.add(
                        match.baseline.bounds,
                        match.current.bounds,
                        normalize_text(match.baseline.label),
                        normalize_text(match.current.label),
                    )
        return accumulator.result(GROUP_TEXT_PRIOR, group_level=True)

    def _element_drift(self, samples: Sequence[VisualTreeAnalysis]) -> SampleVariances:
        accumulator = _DriftAccumulator()
        indexed = [
            dict(zip(element_paths(sample.elements), sample.elements))
            for sample in samples
        ]
        for i in range(len(samples) - 1):
            for j in range(i + 1, len(samples)):
                a, b = indexed[i], indexed[j]
                accumulator.candidates += len(set(a) | set(b))
                for path, old in a.items():
                    new = b.get(path)
                    if new is None:
                        continue
                    accumulator.add(
                        old.rect, new.rect, normalize_text(old.text), normalize_text(new.text)
                    )
        return accumulator.result(ELEMENT_TEXT_PRIOR, group_level=False)

    def analyze_sample_variances(self, samples: Sequence[VisualTreeAnalysis]) -> SampleVariances:
        """Aggregate drift over every pair of samples.

        Group-level signal is used when every sample carries groups; raw
        elements paired by signature are the fallback.
        """
        if all(_has_group_data(s) for s in samples):
            return self._group_drift(samples)
        return self._element_drift(samples)

    def _dynamic_elements(self, samples: Sequence[VisualTreeAnalysis]) -> list[DynamicElementInfo]:
        analysis = self.detector.detect(samples)
        return [
            DynamicElementInfo(
                path=element.path,
                selector=generate_ignore_selector(element),
                flakiness_score=element.score,
                change_frequency=element.change_frequency,
                reason=element.flakiness_type,
            )
            for element in analysis.flaky_elements
            if element.score >= self.options.dynamic_threshold
        ]

    def _confidence(self, sample_count: int, variances: SampleVariances) -> float:
        """Average of evidence confidence and layout stability (0-100).

        Evidence is ``max(sample_count, drift observations)`` rather than the
        sample count alone: every matched pair between two samples is one
        drift observation, so three captures of a page with several regions
        already count as well-evidenced. With the sample count alone, three
        samples could never exceed 65.
        """
        evidence = max(sample_count, variances.observations)
        sample_confidence = min(100.0, evidence * 10.0)
        stability = 100 - (variances.avg_position_drift * 2 + variances.avg_size_variance * 100)
        return max(0.0, min(100.0, (sample_confidence + stability) / 2))

    def calibrate(self, samples: Sequence[VisualTreeAnalysis]) -> CalibrationResult:
        """Derive comparison settings from ``samples``.

        Args:
            samples: At least two snapshots of the same page state

        Returns:
            CalibrationResult with settings, confidence and sample statistics

        Raises:
            InsufficientSamplesError: If fewer than two samples are given
        """
        if len(samples) < MIN_SAMPLES:
            raise InsufficientSamplesError(len(samples), operation="calibration")

        options = self.options
        multiplier = StrictnessLevel(options.strictness).multiplier

        with log_operation("calibrate", self.log, samples=len(samples)) as op:
            variances = self.analyze_sample_variances(samples)

            dynamic_elements = []
            if options.detect_dynamic_elements:
                dynamic_elements = self._dynamic_elements(samples)
            ignore_selectors = list(dict.fromkeys(
                e.selector for e in dynamic_elements if e.selector
            ))

            settings = ComparisonSettings(
                position_tolerance=max(
                    MIN_POSITION_TOLERANCE,
                    math.ceil(variances.max_position_drift * multiplier),
                ),
                size_tolerance=max(
                    MIN_SIZE_TOLERANCE,
                    math.ceil(variances.max_size_variance * 100 * multiplier),
                ),
                text_similarity_threshold=max(
                    MIN_TEXT_SIMILARITY,
                    1 - variances.avg_text_dissimilarity * multiplier,
                ),
                importance_threshold=options.importance_threshold,
                ignore_elements=ignore_selectors or None,
            )
            confidence = self._confidence(len(samples), variances)
            op["confidence"] = round(confidence, 2)
            op["dynamic_elements"] = len(dynamic_elements)

        return CalibrationResult(
            settings=settings,
            confidence=confidence,
            sample_stats=SampleStats(
                avg_position_variance=variances.avg_position_drift,
                avg_size_variance=variances.avg_size_variance * 100,
                avg_text_similarity=1 - variances.avg_text_dissimilarity,
                stable_element_ratio=variances.stable_element_ratio,
            ),
            dynamic_elements=dynamic_elements,
            variances=variances,
        )


def calibrate_comparison_settings(
    samples: Sequence[VisualTreeAnalysis],
    strictness: StrictnessLevel | str = StrictnessLevel.MEDIUM,
    detect_dynamic_elements: bool = True,
    dynamic_threshold: float = 50.0,
    options: CalibrationOptions | None = None,
) -> CalibrationResult:
    """Calibrate with the given strictness; ``options`` supplies the rest."""
    base = options or CalibrationOptions()
    engine = CalibrationEngine(CalibrationOptions(
        strictness=StrictnessLevel(strictness),
        detect_dynamic_elements=detect_dynamic_elements,
        dynamic_threshold=dynamic_threshold,
        importance_threshold=base.importance_threshold,
        flakiness=base.flakiness,
        correspondence=base.correspondence,
    ))
    return engine.calibrate(samples)
