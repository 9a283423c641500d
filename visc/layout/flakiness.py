"""Flakiness detection across repeated snapshots of the same page.

Samples of one page state should be identical; any property that varies
between them is noise the comparator must tolerate. This module tracks every
element and group path across N samples, buckets numeric values so
sub-threshold jitter disappears, and scores how unstable each path is.
"""

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from visc.utils.logging import log_operation

from .comparator import flatten_groups
from .models import VisualNode, VisualTreeAnalysis
from .text_similarity import normalize_text

logger = structlog.get_logger()

MIN_SAMPLES = 2
ELEMENT_PREFIX = "element:"
GROUP_PREFIX = "group:"


class InsufficientSamplesError(ValueError):
    """Raised when fewer samples than required are supplied."""

    def __init__(self, received: int, required: int = MIN_SAMPLES, operation: str = "flakiness detection"):
        self.received = received
        self.required = required
        self.operation = operation
        super().__init__(
            f"{operation} requires at least {required} samples, got {received}"
        )


class FlakinessType(str, Enum):
    POSITION = "position"
    SIZE = "size"
    CONTENT = "content"
    EXISTENCE = "existence"
    STYLE = "style"
    MIXED = "mixed"


PROPERTY_CATEGORIES = {
    "x": FlakinessType.POSITION,
    "y": FlakinessType.POSITION,
    "width": FlakinessType.SIZE,
    "height": FlakinessType.SIZE,
    "text": FlakinessType.CONTENT,
    "label": FlakinessType.CONTENT,
    "fontSize": FlakinessType.STYLE,
    "importance": FlakinessType.STYLE,
    "existence": FlakinessType.EXISTENCE,
}


def property_category(name: str) -> FlakinessType:
    return PROPERTY_CATEGORIES.get(name, FlakinessType.STYLE)


@dataclass
class FlakinessOptions:
    """Options for flakiness detection.

    Attributes:
        position_threshold: Bucket size (px) for x/y values
        size_threshold: Bucket size (px) for width/height values
        flakiness_threshold: Variance above which a property is flaky (0-1)
        ignore_text: Skip text and label tracking
        ignore_style: Skip font size and importance tracking
    """

    position_threshold: float = 5.0
    size_threshold: float = 5.0
    flakiness_threshold: float = 0.2
    ignore_text: bool = False
    ignore_style: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "FlakinessOptions":
        return cls(
            position_threshold=settings.flaky_position_bucket,
            size_threshold=settings.flaky_size_bucket,
            flakiness_threshold=settings.flakiness_threshold,
            ignore_text=settings.ignore_text,
        )


@dataclass
class ValueCount:
    value: Any
    count: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "count": self.count, "percentage": self.percentage}


@dataclass
class VariationDetail:
    """Histogram of one property's bucketed values across samples."""

    property: str
    values: list[ValueCount]
    variance: float

    @property
    def category(self) -> FlakinessType:
        return property_category(self.property)

    def to_dict(self) -> dict[str, Any]:
        return {
            "property": self.property,
            "values": [v.to_dict() for v in self.values],
            "variance": self.variance,
        }


@dataclass
class ElementIdentifier:
    """What is known about the element or group behind a path."""

    type: str | None = None
    tag_name: str | None = None
    id: str | None = None
    class_name: str | None = None
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "tagName": self.tag_name,
            "id": self.id,
            "className": self.class_name,
            "label": self.label,
        }


@dataclass
class FlakyElement:
    """Variance record for one unstable path."""

    path: str
    identifier: ElementIdentifier
    flakiness_type: FlakinessType
    score: float
    variations: list[VariationDetail]
    occurrence_count: int
    occurrence_rate: float
    change_frequency: float = 0.0

    @property
    def is_group(self) -> bool:
        return self.path.startswith(GROUP_PREFIX)

    def dominant_category(self) -> FlakinessType:
        """Category with the largest summed variance (resolves ``mixed``)."""
        if self.flakiness_type != FlakinessType.MIXED:
            return self.flakiness_type
        totals: dict[FlakinessType, float] = {}
        for variation in self.variations:
            totals[variation.category] = totals.get(variation.category, 0.0) + variation.variance
        # Ties resolve in category declaration order.
        order = list(FlakinessType)
        return max(totals, key=lambda c: (totals[c], -order.index(c)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "identifier": self.identifier.to_dict(),
            "flakinessType": self.flakiness_type.value,
            "score": self.score,
            "variations": [v.to_dict() for v in self.variations],
            "occurrenceCount": self.occurrence_count,
            "occurrenceRate": self.occurrence_rate,
            "changeFrequency": self.change_frequency,
        }


@dataclass
class FlakinessAnalysis:
    """Flakiness of every tracked path across a sample set."""

    overall_score: float
    flaky_elements: list[FlakyElement]
    stable_count: int
    unstable_count: int
    sample_count: int
    categorized: dict[FlakinessType, list[FlakyElement]] = field(default_factory=dict)
    stable_paths: list[str] = field(default_factory=list)

    def flaky_by_type(self, flakiness_type: FlakinessType) -> list[FlakyElement]:
        return self.categorized.get(flakiness_type, [])

    def get_summary(self) -> str:
        """Get a human-readable summary of the analysis."""
        if not self.flaky_elements:
            return f"No flakiness across {self.sample_count} samples ({self.stable_count} stable paths)"

        parts = [
            f"{len(items)} {category.value}"
            for category, items in self.categorized.items()
            if items
        ]
        return (
            f"{self.unstable_count} flaky of {self.stable_count + self.unstable_count} paths "
            f"({self.overall_score:.1f}%): {', '.join(parts)}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "overallScore": self.overall_score,
            "flakyElements": [e.to_dict() for e in self.flaky_elements],
            "stableCount": self.stable_count,
            "unstableCount": self.unstable_count,
            "sampleCount": self.sample_count,
            "categorizedFlakiness": {
                category.value: [e.path for e in items]
                for category, items in self.categorized.items()
            },
        }


@dataclass
class _Tracker:
    path: str
    identifier: ElementIdentifier
    # property -> sample index -> bucketed value
    values: dict[str, dict[int, Any]] = field(default_factory=dict)
    present: list[int] = field(default_factory=list)

    def record(self, sample: int, name: str, value: Any) -> None:
        self.values.setdefault(name, {})[sample] = value

    def signature(self, sample: int) -> tuple | None:
        if sample not in self.present:
            return None
        return tuple(
            (name, samples.get(sample)) for name, samples in sorted(self.values.items())
        )


def bucket(value: float, size: float) -> float:
    """Round ``value`` to the nearest multiple of ``size`` (halves round up)."""
    if size <= 0:
        return value
    return math.floor(value / size + 0.5) * size


def element_signature(node: VisualNode) -> str:
    """``tag#id.class1.class2`` identity used to track elements across samples."""
    signature = node.tag
    if node.id:
        signature += f"#{node.id}"
    for class_name in node.classes:
        signature += f".{class_name}"
    return signature


def element_paths(nodes: Sequence[VisualNode]) -> list[str]:
    """Position-independent paths, numbered per signature in document order."""
    seen: dict[str, int] = {}
    paths = []
    for node in nodes:
        signature = element_signature(node)
        ordinal = seen.get(signature, 0)
        seen[signature] = ordinal + 1
        paths.append(f"{ELEMENT_PREFIX}{signature}[{ordinal}]")
    return paths


class FlakinessDetector:
    """Aggregates repeated samples into per-path variance statistics."""

    def __init__(self, options: FlakinessOptions | None = None):
        self.options = options or FlakinessOptions()
        self.log = logger.bind(component="flakiness_detector")

    def _tracker(self, trackers: dict[str, _Tracker], key: str, path: str, identifier: ElementIdentifier) -> _Tracker:
        tracker = trackers.get(key)
        if tracker is None:
            tracker = _Tracker(path=path, identifier=identifier)
            trackers[key] = tracker
        return tracker

    def _track_sample(self, sample: VisualTreeAnalysis, index: int, trackers: dict[str, _Tracker]) -> None:
        options = self.options

        for node, path in zip(sample.elements, element_paths(sample.elements)):
            tracker = self._tracker(trackers, path, path, ElementIdentifier(
                tag_name=node.tag,
                id=node.id,
                class_name=node.class_name or None,
            ))
            tracker.present.append(index)
            tracker.record(index, "x", bucket(node.rect.x, options.position_threshold))
            tracker.record(index, "y", bucket(node.rect.y, options.position_threshold))
            tracker.record(index, "width", bucket(node.rect.width, options.size_threshold))
            tracker.record(index, "height", bucket(node.rect.height, options.size_threshold))
            if not options.ignore_text:
                tracker.record(index, "text", normalize_text(node.text))
            if not options.ignore_style:
                tracker.record(index, "fontSize", node.computed_style.font_size)

        for key, flat in flatten_groups(sample.visual_node_groups).items():
            group = flat.group
            _, _, ordinal = key.partition("#")
            path = f"{GROUP_PREFIX}{flat.path}" + (f"#{ordinal}" if ordinal else "")
            tracker = self._tracker(trackers, f"{GROUP_PREFIX}{key}", path, ElementIdentifier(
                type=group.type,
                label=group.label,
            ))
            tracker.present.append(index)
            tracker.record(index, "x", bucket(group.bounds.x, options.position_threshold))
            tracker.record(index, "y", bucket(group.bounds.y, options.position_threshold))
            tracker.record(index, "width", bucket(group.bounds.width, options.size_threshold))
            tracker.record(index, "height", bucket(group.bounds.height, options.size_threshold))
            if not options.ignore_style:
                tracker.record(index, "importance", round(group.importance, 1))
            if not options.ignore_text:
                tracker.record(index, "label", group.label)

    def _variation(self, name: str, samples: dict[int, Any]) -> VariationDetail | None:
        counts = Counter(samples[i] for i in sorted(samples))
        if len(counts) <= 1:
            return None
        total = len(samples)
        values = [
            ValueCount(value=value, count=count, percentage=count / total * 100)
            for value, count in counts.most_common()
        ]
        return VariationDetail(
            property=name,
            values=values,
            variance=1 - values[0].count / total,
        )

    def _change_frequency(self, tracker: _Tracker, sample_count: int) -> float:
        transitions = sample_count - 1
        if transitions <= 0:
            return 0.0
        changes = sum(
            1 for i in range(transitions)
            if tracker.signature(i) != tracker.signature(i + 1)
        )
        return changes / transitions

    def _analyze(self, tracker: _Tracker, sample_count: int) -> FlakyElement | None:
        variations = []
        for name in sorted(tracker.values):
            variation = self._variation(name, tracker.values[name])
            if variation is not None and variation.variance > self.options.flakiness_threshold:
                variations.append(variation)

        occurrence_count = len(tracker.present)
        occurrence_rate = occurrence_count / sample_count
        if 0 < occurrence_rate < 1:
            variations.append(VariationDetail(
                property="existence",
                values=[
                    ValueCount("present", occurrence_count, occurrence_rate * 100),
                    ValueCount("absent", sample_count - occurrence_count, (1 - occurrence_rate) * 100),
                ],
                variance=1 - occurrence_rate,
            ))

        if not variations:
            return None

        categories = {v.category for v in variations}
        flakiness_type = categories.pop() if len(categories) == 1 else FlakinessType.MIXED
        return FlakyElement(
            path=tracker.path,
            identifier=tracker.identifier,
            flakiness_type=flakiness_type,
            score=sum(v.variance for v in variations) / len(variations) * 100,
            variations=variations,
            occurrence_count=occurrence_count,
            occurrence_rate=occurrence_rate,
            change_frequency=self._change_frequency(tracker, sample_count),
        )

    def detect(self, samples: Sequence[VisualTreeAnalysis]) -> FlakinessAnalysis:
        """Score the flakiness of every path across ``samples``.

        Args:
            samples: At least two snapshots of the same page state

        Returns:
            FlakinessAnalysis with flaky paths sorted by descending score

        Raises:
            InsufficientSamplesError: If fewer than two samples are given
        """
        if len(samples) < MIN_SAMPLES:
            raise InsufficientSamplesError(len(samples))

        with log_operation("detect_flakiness", self.log, samples=len(samples)) as op:
            trackers: dict[str, _Tracker] = {}
            for index, sample in enumerate(samples):
                self._track_sample(sample, index, trackers)

            flaky = []
            stable_paths = []
            for tracker in trackers.values():
                analysis = self._analyze(tracker, len(samples))
                if analysis is None:
                    stable_paths.append(tracker.path)
                else:
                    flaky.append(analysis)
            flaky.sort(key=lambda e: (-e.score, e.path))

            categorized: dict[FlakinessType, list[FlakyElement]] = {
                category: [] for category in FlakinessType if category != FlakinessType.MIXED
            }
            for element in flaky:
                categorized[element.dominant_category()].append(element)

            total = len(trackers)
            result = FlakinessAnalysis(
                overall_score=len(flaky) / total * 100 if total else 0.0,
                flaky_elements=flaky,
                stable_count=total - len(flaky),
                unstable_count=len(flaky),
                sample_count=len(samples),
                categorized=categorized,
                stable_paths=stable_paths,
            )

            op["paths"] = total
            op["flaky"] = len(flaky)
            op["overall_score"] = round(result.overall_score, 2)
        return result


def detect_flakiness(
    samples: Sequence[VisualTreeAnalysis],
    options: FlakinessOptions | None = None,
) -> FlakinessAnalysis:
    """Convenience wrapper around ``FlakinessDetector.detect``."""
    return FlakinessDetector(options).detect(samples)
