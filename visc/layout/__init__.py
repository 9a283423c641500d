"""Layout analysis for visual regression testing.

This package groups captured page nodes into semantic regions, compares
snapshots, detects flaky regions across repeated samples and calibrates
comparison tolerances from them.
"""

from .accessibility import (
    AccessibilityMatch,
    generate_accessibility_selector,
    match_groups_by_accessibility,
)
from .calibration import (
    CalibrationEngine,
    CalibrationOptions,
    CalibrationResult,
    DynamicElementInfo,
    calibrate_comparison_settings,
)
from .comparator import (
    ElementComparisonOptions,
    GroupComparisonOptions,
    LayoutComparator,
    ValidationResult,
    Violation,
    compare_layout_trees,
    compare_visual_node_groups,
    validate_with_settings,
)
from .correspondence import (
    CorrespondenceMatcher,
    CorrespondenceOptions,
    GroupCorrespondence,
    MatchStrategy,
    find_correspondences,
)
from .flakiness import (
    FlakinessAnalysis,
    FlakinessDetector,
    FlakinessOptions,
    FlakinessType,
    FlakyElement,
    InsufficientSamplesError,
    detect_flakiness,
)
from .grouping import (
    GroupingOptions,
    SemanticGroupingEngine,
    build_visual_tree_analysis,
    detect_patterns,
    organize_into_semantic_groups,
)
from .models import (
    BoundingRect,
    ComparisonResult,
    ComparisonSettings,
    Difference,
    DifferenceType,
    VisualNode,
    VisualNodeGroup,
    VisualTreeAnalysis,
    Viewport,
)
from .overflow import OverflowGrouper, OverflowOptions
from .selectors import apply_ignore_selectors, generate_root_selector, matches_selector

__all__ = [
    # Models
    "BoundingRect",
    "ComparisonResult",
    "ComparisonSettings",
    "Difference",
    "DifferenceType",
    "VisualNode",
    "VisualNodeGroup",
    "VisualTreeAnalysis",
    "Viewport",
    # Grouping
    "GroupingOptions",
    "SemanticGroupingEngine",
    "OverflowGrouper",
    "OverflowOptions",
    "build_visual_tree_analysis",
    "detect_patterns",
    "organize_into_semantic_groups",
    # Selectors
    "apply_ignore_selectors",
    "generate_root_selector",
    "matches_selector",
    # Comparison
    "ElementComparisonOptions",
    "GroupComparisonOptions",
    "LayoutComparator",
    "ValidationResult",
    "Violation",
    "compare_layout_trees",
    "compare_visual_node_groups",
    "validate_with_settings",
    # Correspondence
    "CorrespondenceMatcher",
    "CorrespondenceOptions",
    "GroupCorrespondence",
    "MatchStrategy",
    "find_correspondences",
    "AccessibilityMatch",
    "generate_accessibility_selector",
    "match_groups_by_accessibility",
    # Flakiness
    "FlakinessAnalysis",
    "FlakinessDetector",
    "FlakinessOptions",
    "FlakinessType",
    "FlakyElement",
    "InsufficientSamplesError",
    "detect_flakiness",
    # Calibration
    "CalibrationEngine",
    "CalibrationOptions",
    "CalibrationResult",
    "DynamicElementInfo",
    "calibrate_comparison_settings",
]
