"""Pipeline stages - each stage has focused responsibility.

- segmentation: one daily transcript → ordered call segments
- classification: segment → call type (+ meaningful flag, prospect)
- grading: meaningful segment → rubric grade with coaching output

Every stage calls its capability through call_capability, so timeouts and
malformed output surface as CapabilityError rather than crashing the run.
"""

from sdr_pipeline.pipeline.stages.classification import (
    ClassificationOutcome,
    RuleBasedClassifier,
    classify_segments,
    classify_text,
)
from sdr_pipeline.pipeline.stages.grading import (
    RubricGrader,
    finalize_grade,
    grade_segment,
    letter_grade_for,
)
from sdr_pipeline.pipeline.stages.segmentation import (
    HeuristicSplitter,
    SegmentationTrace,
    anchor_proposals,
    chunk_transcript,
    run_segmentation,
    segment_transcript,
)

__all__ = [
    # Stage functions
    "segment_transcript",
    "run_segmentation",
    "classify_segments",
    "classify_text",
    "grade_segment",
    "finalize_grade",
    "letter_grade_for",
    # LLM proposal helpers
    "anchor_proposals",
    "chunk_transcript",
    # Rule-based capabilities
    "HeuristicSplitter",
    "RuleBasedClassifier",
    "RubricGrader",
    # Trace / outcome classes
    "SegmentationTrace",
    "ClassificationOutcome",
]
