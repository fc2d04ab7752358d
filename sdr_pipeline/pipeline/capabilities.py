"""Injected model capabilities used by the pipeline stages.

The orchestrator never talks to a model directly. It is handed three
capabilities (split, classify, grade) so that tests can swap in deterministic
stubs and production can choose between rule-based and LLM implementations.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TypeVar, runtime_checkable

import structlog

from sdr_pipeline.config.settings import Settings, get_settings
from sdr_pipeline.errors import CapabilityError, CapabilityTimeout
from sdr_pipeline.models import GradeResult, RawSegment, SegmentClassification
from sdr_pipeline.models.enums import CapabilityBackend

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@runtime_checkable
class SplitCapability(Protocol):
    def split(self, text: str) -> list[RawSegment]:
        ...


@runtime_checkable
class ClassifyCapability(Protocol):
    def classify(self, texts: list[str]) -> list[SegmentClassification]:
        ...


@runtime_checkable
class GradeCapability(Protocol):
    def grade(self, text: str) -> GradeResult:
        ...


@dataclass
class Capabilities:
    """The three capabilities a pipeline run needs."""

    splitter: SplitCapability
    classifier: ClassifyCapability
    grader: GradeCapability


def model_name_of(capability: object) -> str:
    """Best-effort name of the model behind a capability, for audit fields."""
    return getattr(capability, "model_name", None) or type(capability).__name__


def call_capability(
    fn: Callable[..., T],
    *args,
    timeout: Optional[float],
    name: str,
) -> T:
    """Invoke a capability with a time limit.

    Any failure inside the capability is reported as CapabilityError so the
    calling stage can record it instead of crashing the run.

    Args:
        fn: Capability method to call.
        *args: Positional arguments for fn.
        timeout: Seconds to wait, or None for no limit.
        name: Capability name for error messages and logs.

    Returns:
        Whatever fn returns.

    Raises:
        CapabilityTimeout: If fn does not return in time.
        CapabilityError: If fn raises.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cap-{name}")
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as e:
        logger.warning("capability_timeout", capability=name, timeout_seconds=timeout)
        raise CapabilityTimeout(f"{name} timed out after {timeout}s") from e
    except CapabilityError:
        raise
    except Exception as e:
        logger.warning("capability_error", capability=name, error=str(e), type=type(e).__name__)
        raise CapabilityError(f"{name} failed: {e}") from e
    finally:
        # A timed-out call keeps running in its thread; do not block on it
        executor.shutdown(wait=False)


def build_capabilities(settings: Settings | None = None) -> Capabilities:
    """Create capabilities for the configured backends.

    Args:
        settings: Optional custom settings. Uses defaults if not provided.

    Returns:
        Capabilities with heuristic or LLM implementations per stage.
    """
    from sdr_pipeline.pipeline.stages.classification import RuleBasedClassifier
    from sdr_pipeline.pipeline.stages.grading import RubricGrader
    from sdr_pipeline.pipeline.stages.segmentation import HeuristicSplitter

    settings = settings or get_settings()

    splitter: SplitCapability = HeuristicSplitter(gap_seconds=settings.split_gap_seconds)
    classifier: ClassifyCapability = RuleBasedClassifier()
    grader: GradeCapability = RubricGrader()

    uses_llm = CapabilityBackend.LLM in (
        settings.splitter_backend,
        settings.classifier_backend,
        settings.grader_backend,
    )
    if uses_llm:
        from sdr_pipeline.llm.chains import LLMClassifier, LLMGrader, LLMSplitter
        from sdr_pipeline.llm.client import create_llm_client

        llm = create_llm_client(settings)
        if settings.splitter_backend == CapabilityBackend.LLM:
            splitter = LLMSplitter(
                llm=llm,
                system_prompt=settings.splitter_system_prompt,
                model_name=settings.llm_model_name,
                chunk_max_chars=settings.splitter_chunk_max_chars,
                overlap_lines=settings.splitter_chunk_overlap_lines,
            )
        if settings.classifier_backend == CapabilityBackend.LLM:
            classifier = LLMClassifier(
                llm=llm,
                system_prompt=settings.classifier_system_prompt,
                model_name=settings.llm_model_name,
            )
        if settings.grader_backend == CapabilityBackend.LLM:
            grader = LLMGrader(
                llm=llm,
                system_prompt=settings.grader_system_prompt,
                model_name=settings.llm_model_name,
            )

    logger.info(
        "capabilities_built",
        splitter=type(splitter).__name__,
        classifier=type(classifier).__name__,
        grader=type(grader).__name__,
    )
    return Capabilities(splitter=splitter, classifier=classifier, grader=grader)
