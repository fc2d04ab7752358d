"""LangChain chains backing the LLM split, classify and grade capabilities."""

import json
import re
from typing import Any

import structlog
from langchain_core.language_models import BaseLanguageModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from pydantic import ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from sdr_pipeline.config.prompts import (
    CLASSIFIER_SYSTEM_PROMPT,
    CLASSIFIER_USER_PROMPT,
    GRADER_SYSTEM_PROMPT,
    GRADER_USER_PROMPT,
    SPLITTER_SYSTEM_PROMPT,
    SPLITTER_USER_PROMPT,
)
from sdr_pipeline.errors import CapabilityError, MalformedOutputError
from sdr_pipeline.models import GradeResult, LetterGrade, RawSegment, SegmentClassification
from sdr_pipeline.pipeline.stages.segmentation import anchor_proposals, chunk_transcript, dedupe_proposals

logger = structlog.get_logger(__name__)

# Keys models use to wrap the list we asked for
WRAPPER_KEYS = ("segments", "calls", "data", "results")

SCORE_FIELDS = (
    "opener_score",
    "engagement_score",
    "objection_handling_score",
    "appointment_setting_score",
    "professionalism_score",
)


class LLMChainError(CapabilityError):
    """Error during LLM chain execution."""

    pass


# =============================================================================
# JSON Extraction
# =============================================================================

def _extract_json_from_text(text: str) -> str | None:
    """Try to extract a JSON object or array from text that may contain other content.

    Handles cases where the model outputs reasoning before the JSON, or
    wraps it in quotes.

    Args:
        text: Text that may contain JSON.

    Returns:
        Extracted JSON string or None.
    """
    openers = {"{": "}", "[": "]"}
    stack: list[str] = []
    start_idx = None
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        # Skip brackets inside strings
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"' and start_idx is not None:
            in_string = not in_string
            continue
        if in_string:
            continue

        if char in openers:
            if not stack:
                start_idx = i
            stack.append(openers[char])
        elif stack and char == stack[-1]:
            stack.pop()
            if not stack and start_idx is not None:
                return text[start_idx:i + 1]

    return None


def _clean_json_string(text: str) -> str:
    """Clean common issues in JSON strings from LLM output.

    Args:
        text: Raw JSON string.

    Returns:
        Cleaned JSON string.
    """
    # Remove any BOM or zero-width characters
    text = text.strip("\ufeff\u200b\u200c\u200d")

    # Remove trailing commas before } or ] (invalid JSON but common LLM mistake)
    text = re.sub(r",(\s*[}\]])", r"\1", text)

    return text


def parse_json_response(response: str) -> dict | list:
    """Parse JSON from an LLM response, handling common issues.

    Args:
        response: Raw LLM response string.

    Returns:
        Parsed JSON object or array.

    Raises:
        LLMChainError: If no valid JSON can be recovered.
    """
    if not response or not response.strip():
        raise LLMChainError("Empty response from LLM")

    text = response.strip()
    logger.debug("raw_llm_response", response_length=len(text), preview=text[:300])

    # Strategy 1: Remove markdown code blocks if present
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, re.IGNORECASE)
    if match and match.group(1).strip()[:1] in ("{", "["):
        text = match.group(1).strip()

    # Strategy 2: Direct parsing attempt
    try:
        return json.loads(_clean_json_string(text))
    except json.JSONDecodeError as e:
        logger.debug("direct_parse_failed", error=str(e))

    # Strategy 3: Extract JSON by bracket matching
    for source in (text, response):
        extracted = _extract_json_from_text(source)
        if extracted:
            try:
                return json.loads(_clean_json_string(extracted))
            except json.JSONDecodeError as e:
                logger.debug("extracted_parse_failed", error=str(e))

    logger.error("json_parse_error", response_preview=text[:300])
    raise LLMChainError(f"Failed to parse LLM JSON response. Response preview: {text[:150]}")


def unwrap_items(payload: dict | list) -> list:
    """Return the list of items from a bare array, a wrapper object or a single object."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in WRAPPER_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
        return [payload]
    raise MalformedOutputError(f"Expected a JSON object or array, got {type(payload).__name__}")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)
def run_json_chain(
    llm: BaseLanguageModel,
    system_prompt: str,
    user_prompt: str,
    variables: dict[str, Any],
    context_name: str = "chain",
) -> dict | list:
    """Invoke a prompt → LLM → string chain and parse the JSON it returns.

    The system prompt is passed as a variable so custom prompts need no brace
    escaping.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", "{system_prompt}"),
        ("human", user_prompt),
    ])
    chain = prompt | llm | StrOutputParser()

    logger.debug(f"{context_name}_invoke")
    response = chain.invoke({"system_prompt": system_prompt, **variables})
    result = parse_json_response(response)
    logger.debug(f"{context_name}_complete", response_length=len(response))
    return result


# =============================================================================
# LLM Capabilities
# =============================================================================

class _LLMCapability:
    default_system_prompt = ""

    def __init__(
        self,
        llm: BaseLanguageModel | None = None,
        system_prompt: str | None = None,
        model_name: str | None = None,
    ):
        if llm is None:
            from sdr_pipeline.llm.client import create_llm_client

            llm = create_llm_client()
        self.llm = llm
        self.system_prompt = system_prompt or self.default_system_prompt
        self.model_name = model_name or getattr(llm, "model", None) or type(llm).__name__


class LLMSplitter(_LLMCapability):
    """SplitCapability asking the model for call boundaries, anchored to source lines."""

    default_system_prompt = SPLITTER_SYSTEM_PROMPT

    def __init__(
        self,
        llm: BaseLanguageModel | None = None,
        system_prompt: str | None = None,
        model_name: str | None = None,
        chunk_max_chars: int = 25000,
        overlap_lines: int = 30,
    ):
        super().__init__(llm, system_prompt, model_name)
        self.chunk_max_chars = chunk_max_chars
        self.overlap_lines = overlap_lines

    def split(self, text: str) -> list[RawSegment]:
        chunks = chunk_transcript(text, self.chunk_max_chars, self.overlap_lines)
        proposals: list[dict] = []
        for index, chunk in enumerate(chunks, start=1):
            payload = run_json_chain(
                self.llm,
                self.system_prompt,
                SPLITTER_USER_PROMPT,
                {"chunk_text": chunk, "chunk_index": index, "total_chunks": len(chunks)},
                context_name="splitter",
            )
            proposals.extend(item for item in unwrap_items(payload) if isinstance(item, dict))

        unique = dedupe_proposals(proposals)
        logger.info("llm_split_proposals", chunks=len(chunks), proposals=len(proposals), unique=len(unique))
        return anchor_proposals(text, unique)


class LLMClassifier(_LLMCapability):
    """ClassifyCapability backed by the classification prompt."""

    default_system_prompt = CLASSIFIER_SYSTEM_PROMPT

    def classify(self, texts: list[str]) -> list[SegmentClassification]:
        segments_json = json.dumps(
            [{"segment_index": i, "text": t} for i, t in enumerate(texts)],
            ensure_ascii=False,
            indent=2,
        )
        payload = run_json_chain(
            self.llm,
            self.system_prompt,
            CLASSIFIER_USER_PROMPT,
            {"segments_json": segments_json, "segment_count": len(texts)},
            context_name="classifier",
        )
        try:
            results = [SegmentClassification.model_validate(item) for item in unwrap_items(payload)]
        except ValidationError as e:
            raise MalformedOutputError(f"Invalid classification item: {e.errors()[0].get('msg')}") from e
        return sorted(results, key=lambda r: r.segment_index)


def _coerce_score(value: Any) -> Any:
    try:
        return max(1, min(10, int(round(float(value)))))
    except (TypeError, ValueError):
        return value


class LLMGrader(_LLMCapability):
    """GradeCapability backed by the grading prompt."""

    default_system_prompt = GRADER_SYSTEM_PROMPT

    def grade(self, text: str) -> GradeResult:
        payload = run_json_chain(
            self.llm,
            self.system_prompt,
            GRADER_USER_PROMPT,
            {"call_text": text},
            context_name="grader",
        )
        if isinstance(payload, list):
            payload = next((item for item in payload if isinstance(item, dict)), {})

        data = dict(payload)
        for name in SCORE_FIELDS:
            if name in data:
                data[name] = _coerce_score(data[name])
        claimed = str(data.get("overall_grade") or "").strip().upper()
        data["overall_grade"] = claimed if claimed in {g.value for g in LetterGrade} else None
        data["raw_json"] = payload

        try:
            return GradeResult.model_validate(data)
        except ValidationError as e:
            raise MalformedOutputError(f"Invalid grade payload: {e.errors()[0].get('msg')}") from e
