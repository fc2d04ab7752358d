"""LLM integration via LangChain and Ollama."""

from sdr_pipeline.llm.chains import (
    LLMChainError,
    LLMClassifier,
    LLMGrader,
    LLMSplitter,
    parse_json_response,
)
from sdr_pipeline.llm.client import create_llm_client

__all__ = [
    "LLMChainError",
    "LLMClassifier",
    "LLMGrader",
    "LLMSplitter",
    "create_llm_client",
    "parse_json_response",
]
