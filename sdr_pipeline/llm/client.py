"""Ollama LLM client configuration."""

from langchain_ollama import OllamaLLM

from sdr_pipeline.config.settings import Settings, get_settings


def create_llm_client(settings: Settings | None = None) -> OllamaLLM:
    """Create configured Ollama LLM client.

    Args:
        settings: Optional custom settings. Uses defaults if not provided.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_settings()

    return OllamaLLM(
        model=settings.llm_model_name,
        base_url=settings.llm_ollama_base_url,
        temperature=settings.llm_temperature,
        num_ctx=settings.llm_num_ctx,
        num_predict=settings.llm_num_predict,
        # JSON extraction is handled in chains.parse_json_response; format="json"
        # is not respected by every model and can truncate responses
        client_kwargs={"timeout": settings.llm_request_timeout},
    )
