"""LLM wrapper utilities.

Builds ChatOpenAI clients from the chat LLM configuration and runs structured
invocations that return pydantic models.
"""

from typing import List, Optional

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel

from coopgov.config import config
from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)


def get_default_model() -> str:
    """Get the default model name from configuration."""
    return config.chat_llm.default_model or "gpt-4.1"


def get_default_temperature() -> float:
    """Get the default temperature from configuration."""
    try:
        return float(config.chat_llm.default_temperature)
    except (ValueError, TypeError, AttributeError):
        logger.warning("Invalid chat LLM temperature configuration, using default")
        return 0.2


def create_chat_openai(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    **kwargs,
) -> ChatOpenAI:
    """Create a ChatOpenAI instance with centralized default configuration.

    The client's own retries are disabled by default because the scoring
    engine owns the retry policy for proposal evaluation.

    Args:
        model: Model name. If None, uses get_default_model()
        temperature: Temperature. If None, uses get_default_temperature()
        base_url: OpenAI-compatible API base URL. If None, uses the configured one
        api_key: API key. If None, uses the configured one
        **kwargs: Additional arguments to pass to ChatOpenAI

    Returns:
        Configured ChatOpenAI instance
    """
    config_dict = {
        "model": model or get_default_model(),
        "temperature": temperature
        if temperature is not None
        else get_default_temperature(),
        "timeout": kwargs.pop("timeout", 300),
        "max_retries": kwargs.pop("max_retries", 0),
        **kwargs,
    }

    default_base_url = base_url or config.chat_llm.api_base
    if default_base_url:
        config_dict["base_url"] = default_base_url

    default_api_key = api_key or config.chat_llm.api_key
    if default_api_key:
        config_dict["api_key"] = default_api_key

    logger.debug(
        "Creating ChatOpenAI",
        extra={"model": config_dict["model"], "timeout": config_dict["timeout"]},
    )
    return ChatOpenAI(**config_dict)


async def invoke_structured(
    messages: List[BaseMessage],
    output_schema: type[BaseModel],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    method: str = "function_calling",
    **kwargs,
) -> BaseModel:
    """Invoke an LLM with structured output.

    Args:
        messages: Messages to send to the LLM
        output_schema: Pydantic model class for structured output
        model: Model name (defaults to configured default)
        temperature: Temperature (defaults to configured default)
        method: Method to use for structured output (function_calling or json_mode)
        **kwargs: Additional arguments passed to create_chat_openai

    Returns:
        Structured output as instance of output_schema

    Raises:
        ValueError: If the model output cannot be parsed into output_schema
    """
    llm = create_chat_openai(
        model=model,
        temperature=temperature,
        **kwargs,
    )
    structured_llm = llm.with_structured_output(
        output_schema, method=method, include_raw=True
    )

    result = await structured_llm.ainvoke(messages)
    if result.get("parsing_error"):
        raw_content = str(result["raw"].content).strip()
        logger.warning(
            "Structured output failed to parse, retrying on raw content",
            extra={"schema": output_schema.__name__, "raw": raw_content[:100]},
        )
        try:
            return output_schema.model_validate_json(raw_content)
        except Exception as e:
            raise ValueError(f"Failed to parse model output: {str(e)}") from e

    parsed = result.get("parsed")
    if parsed is None:
        raise ValueError(f"Model returned no {output_schema.__name__}")
    return parsed
