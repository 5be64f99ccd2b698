"""
Completion provider clients for the Carpso AI backend.
Supports both the direct Anthropic API and any OpenAI-compatible endpoint
(Google's Gemini OpenAI-compatible API by default).
Implements ICompletionProvider: prompt template in, decoded JSON object out.

Error contract:
- SDK failures are translated into ProviderError tagged TRANSIENT or FATAL
  from the SDK's typed exceptions and HTTP status codes
- Retrying is NOT done here; the flow's retry controller owns that policy
"""

import json
import logging
import re
from typing import Optional

import anthropic

from backend.shared.config import (
    AnthropicConfig,
    AppConfig,
    LLMProvider,
    OpenAICompatibleConfig,
)
from backend.shared.errors import ProviderError
from backend.shared.interfaces import ICompletionProvider
from backend.shared.prompts import PromptTemplate

logger = logging.getLogger(__name__)

# HTTP statuses worth retrying: request timeout, conflict, rate limit, 5xx, 529 overloaded
_TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _is_transient_status(status_code: Optional[int]) -> bool:
    if status_code is None:
        return False
    return status_code in _TRANSIENT_STATUS_CODES or status_code >= 500


def _classify_status(status_code: Optional[int], detail: str) -> ProviderError:
    if _is_transient_status(status_code):
        return ProviderError.transient(f"HTTP {status_code}: {detail}")
    return ProviderError.fatal(f"HTTP {status_code}: {detail}" if status_code else detail)


def extract_json_object(text: str) -> dict:
    """
    Pull the JSON object out of a model reply.

    Accepts a bare object, a ```json fenced block, or an object surrounded
    by prose. Raises a fatal ProviderError when no object can be decoded.
    """
    if not text or not text.strip():
        raise ProviderError.fatal("Model returned an empty reply")

    candidates = [m.strip() for m in _JSON_FENCE.findall(text)]
    candidates.append(text.strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(decoded, dict):
            return decoded

    raise ProviderError.fatal(f"Model reply contained no JSON object: {text[:120]!r}")


def _missing_key_error(provider: str) -> ProviderError:
    logger.warning(f"No valid {provider} API key configured - provider call refused")
    return ProviderError.fatal("no_api_key")


# ---------------------------------------------------------------------------
# Direct Anthropic API client
# ---------------------------------------------------------------------------

def classify_anthropic_error(error: Exception) -> ProviderError:
    """Translate an anthropic SDK exception into a typed ProviderError."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, anthropic.APIConnectionError):  # includes APITimeoutError
        return ProviderError.transient(f"{type(error).__name__}: {error}")
    if isinstance(error, anthropic.APIStatusError):
        return _classify_status(error.status_code, str(error))
    return ProviderError.fatal(f"{type(error).__name__}: {error}")


class AnthropicCompletionClient(ICompletionProvider):
    """Claude via the direct Anthropic SDK."""

    def __init__(self, config: AnthropicConfig):
        self._config = config
        self._client = anthropic.AsyncAnthropic(api_key=config.api_key, max_retries=0)
        self._total_input = 0
        self._total_output = 0

    async def complete(self, template: PromptTemplate, structured_input: dict) -> dict:
        if not self._config.api_key or self._config.api_key.startswith("sk-ant-your"):
            raise _missing_key_error("Anthropic")

        kwargs = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "system": template.system,
            "messages": [{"role": "user", "content": template.render(structured_input)}],
        }
        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as e:
            raise classify_anthropic_error(e) from e

        usage = response.usage
        if usage is not None:
            self._total_input += usage.input_tokens
            self._total_output += usage.output_tokens

        text = "\n".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        logger.debug(f"{template.name} raw reply: {text[:200]}")
        return extract_json_object(text)

    async def get_usage(self) -> dict:
        return {"total_input_tokens": self._total_input, "total_output_tokens": self._total_output}


# ---------------------------------------------------------------------------
# OpenAI-compatible client (Gemini, gateways, self-hosted)
# ---------------------------------------------------------------------------

def classify_openai_error(error: Exception, openai_module) -> ProviderError:
    """Translate an openai SDK exception into a typed ProviderError."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, openai_module.APIConnectionError):  # includes APITimeoutError
        return ProviderError.transient(f"{type(error).__name__}: {error}")
    if isinstance(error, openai_module.APIStatusError):
        return _classify_status(error.status_code, str(error))
    return ProviderError.fatal(f"{type(error).__name__}: {error}")


class OpenAICompatibleCompletionClient(ICompletionProvider):
    """
    Any OpenAI-compatible /v1/chat/completions endpoint.

    We use the ``openai`` Python SDK pointed at the configured base URL;
    by default that is Google's Gemini OpenAI-compatible endpoint.
    """

    def __init__(self, config: OpenAICompatibleConfig):
        self._config = config
        self._client = None  # Created lazily on first API call
        self._openai = None
        self._total_input = 0
        self._total_output = 0

    def _get_sdk(self):
        if self._openai is None:
            try:
                import openai
            except ImportError as exc:
                raise ImportError(
                    "The 'openai' package is required for OpenAI-compatible providers. "
                    "Install it with: pip install openai>=1.30.0"
                ) from exc
            self._openai = openai
        return self._openai

    def _get_client(self):
        """Lazy-create the AsyncOpenAI client on first use."""
        if self._client is None:
            self._client = self._get_sdk().AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                max_retries=0,
            )
        return self._client

    async def complete(self, template: PromptTemplate, structured_input: dict) -> dict:
        if not self._config.api_key or not self._config.base_url:
            raise _missing_key_error("OpenAI-compatible")

        client = self._get_client()
        kwargs = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [
                {"role": "system", "content": template.system},
                {"role": "user", "content": template.render(structured_input)},
            ],
            "response_format": {"type": "json_object"},
        }
        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            raise classify_openai_error(e, self._get_sdk()) from e

        return self._parse_response(template, response)

    def _parse_response(self, template: PromptTemplate, response) -> dict:
        """Parse an OpenAI-format response into the decoded JSON object."""
        usage = response.usage
        if usage:
            self._total_input += usage.prompt_tokens or 0
            self._total_output += usage.completion_tokens or 0

        choice = response.choices[0] if response.choices else None
        if not choice:
            raise ProviderError.fatal("empty_response")
        text = choice.message.content or ""
        logger.debug(f"{template.name} raw reply: {text[:200]}")
        return extract_json_object(text)

    async def get_usage(self) -> dict:
        return {"total_input_tokens": self._total_input, "total_output_tokens": self._total_output}


# ---------------------------------------------------------------------------
# Factory function (Open/Closed Principle - extend without modifying callers)
# ---------------------------------------------------------------------------

def create_completion_client(config: AppConfig) -> ICompletionProvider:
    """
    Factory: create the appropriate completion client based on configuration.

    Supports:
      - LLM_PROVIDER=anthropic          → Direct Anthropic API (AnthropicCompletionClient)
      - LLM_PROVIDER=openai_compatible  → OpenAI-compatible endpoint (OpenAICompatibleCompletionClient)
    """
    if config.llm_provider == LLMProvider.OPENAI_COMPATIBLE:
        oc = config.openai_compatible
        if oc.base_url and oc.api_key:
            logger.info(f"Using OpenAI-compatible endpoint at {oc.base_url} (model: {oc.model})")
            return OpenAICompatibleCompletionClient(oc)
        logger.warning(
            "LLM_PROVIDER=openai_compatible but OPENAI_COMPAT_BASE_URL or "
            "OPENAI_COMPAT_API_KEY is not set. Falling back to Anthropic."
        )

    # Default: direct Anthropic
    logger.info(f"Using direct Anthropic API (model: {config.anthropic.model})")
    return AnthropicCompletionClient(config.anthropic)
