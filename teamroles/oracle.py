"""
Oracle transport: the only place that calls the external chat-completion LLM.

OpenAI-compatible endpoint (OpenRouter by default) through AsyncOpenAI with SDK
retries disabled; BatchExecutor owns retry policy. Transport failures are mapped
onto the package error taxonomy so callers only ever see TeamRolesError subclasses:

  timeout / connection error  -> TransientOracleError
  429                         -> TransientOracleError(status_code=429)
  5xx                         -> TransientOracleError(status_code)
  other 4xx                   -> OracleError (terminal)
  empty content               -> OracleResponseError
  no API key                  -> OracleConfigurationError
"""
from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from teamroles.config import Settings
from teamroles.errors import (
    OracleConfigurationError,
    OracleError,
    OracleResponseError,
    TransientOracleError,
)

logger = logging.getLogger(__name__)

Message = dict[str, str]


class OracleClient:
    """
    Thin async wrapper over chat.completions.create. Only the first choice's
    message content is consumed.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "anthropic/claude-3.5-sonnet",
        timeout: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> OracleClient:
        return cls(
            api_key=settings.oracle_api_key,
            base_url=settings.oracle_base_url,
            model=settings.oracle_model,
            timeout=settings.oracle_timeout,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise OracleConfigurationError(
                    "Oracle API key is not set (ORACLE_API_KEY / OPENROUTER_API_KEY / OPENAI_API_KEY)"
                )
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Send one chat completion and return the reply text."""
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            # APITimeoutError subclasses APIConnectionError; both are network-level.
            raise TransientOracleError(f"Oracle unreachable: {e}") from e
        except openai.RateLimitError as e:
            raise TransientOracleError("Oracle rate limit exceeded", status_code=429) from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise TransientOracleError(
                    f"Oracle server error ({e.status_code})", status_code=e.status_code
                ) from e
            raise OracleError(
                f"Oracle rejected request ({e.status_code}): {e.message}",
                status_code=e.status_code,
            ) from e

        if not response.choices:
            raise OracleResponseError("Oracle returned no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise OracleResponseError("Oracle returned empty content")
        return content


# ---------- Reply parsing ----------


def extract_json_array(text: str) -> list[Any]:
    """
    Return the first complete JSON array embedded in `text`.
    Models often wrap JSON in prose or code fences, so every '[' is tried in order.
    """
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)
    raise OracleResponseError("No JSON array found in oracle response")
