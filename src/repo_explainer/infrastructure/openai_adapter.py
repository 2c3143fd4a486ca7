"""OpenAI adapter — implements the LlmGateway port."""

from __future__ import annotations

import logging

import httpx
from openai import APIError, AsyncOpenAI, AuthenticationError, RateLimitError

from repo_explainer.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)


class OpenAIAdapter:
    """Concrete ``LlmGateway`` backed by the OpenAI chat-completions API.

    Retries are disabled on the SDK client: throttling is absorbed by the
    pipeline's rate limiter and every other failure degrades to a warning.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        base_url: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            http_client=http_client,
        )
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        temperature: float | None = None,
    ) -> str:
        """Send a system + user prompt and return the completion text."""
        try:
            kwargs: dict[str, object] = {
                "model": self._model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": self._temperature if temperature is None else temperature,
                "max_tokens": self._max_tokens,
            }
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}

            response = await self._client.chat.completions.create(**kwargs)  # type: ignore[arg-type]

            if not response.choices:
                raise ProviderError("LLM returned no choices.")
            content = response.choices[0].message.content

            if not content:
                raise ProviderError("LLM returned an empty response.")

            return content

        except AuthenticationError as exc:
            raise ProviderError(
                "Invalid OpenAI API key. "
                "Set a valid key in the OPENAI_API_KEY environment variable."
            ) from exc

        except RateLimitError as exc:
            detail = str(exc)
            logger.error("OpenAI RateLimitError: %s", detail)
            raise ProviderError(f"OpenAI rate limit / quota error: {detail}") from exc

        except ProviderError:
            raise

        except (APIError, httpx.HTTPError) as exc:
            raise ProviderError(f"LLM call failed: {exc}") from exc

    async def close(self) -> None:
        """Release underlying HTTP resources."""
        await self._client.close()
