from __future__ import annotations

import time
from typing import Any, Dict, List

import requests
from pydantic import BaseModel, ValidationError

from .config import OpenAISettings
from .errors import TextGenerationError
from .utils import setup_logging

logger = setup_logging()


class ChatMessage(BaseModel):
    content: str


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    choices: List[ChatChoice]
    usage: Dict[str, Any] = {}


def chat_completion(
    settings: OpenAISettings,
    messages: List[Dict[str, str]],
    temperature: float | None = None,
    max_tokens: int | None = None,
    max_retries: int = 3,
    retry_backoff: float = 1.5,
    session: requests.Session | None = None,
) -> Dict[str, Any]:
    """Call Azure OpenAI chat completions with retry logic.

    Uses the deployment-scoped chat completions endpoint:
        POST {endpoint}/openai/deployments/{deployment_name}/chat/completions?api-version=...

    Client errors (4xx other than 429) and malformed responses fail
    immediately; rate limits, server errors and network errors are retried.
    """
    if not settings.endpoint or not settings.api_key or not settings.deployment_name:
        raise TextGenerationError(
            "Azure OpenAI settings are incomplete. "
            "Please set AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_KEY, and AZURE_OPENAI_DEPLOYMENT_NAME."
        )

    url = f"{settings.endpoint}/openai/deployments/{settings.deployment_name}/chat/completions"
    params = {"api-version": settings.api_version}
    headers = {
        "Content-Type": "application/json",
        "api-key": settings.api_key,
    }

    body = {
        "messages": messages,
        "temperature": settings.temperature if temperature is None else temperature,
        "max_tokens": settings.max_tokens if max_tokens is None else max_tokens,
        "model": settings.model_name,
    }

    http = session or requests
    last_err: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            resp = http.post(
                url,
                headers=headers,
                params=params,
                json=body,
                timeout=settings.request_timeout,
            )
        except requests.exceptions.RequestException as exc:
            last_err = exc
            logger.warning("Chat completion attempt %s failed: %s", attempt, str(exc))
        else:
            if resp.status_code == 200:
                try:
                    data = ChatCompletionResponse.model_validate(resp.json())
                except (ValueError, ValidationError) as exc:
                    raise TextGenerationError(f"Unexpected chat completion response: {exc}") from exc
                if not data.choices:
                    raise TextGenerationError("Chat completion returned no choices")
                return {"content": data.choices[0].message.content, "usage": data.usage}

            last_err = TextGenerationError(f"Chat completion error {resp.status_code}: {resp.text[:500]}")
            if 400 <= resp.status_code < 500 and resp.status_code != 429:
                raise last_err
            logger.warning("Chat completion attempt %s failed: %s", attempt, str(last_err))

        if attempt < max_retries:
            time.sleep(retry_backoff**attempt)

    raise TextGenerationError(f"Chat completion failed after {max_retries} attempts: {last_err}")


class TextGenerationClient:
    """Narrow prompt-in, text-out contract over the chat completions endpoint."""

    def __init__(self, settings: OpenAISettings, session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()

    def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        result = chat_completion(self.settings, messages, session=self.session)
        logger.debug("Chat completion usage: %s", result["usage"])
        return result["content"]
