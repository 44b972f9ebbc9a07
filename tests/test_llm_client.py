"""Tests for the chat completion client."""

from unittest.mock import MagicMock

import pytest
import requests

from policyrag import llm_client
from policyrag.config import OpenAISettings
from policyrag.errors import TextGenerationError
from policyrag.llm_client import TextGenerationClient, chat_completion

SETTINGS = OpenAISettings(
    endpoint="https://example.openai.azure.com",
    api_key="key",
    deployment_name="gpt",
    request_timeout=12.0,
)


def _response(status_code=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = text
    return response


def _completion(content):
    return {"choices": [{"message": {"content": content}}], "usage": {"total_tokens": 7}}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(llm_client.time, "sleep", lambda seconds: None)


def test_chat_completion_returns_content_and_usage():
    session = MagicMock()
    session.post.return_value = _response(body=_completion("Hallo"))

    result = chat_completion(SETTINGS, [{"role": "user", "content": "Hi"}], session=session)

    assert result == {"content": "Hallo", "usage": {"total_tokens": 7}}
    kwargs = session.post.call_args.kwargs
    assert kwargs["timeout"] == 12.0
    assert kwargs["json"]["max_tokens"] == SETTINGS.max_tokens


def test_incomplete_settings_fail_fast():
    with pytest.raises(TextGenerationError):
        chat_completion(OpenAISettings(endpoint="", api_key="", deployment_name=""), [])


def test_client_error_is_not_retried():
    session = MagicMock()
    session.post.return_value = _response(401, text="unauthorized")

    with pytest.raises(TextGenerationError):
        chat_completion(SETTINGS, [], session=session)

    assert session.post.call_count == 1


def test_rate_limit_is_retried():
    session = MagicMock()
    session.post.side_effect = [_response(429, text="slow down"), _response(body=_completion("ok"))]

    assert chat_completion(SETTINGS, [], session=session)["content"] == "ok"


def test_network_errors_exhaust_retries():
    session = MagicMock()
    session.post.side_effect = requests.exceptions.ConnectionError("down")

    with pytest.raises(TextGenerationError, match="after 2 attempts"):
        chat_completion(SETTINGS, [], max_retries=2, session=session)


@pytest.mark.parametrize("body", [{"choices": []}, {"unexpected": True}, {"choices": [{"message": {}}]}])
def test_malformed_response_is_a_provider_error(body):
    session = MagicMock()
    session.post.return_value = _response(body=body)

    with pytest.raises(TextGenerationError):
        chat_completion(SETTINGS, [], session=session)

    assert session.post.call_count == 1


def test_generate_sends_system_and_user_messages():
    session = MagicMock()
    session.post.return_value = _response(body=_completion("Antwort"))
    client = TextGenerationClient(SETTINGS, session=session)

    assert client.generate("Frage", system_prompt="Sei hilfreich") == "Antwort"
    assert session.post.call_args.kwargs["json"]["messages"] == [
        {"role": "system", "content": "Sei hilfreich"},
        {"role": "user", "content": "Frage"},
    ]
