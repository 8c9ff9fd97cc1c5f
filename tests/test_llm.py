from unittest.mock import MagicMock

import pytest
import requests

from sql_explain.config import load_settings
from sql_explain.prompts import SYSTEM_PROMPT
from sql_explain.services.llm import FALLBACK_EXPLANATION, ExplanationServiceError, OpenAIExplainer


def _response(payload=None, status_error=None):
    r = MagicMock()
    r.json.return_value = payload
    if status_error is not None:
        r.raise_for_status.side_effect = status_error
    return r


def _explainer(session, **kwargs):
    return OpenAIExplainer(api_key="sk-test", session=session, **kwargs)


def test_explain_sends_chat_completion_payload():
    session = MagicMock()
    session.post.return_value = _response({"choices": [{"message": {"content": "  Counts orders.  "}}]})

    result = _explainer(session).explain(
        "SELECT count(*) FROM orders",
        challenge_id="7",
        title="Order count",
        description="How many orders?",
        grade_status="passed",
    )

    assert result == "Counts orders."
    url = session.post.call_args.args[0]
    kwargs = session.post.call_args.kwargs
    assert url == "https://api.openai.com/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["timeout"] == 60.0

    payload = kwargs["json"]
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.3
    assert payload["max_tokens"] == 400
    system, user = payload["messages"]
    assert system == {"role": "system", "content": SYSTEM_PROMPT}
    assert user["role"] == "user"
    assert "SELECT count(*) FROM orders" in user["content"]
    assert "Order count" in user["content"]


def test_description_limit_applies_to_prompt():
    session = MagicMock()
    session.post.return_value = _response({"choices": [{"message": {"content": "ok"}}]})

    _explainer(session, description_limit=10).explain("SELECT 1", description="0123456789ABCDEF")

    user = session.post.call_args.kwargs["json"]["messages"][1]["content"]
    assert "0123456789" in user
    assert "ABCDEF" not in user


@pytest.mark.parametrize("payload", [
    {"choices": []},
    {"choices": [{"message": {"content": ""}}]},
    {"choices": [{"message": {"content": None}}]},
    {"choices": [{}]},
])
def test_empty_completion_falls_back(payload):
    session = MagicMock()
    session.post.return_value = _response(payload)
    assert _explainer(session).explain("SELECT 1") == FALLBACK_EXPLANATION


def test_unexpected_payload_raises():
    session = MagicMock()
    session.post.return_value = _response({"error": {"message": "nope"}})
    with pytest.raises(ExplanationServiceError):
        _explainer(session).explain("SELECT 1")


def test_timeout_is_wrapped():
    session = MagicMock()
    session.post.side_effect = requests.exceptions.Timeout()
    with pytest.raises(ExplanationServiceError, match="timed out"):
        _explainer(session, timeout=5).explain("SELECT 1")


def test_connection_error_is_wrapped():
    session = MagicMock()
    session.post.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(ExplanationServiceError, match="refused") as excinfo:
        _explainer(session).explain("SELECT 1")
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


def test_http_error_includes_body():
    failed = MagicMock()
    failed.text = '{"error": "rate limited"}'
    session = MagicMock()
    session.post.return_value = _response(status_error=requests.exceptions.HTTPError("429", response=failed))

    with pytest.raises(ExplanationServiceError, match="rate limited"):
        _explainer(session).explain("SELECT 1")


def test_from_settings_uses_configuration(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    monkeypatch.setenv("OPENAI_MAX_TOKENS", "123")
    monkeypatch.setenv("DESCRIPTION_LIMIT", "50")

    explainer = OpenAIExplainer.from_settings(load_settings())

    assert explainer.api_key == "sk-env"
    assert explainer.model == "gpt-test"
    assert explainer.max_tokens == 123
    assert explainer.description_limit == 50
