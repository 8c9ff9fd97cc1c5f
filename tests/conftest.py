import pytest
from fastapi.testclient import TestClient

from sql_explain.main import app, get_explainer
from sql_explain.services.llm import ExplanationServiceError


class FakeExplainer:
    """Stands in for OpenAIExplainer; records every call it receives."""

    def __init__(self, answer: str = "This query lists high-value orders.", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls = []

    def explain(self, sql, challenge_id=None, title=None, description=None, grade_status=None) -> str:
        self.calls.append({
            "sql": sql,
            "challenge_id": challenge_id,
            "title": title,
            "description": description,
            "grade_status": grade_status,
        })
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.delenv("CACHE_MAX_ENTRIES", raising=False)
    monkeypatch.delenv("DESCRIPTION_LIMIT", raising=False)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def fake_explainer():
    return FakeExplainer()


@pytest.fixture
def failing_explainer():
    return FakeExplainer(error=ExplanationServiceError("Completion request failed: 401 | Body: invalid api key sk-secret"))


@pytest.fixture
def client(fake_explainer):
    app.dependency_overrides[get_explainer] = lambda: fake_explainer
    with TestClient(app) as c:
        yield c
