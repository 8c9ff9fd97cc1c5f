import logging
import time

import requests

from ..config import Settings
from ..prompts import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)

FALLBACK_EXPLANATION = "I couldn't generate an explanation."


class ExplanationServiceError(RuntimeError):
    """Upstream completion call failed (network, HTTP status or bad payload)."""


class OpenAIExplainer:
    """
    Calls an OpenAI-compatible chat completions endpoint to explain SQL.

    Uses a fixed low temperature and a token cap so answers stay
    reproducible and cheap.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        api_url: str = "https://api.openai.com/v1/chat/completions",
        temperature: float = 0.3,
        max_tokens: int = 400,
        timeout: float = 60.0,
        description_limit: int = 500,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.description_limit = description_limit
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIExplainer":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            api_url=settings.OPENAI_API_URL,
            temperature=settings.OPENAI_TEMPERATURE,
            max_tokens=settings.OPENAI_MAX_TOKENS,
            timeout=settings.OPENAI_TIMEOUT,
            description_limit=settings.DESCRIPTION_LIMIT,
        )

    def build_messages(self, sql, challenge_id=None, title=None, description=None, grade_status=None) -> list[dict]:
        user_prompt = build_user_prompt(
            sql,
            challenge_id=challenge_id,
            title=title,
            description=description,
            grade_status=grade_status,
            description_limit=self.description_limit,
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

    def explain(self, sql, challenge_id=None, title=None, description=None, grade_status=None) -> str:
        """
        Blocking call. Returns the explanation text, or the fallback
        sentence when the model answers with empty content.
        Raises ExplanationServiceError on any upstream failure.
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        payload = {
            "model": self.model,
            "messages": self.build_messages(sql, challenge_id, title, description, grade_status),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        t0 = time.time()
        try:
            r = self.session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()

        except requests.exceptions.Timeout:
            raise ExplanationServiceError(f"Completion request timed out after {self.timeout} seconds") from None
        except requests.exceptions.RequestException as e:
            msg = str(e)
            if e.response is not None:
                msg += f" | Body: {e.response.text}"
            raise ExplanationServiceError(f"Completion request failed: {msg}") from e
        except ValueError as e:
            raise ExplanationServiceError(f"Completion response was not JSON: {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list):
            raise ExplanationServiceError(f"Unexpected completion response: {data}")

        logger.info("Completion received in %.2fs (model=%s)", time.time() - t0, self.model)

        content = None
        if choices:
            content = (choices[0].get("message") or {}).get("content")

        if not content or not content.strip():
            return FALLBACK_EXPLANATION
        return content.strip()
