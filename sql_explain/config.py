import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Loads values from .env into os.environ
load_dotenv()

DEFAULT_OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"


@dataclass
class Settings:
    """
    All runtime configuration in one place.
    Read once at startup, then handed to the cache and the LLM client.
    """

    # Upstream completion service
    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_API_URL: str = DEFAULT_OPENAI_API_URL
    OPENAI_TEMPERATURE: float = 0.3
    OPENAI_MAX_TOKENS: int = 400
    OPENAI_TIMEOUT: float = 60.0

    # Memoization + prompt bounds
    CACHE_MAX_ENTRIES: int = 1000
    DESCRIPTION_LIMIT: int = 500

    # Listen address
    HOST: str = "0.0.0.0"
    PORT: int = 3000


def parse_origins(value: str | None) -> list[str]:
    """
    "https://a.com, https://b.com" -> ["https://a.com", "https://b.com"]
    Empty / unset means allow everything.
    """
    if not value:
        return ["*"]
    origins = [o.strip() for o in value.split(",") if o.strip()]
    return origins or ["*"]


def load_settings() -> Settings:
    """
    Reads environment variables and builds a Settings object.
    Fails fast (SystemExit) when the API key is missing so the
    server never starts serving without credentials.
    """
    api_key = os.getenv("OPENAI_API_KEY", "").strip()

    if not api_key:
        raise SystemExit(
            "Missing OPENAI_API_KEY.\n\n"
            "Please set it in your environment or .env file:\n"
            "  OPENAI_API_KEY=sk-..."
        )

    return Settings(
        OPENAI_API_KEY=api_key,
        OPENAI_MODEL=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        OPENAI_API_URL=os.getenv("OPENAI_API_URL", DEFAULT_OPENAI_API_URL),
        OPENAI_TEMPERATURE=float(os.getenv("OPENAI_TEMPERATURE", "0.3")),
        OPENAI_MAX_TOKENS=int(os.getenv("OPENAI_MAX_TOKENS", "400")),
        OPENAI_TIMEOUT=float(os.getenv("OPENAI_TIMEOUT", "60")),
        CACHE_MAX_ENTRIES=int(os.getenv("CACHE_MAX_ENTRIES", "1000")),
        DESCRIPTION_LIMIT=int(os.getenv("DESCRIPTION_LIMIT", "500")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "3000")),
    )


# Read at import time: middleware is wired before the startup event runs.
ALLOWED_ORIGINS = parse_origins(os.getenv("ALLOWED_ORIGINS"))

# Request bodies larger than this (bytes) are rejected with 413
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(10 * 1024)))
