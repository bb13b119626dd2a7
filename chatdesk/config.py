from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .registry import DEFAULT_MODEL_ID


# Load environment variables from a local .env if present (harmless in containers)
load_dotenv()

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Be friendly and informative."
)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    chat_db_path: str = "./data/chat.db"
    generator: str = "template"  # 'template' | 'kernel'
    default_model_id: str = DEFAULT_MODEL_ID
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    stream_response: bool = True
    reply_delay_min: float = 1.0
    reply_delay_max: float = 3.0
    page_analyzer: str = "simulated"  # 'simulated' | 'http'
    page_fetch_timeout: float = 10.0
    max_sessions: int = 1000
    # Azure OpenAI, only needed by the kernel generator
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_chat_deployment_name: Optional[str] = None
    azure_openai_api_version: Optional[str] = None
    # Auth0 auth
    auth0_domain: str | None = None
    auth0_audience: str | None = None  # API Identifier configured in Auth0
    auth0_issuer: str | None = None    # Optional override; defaults to https://<domain>/


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_settings() -> Settings:
    generator = os.getenv("CHAT_GENERATOR", "template").strip().lower()
    if generator not in {"template", "kernel"}:
        raise RuntimeError(f"Unsupported CHAT_GENERATOR: {generator}")
    page_analyzer = os.getenv("PAGE_ANALYZER", "simulated").strip().lower()
    if page_analyzer not in {"simulated", "http"}:
        raise RuntimeError(f"Unsupported PAGE_ANALYZER: {page_analyzer}")

    endpoint = os.getenv("AZURE_OPENAI_ENDPOINT") or os.getenv("AZURE_OPEN_AI__ENDPOINT")
    api_key = os.getenv("AZURE_OPENAI_API_KEY") or os.getenv("AZURE_OPEN_AI__API_KEY")
    deployment = os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT_NAME") or os.getenv(
        "AZURE_OPEN_AI__CHAT_COMPLETION_DEPLOYMENT_NAME"
    )
    api_version = os.getenv("AZURE_OPENAI_API_VERSION")

    # Auth0 configuration
    auth0_domain = os.getenv("AUTH0_DOMAIN")
    auth0_audience = os.getenv("AUTH0_AUDIENCE")
    auth0_issuer = os.getenv("AUTH0_ISSUER")
    if not auth0_issuer and auth0_domain:
        # Note: auth0 issuer ends with a trailing slash
        auth0_issuer = f"https://{auth0_domain}/"

    if generator == "kernel":
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_ENDPOINT": endpoint,
                "AZURE_OPENAI_API_KEY": api_key,
                "AZURE_OPENAI_CHAT_DEPLOYMENT_NAME": deployment,
            }.items()
            if not value
        ]
        if missing:
            raise RuntimeError(
                "Missing required environment variables for CHAT_GENERATOR=kernel: "
                + ", ".join(missing)
            )

    # Require Auth0 settings as well (security requirement)
    auth_missing = [
        name
        for name, value in {
            "AUTH0_DOMAIN": auth0_domain,
            "AUTH0_AUDIENCE": auth0_audience,
        }.items()
        if not value
    ]
    if auth_missing:
        raise RuntimeError(
            "Missing required environment variables for Auth0 auth: "
            + ", ".join(auth_missing)
        )

    return Settings(
        chat_db_path=os.getenv("CHAT_DB_PATH", "./data/chat.db"),
        generator=generator,
        default_model_id=os.getenv("DEFAULT_MODEL_ID", DEFAULT_MODEL_ID),
        temperature=_env_float("DEFAULT_TEMPERATURE", 0.7),
        max_tokens=_env_int("DEFAULT_MAX_TOKENS", 1000),
        system_prompt=os.getenv("DEFAULT_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        stream_response=_env_bool("STREAM_RESPONSE", True),
        reply_delay_min=_env_float("REPLY_DELAY_MIN", 1.0),
        reply_delay_max=_env_float("REPLY_DELAY_MAX", 3.0),
        page_analyzer=page_analyzer,
        page_fetch_timeout=_env_float("PAGE_FETCH_TIMEOUT", 10.0),
        max_sessions=max(1, _env_int("MAX_SESSIONS", 1000)),
        azure_openai_endpoint=endpoint,
        azure_openai_api_key=api_key,
        azure_openai_chat_deployment_name=deployment,
        azure_openai_api_version=api_version,
        auth0_domain=auth0_domain,
        auth0_audience=auth0_audience,
        auth0_issuer=auth0_issuer,
    )


def configure_logging() -> str:
    """Configure root logging from LOG_LEVEL; unknown level names fall back to INFO."""
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return level
