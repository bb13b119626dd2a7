from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str
    provider: str
    description: str
    max_tokens: int


MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="gpt-4o",
        name="GPT-4o",
        provider="OpenAI",
        description="The most capable OpenAI model",
        max_tokens=4096,
    ),
    ModelDescriptor(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        provider="OpenAI",
        description="Fast and efficient model",
        max_tokens=16384,
    ),
    ModelDescriptor(
        id="llama-3.1-sonar-small-128k-online",
        name="Llama 3.1 Sonar Small",
        provider="Perplexity",
        description="Model with internet access",
        max_tokens=4096,
    ),
    ModelDescriptor(
        id="llama-3.1-sonar-large-128k-online",
        name="Llama 3.1 Sonar Large",
        provider="Perplexity",
        description="Capable model with web search",
        max_tokens=4096,
    ),
)

DEFAULT_MODEL_ID = MODELS[0].id


def find_model(model_id: str) -> Optional[ModelDescriptor]:
    for model in MODELS:
        if model.id == model_id:
            return model
    return None


def get_model(model_id: str) -> ModelDescriptor:
    model = find_model(model_id)
    if model is None:
        raise ValidationError(f"Unknown model: {model_id}")
    return model
