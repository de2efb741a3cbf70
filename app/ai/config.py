import os
from dataclasses import dataclass

from app.core.config import settings


@dataclass(frozen=True)
class AIConfig:
    provider: str
    model: str
    temperature: float
    max_output_tokens: int


def load_ai_config() -> AIConfig:
    provider = os.getenv("AI_PROVIDER", "openai").strip().lower()
    model = os.getenv("AI_MODEL", "gpt-4o-mini").strip()
    return AIConfig(
        provider=provider,
        model=model,
        temperature=settings.synthesis_temperature,
        max_output_tokens=settings.synthesis_max_output_tokens,
    )
