"""
Pipeline runtime settings.
Values come from the environment (and a local .env file when present).
"""

import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class PipelineSettings(BaseModel):
    """Tunables for the orchestrator, parsers and service connections."""

    # Key whose truthy value inside an agent's output pauses the run for review
    escalation_marker: str = "requires_consultation"

    # Parsers
    fallback_note_max_chars: int = Field(default=1000, ge=100)
    summary_brief_max_chars: int = Field(default=200, ge=50)
    summary_detailed_max_chars: int = Field(default=800, ge=100)

    # Context aggregation
    summary_window_size: int = Field(default=5, ge=0, le=20)
    style_sample_max_chars: int = Field(default=500, ge=0)

    # Chapter summaries
    summary_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    summary_max_tokens: int = Field(default=1024, ge=128)

    # Services
    redis_url: str = "redis://localhost:6379"
    supabase_url: str = ""
    supabase_key: str = ""
    allowed_origins: str = "http://localhost:3000"

    @property
    def origins(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


def load_pipeline_settings() -> PipelineSettings:
    """Build settings from environment variables, falling back to defaults."""
    load_dotenv()

    overrides = {}
    env_map = {
        "INKWELL_ESCALATION_MARKER": "escalation_marker",
        "INKWELL_SUMMARY_WINDOW": "summary_window_size",
        "INKWELL_FALLBACK_NOTE_MAX_CHARS": "fallback_note_max_chars",
        "REDIS_URL": "redis_url",
        "SUPABASE_URL": "supabase_url",
        "SUPABASE_SERVICE_KEY": "supabase_key",
        "ALLOWED_ORIGINS": "allowed_origins",
    }
    for env_name, field_name in env_map.items():
        value = os.getenv(env_name)
        if value:
            overrides[field_name] = value

    return PipelineSettings(**overrides)
