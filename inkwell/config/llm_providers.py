"""
LLM Provider Configuration - BYOK (Bring Your Own Key) Support
Supports OpenAI, OpenRouter, DeepSeek, Google Gemini, and Anthropic Claude.
Each pipeline role can be pointed at its own provider/model pair.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    CLAUDE = "claude"
    DEEPSEEK = "deepseek"


DEFAULT_MODEL = "claude-sonnet-4-20250514"


# ============================================================================
# Model Definitions by Provider
# ============================================================================

OPENAI_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o": {
        "name": "GPT-4o",
        "context_window": 128000,
        "max_output": 16384,
        "recommended_for": ["coordinator", "editor", "continuity_checker"],
    },
    "gpt-4o-mini": {
        "name": "GPT-4o Mini",
        "context_window": 128000,
        "max_output": 16384,
        "recommended_for": ["character_manager", "world_builder"],
    },
}

OPENROUTER_MODELS: Dict[str, Dict[str, Any]] = {
    "anthropic/claude-sonnet-4": {
        "name": "Claude Sonnet 4 (via OpenRouter)",
        "context_window": 200000,
        "max_output": 16384,
        "recommended_for": ["writer", "editor"],
    },
    "google/gemini-2.5-pro": {
        "name": "Gemini 2.5 Pro (via OpenRouter)",
        "context_window": 1000000,
        "max_output": 16384,
        "recommended_for": ["plot_architect", "continuity_checker"],
    },
}

GEMINI_MODELS: Dict[str, Dict[str, Any]] = {
    "gemini-1.5-pro": {
        "name": "Gemini 1.5 Pro",
        "context_window": 2000000,
        "max_output": 8192,
        "recommended_for": ["continuity_checker"],
    },
    "gemini-1.5-flash": {
        "name": "Gemini 1.5 Flash",
        "context_window": 1000000,
        "max_output": 8192,
        "recommended_for": ["coordinator"],
    },
}

DEEPSEEK_MODELS: Dict[str, Dict[str, Any]] = {
    "deepseek-chat": {
        "name": "DeepSeek V3",
        "context_window": 64000,
        "max_output": 8192,
        "recommended_for": ["world_builder", "character_manager"],
    },
}

CLAUDE_MODELS: Dict[str, Dict[str, Any]] = {
    "claude-sonnet-4-20250514": {
        "name": "Claude Sonnet 4",
        "context_window": 200000,
        "max_output": 16384,
        "recommended_for": [
            "coordinator", "plot_architect", "world_builder", "character_manager",
            "writer", "editor", "continuity_checker", "fixer",
        ],
    },
    "claude-opus-4-20250514": {
        "name": "Claude Opus 4",
        "context_window": 200000,
        "max_output": 16384,
        "recommended_for": ["writer", "plot_architect"],
    },
    "claude-3-5-haiku-20241022": {
        "name": "Claude 3.5 Haiku",
        "context_window": 200000,
        "max_output": 8192,
        "recommended_for": ["coordinator"],
    },
}


# ============================================================================
# Provider Configuration Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Base configuration for an LLM provider."""
    provider: LLMProvider
    api_key: SecretStr
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    default_model: str
    enabled: bool = True


class OpenAIConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.OPENAI
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return OPENAI_MODELS


class OpenRouterConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.OPENROUTER
    base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "anthropic/claude-sonnet-4"
    site_url: Optional[str] = None
    app_name: Optional[str] = "Inkwell"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return OPENROUTER_MODELS


class GeminiConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.GEMINI
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-1.5-pro"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return GEMINI_MODELS


class ClaudeConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.CLAUDE
    base_url: str = "https://api.anthropic.com"
    default_model: str = DEFAULT_MODEL

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return CLAUDE_MODELS


class DeepSeekConfig(ProviderConfig):
    """DeepSeek-specific configuration (OpenAI-compatible API)."""
    provider: LLMProvider = LLMProvider.DEEPSEEK
    base_url: str = "https://api.deepseek.com"
    default_model: str = "deepseek-chat"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return DEEPSEEK_MODELS


# ============================================================================
# Role Model Assignment
# ============================================================================

class AgentModelConfig(BaseModel):
    """Which provider/model each pipeline role uses when no project override exists."""
    coordinator_provider: LLMProvider = LLMProvider.CLAUDE
    coordinator_model: str = DEFAULT_MODEL

    plot_architect_provider: LLMProvider = LLMProvider.CLAUDE
    plot_architect_model: str = DEFAULT_MODEL

    world_builder_provider: LLMProvider = LLMProvider.CLAUDE
    world_builder_model: str = DEFAULT_MODEL

    character_manager_provider: LLMProvider = LLMProvider.CLAUDE
    character_manager_model: str = DEFAULT_MODEL

    writer_provider: LLMProvider = LLMProvider.CLAUDE
    writer_model: str = DEFAULT_MODEL

    editor_provider: LLMProvider = LLMProvider.CLAUDE
    editor_model: str = DEFAULT_MODEL

    continuity_checker_provider: LLMProvider = LLMProvider.CLAUDE
    continuity_checker_model: str = DEFAULT_MODEL

    fixer_provider: LLMProvider = LLMProvider.CLAUDE
    fixer_model: str = DEFAULT_MODEL

    def for_role(self, role: str) -> Tuple[LLMProvider, str]:
        """Return the (provider, model) pair assigned to a role."""
        provider = getattr(self, f"{role}_provider", None)
        model = getattr(self, f"{role}_model", None)
        if provider is None or model is None:
            raise ValueError(f"No model assignment for role: {role}")
        return provider, model


# ============================================================================
# Master Configuration
# ============================================================================

class LLMConfiguration(BaseModel):
    """Master LLM configuration with all providers."""

    openai: Optional[OpenAIConfig] = None
    openrouter: Optional[OpenRouterConfig] = None
    gemini: Optional[GeminiConfig] = None
    claude: Optional[ClaudeConfig] = None
    deepseek: Optional[DeepSeekConfig] = None

    agent_models: AgentModelConfig = Field(default_factory=AgentModelConfig)

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: int = Field(default=300, ge=30, le=1800)

    def get_provider_config(self, provider: LLMProvider) -> Optional[ProviderConfig]:
        """Get configuration for a specific provider."""
        provider_map = {
            LLMProvider.OPENAI: self.openai,
            LLMProvider.OPENROUTER: self.openrouter,
            LLMProvider.GEMINI: self.gemini,
            LLMProvider.CLAUDE: self.claude,
            LLMProvider.DEEPSEEK: self.deepseek,
        }
        return provider_map.get(provider)

    def get_enabled_providers(self) -> List[LLMProvider]:
        """Get list of enabled providers."""
        enabled = []
        for provider in LLMProvider:
            provider_config = self.get_provider_config(provider)
            if provider_config and provider_config.enabled:
                enabled.append(provider)
        return enabled

    def validate_agent_models(self, roles: List[str]) -> List[str]:
        """Validate that every role's model is served by an enabled provider."""
        errors = []
        for role in roles:
            provider, model = self.agent_models.for_role(role)
            provider_config = self.get_provider_config(provider)
            if not provider_config:
                errors.append(f"{role}: Provider {provider.value} is not configured")
            elif not provider_config.enabled:
                errors.append(f"{role}: Provider {provider.value} is disabled")
            elif model not in provider_config.available_models:
                errors.append(f"{role}: Model {model} not available for {provider.value}")
        return errors


# ============================================================================
# Helper Functions
# ============================================================================

def get_all_models() -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Get all available models grouped by provider."""
    return {
        "openai": OPENAI_MODELS,
        "openrouter": OPENROUTER_MODELS,
        "gemini": GEMINI_MODELS,
        "claude": CLAUDE_MODELS,
        "deepseek": DEEPSEEK_MODELS,
    }


def get_models_for_role(role: str) -> Dict[str, List[str]]:
    """Get recommended models for a pipeline role."""
    recommended = {}
    for provider, models in get_all_models().items():
        provider_recommended = [
            model_id for model_id, model_info in models.items()
            if role.lower() in model_info.get("recommended_for", [])
        ]
        if provider_recommended:
            recommended[provider] = provider_recommended
    return recommended


def create_default_config_from_env() -> LLMConfiguration:
    """Create configuration from environment variables (and a local .env file)."""
    load_dotenv()

    config = LLMConfiguration()

    if os.getenv("OPENAI_API_KEY"):
        config.openai = OpenAIConfig(
            api_key=SecretStr(os.getenv("OPENAI_API_KEY")),
            organization_id=os.getenv("OPENAI_ORG_ID"),
        )

    if os.getenv("OPENROUTER_API_KEY"):
        config.openrouter = OpenRouterConfig(
            api_key=SecretStr(os.getenv("OPENROUTER_API_KEY")),
            site_url=os.getenv("OPENROUTER_SITE_URL"),
        )

    if os.getenv("GEMINI_API_KEY"):
        config.gemini = GeminiConfig(
            api_key=SecretStr(os.getenv("GEMINI_API_KEY")),
        )

    if os.getenv("ANTHROPIC_API_KEY"):
        config.claude = ClaudeConfig(
            api_key=SecretStr(os.getenv("ANTHROPIC_API_KEY")),
        )

    if os.getenv("DEEPSEEK_API_KEY"):
        config.deepseek = DeepSeekConfig(
            api_key=SecretStr(os.getenv("DEEPSEEK_API_KEY")),
        )

    if os.getenv("LLM_TIMEOUT_SECONDS"):
        config.timeout_seconds = int(os.getenv("LLM_TIMEOUT_SECONDS"))

    return config
