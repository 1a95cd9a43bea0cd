"""
Inkwell Configuration Module
LLM provider configuration and pipeline settings.
"""

from .llm_providers import (
    CLAUDE_MODELS,
    DEEPSEEK_MODELS,
    DEFAULT_MODEL,
    GEMINI_MODELS,
    OPENAI_MODELS,
    OPENROUTER_MODELS,
    AgentModelConfig,
    ClaudeConfig,
    DeepSeekConfig,
    GeminiConfig,
    LLMConfiguration,
    LLMProvider,
    OpenAIConfig,
    OpenRouterConfig,
    ProviderConfig,
    create_default_config_from_env,
    get_all_models,
    get_models_for_role,
)
from .settings import PipelineSettings, load_pipeline_settings

__all__ = [
    "LLMProvider",
    "DEFAULT_MODEL",
    "OPENAI_MODELS",
    "OPENROUTER_MODELS",
    "GEMINI_MODELS",
    "CLAUDE_MODELS",
    "DEEPSEEK_MODELS",
    "ProviderConfig",
    "OpenAIConfig",
    "OpenRouterConfig",
    "GeminiConfig",
    "ClaudeConfig",
    "DeepSeekConfig",
    "AgentModelConfig",
    "LLMConfiguration",
    "get_all_models",
    "get_models_for_role",
    "create_default_config_from_env",
    "PipelineSettings",
    "load_pipeline_settings",
]
